"""Application configuration — env vars, YAML files, defaults."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings


def _repo_root() -> Path:
    """Find the repository root (directory containing pyproject.toml)."""
    current = Path(__file__).resolve().parent.parent
    if (current / "pyproject.toml").exists():
        return current
    return Path.cwd()


REPO_ROOT = _repo_root()


class BackoffKind(str, Enum):
    EXPONENTIAL = "exponential"
    CONSTANT = "constant"


class ApnsTransport(str, Enum):
    LEGACY = "legacy"
    HTTP2 = "http2"


class RetryConfig(BaseSettings):
    strategy: BackoffKind = BackoffKind.EXPONENTIAL
    base_delay: float = 0.25
    max_elapsed: float = 16.0
    max_retries: int | None = None
    # Upper bound on workers running at once; 0 means one task per target
    concurrency: int = 100

    model_config = {"env_prefix": "GKO_RETRY_"}


class FcmConfig(BaseSettings):
    server_key: str = ""
    timeout: float = 10.0
    ttl: int = 86400
    # Non-2xx responses count as delivered unless this is set
    raise_for_status: bool = False

    model_config = {"env_prefix": "GKO_FCM_"}


class ApnsConfig(BaseSettings):
    transport: ApnsTransport = ApnsTransport.LEGACY
    cert_file: Path | None = None
    key_file: Path | None = None
    password: str = ""
    use_production_gateway: bool = True
    topic: str = ""
    timeout: float = 10.0
    # Seconds to wait for a legacy error-response packet after writing; 0 disables
    error_response_timeout: float = 0.5

    model_config = {"env_prefix": "GKO_APNS_"}


class ServerConfig(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    admin_user: str = ""
    admin_password: str = ""

    model_config = {"env_prefix": "GKO_SERVER_"}


class AppConfig(BaseSettings):
    """Top-level application configuration."""

    retry: RetryConfig = Field(default_factory=RetryConfig)
    fcm: FcmConfig = Field(default_factory=FcmConfig)
    apns: ApnsConfig = Field(default_factory=ApnsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # Environment & Sentry
    environment: str = "development"
    sentry_dsn: str = ""

    model_config = {"env_prefix": "GKO_"}

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> AppConfig:
        """Load config from YAML file, with env var overrides."""
        if path is None:
            path = REPO_ROOT / "config" / "app.yml"

        values: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                values = yaml.safe_load(f) or {}

        return cls(**values)
