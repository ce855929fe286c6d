"""Tests for configuration loading."""

from __future__ import annotations

from gko.config import ApnsTransport, AppConfig, BackoffKind, FcmConfig, RetryConfig


class TestDefaults:
    def test_retry_defaults_match_google_client(self):
        config = RetryConfig()
        assert config.strategy == BackoffKind.EXPONENTIAL
        assert config.base_delay == 0.25
        assert config.max_elapsed == 16.0
        assert config.max_retries is None

    def test_fcm_is_lenient_by_default(self):
        assert FcmConfig().raise_for_status is False


class TestFromYaml:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = AppConfig.from_yaml(tmp_path / "absent.yml")
        assert config.apns.transport == ApnsTransport.LEGACY

    def test_loads_sections(self, tmp_path):
        path = tmp_path / "app.yml"
        path.write_text(
            "environment: production\n"
            "retry:\n"
            "  strategy: constant\n"
            "  max_retries: 4\n"
            "  concurrency: 8\n"
            "fcm:\n"
            "  server_key: abc\n"
            "  raise_for_status: true\n"
            "apns:\n"
            "  transport: http2\n"
            "  cert_file: /etc/apns.p12\n"
            "  use_production_gateway: false\n"
        )

        config = AppConfig.from_yaml(path)

        assert config.environment == "production"
        assert config.retry.strategy == BackoffKind.CONSTANT
        assert config.retry.max_retries == 4
        assert config.retry.concurrency == 8
        assert config.fcm.server_key == "abc"
        assert config.fcm.raise_for_status is True
        assert config.apns.transport == ApnsTransport.HTTP2
        assert str(config.apns.cert_file) == "/etc/apns.p12"
        assert config.apns.use_production_gateway is False

    def test_env_overrides_section_defaults(self, monkeypatch):
        monkeypatch.setenv("GKO_FCM_SERVER_KEY", "from-env")
        monkeypatch.setenv("GKO_RETRY_CONCURRENCY", "3")

        config = AppConfig()

        assert config.fcm.server_key == "from-env"
        assert config.retry.concurrency == 3
