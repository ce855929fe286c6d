"""gko-push — FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI

from gko import __version__
from gko.api.push import router as push_router
from gko.config import AppConfig
from gko.push.service import PushService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state.config
    service = PushService(config)
    app.state.push_service = service
    logger.info("Push service started (%s)", config.environment)

    yield

    await service.close()
    logger.info("Application shutdown complete")


def _init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK if a DSN is configured and not in development."""
    if not dsn or environment == "development":
        return
    sentry_sdk.init(
        dsn,
        environment=environment,
        send_default_pii=False,
        traces_sample_rate=0,
        send_client_reports=False,
        auto_session_tracking=False,
    )


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = AppConfig.from_yaml()

    _init_sentry(config.sentry_dsn, config.environment)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.server.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="gko-push",
        version=__version__,
        description="Fan-out delivery of FCM/WebPush and APNs notifications",
        lifespan=lifespan,
        debug=config.environment == "development",
    )
    app.state.config = config

    # Basic auth middleware (disabled when credentials not configured)
    if config.server.admin_user and config.server.admin_password:
        from gko.middleware import BasicAuthMiddleware

        app.add_middleware(
            BasicAuthMiddleware,
            username=config.server.admin_user,
            password=config.server.admin_password,
        )

    app.include_router(push_router)

    return app


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    config = AppConfig.from_yaml()
    app = create_app(config)

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
    )


if __name__ == "__main__":
    cli_entry()
