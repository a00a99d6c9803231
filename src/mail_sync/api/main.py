"""FastAPI application factory and lifespan management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI

from mail_sync.api.database import Database
from mail_sync.api.middleware import setup_error_handlers, setup_logging
from mail_sync.api.routes import (
    health_router,
    resume_in_background,
    set_health_database,
    set_internal_secret,
    set_sync_runtime,
    set_sync_session,
    sync_router,
)
from mail_sync.core.config import Config
from mail_sync.core.logging import configure_logging
from mail_sync.services.continuation import ContinuationDispatcher, LocalContinuationDispatcher
from mail_sync.services.sync_service import SyncRuntime

logger = structlog.get_logger(__name__)


def get_config(env_file: Path | None = None) -> Config:
    """Load configuration from the environment and ``.env``.

    Args:
        env_file: Path to .env file (default: ``.env`` in the working directory).

    Returns:
        Config instance.
    """
    return Config.from_env(env_file or Path(".env"))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan - startup and shutdown.

    Args:
        app: FastAPI application instance.

    Yields:
        Control to the application after startup is complete.
    """
    config: Config = app.state.config

    await logger.ainfo(
        "application_starting",
        environment=config.environment,
        host=config.host,
        port=config.port,
        self_dispatch=config.has_self_dispatch(),
    )

    db = Database(config.database_url)
    await db.connect()
    app.state.db = db
    set_sync_session(db.session)
    set_health_database(db)
    await logger.ainfo("database_connected")

    # Continuations call back over HTTP when reachable, otherwise run in-process
    dispatcher: ContinuationDispatcher | None = None
    if not config.has_self_dispatch():
        dispatcher = LocalContinuationDispatcher(resume_in_background)
    runtime = SyncRuntime.from_config(config, dispatcher=dispatcher)
    app.state.runtime = runtime
    set_sync_runtime(runtime)
    set_internal_secret(config.internal_secret)

    yield

    await logger.ainfo("application_shutting_down")

    set_sync_runtime(None)
    set_internal_secret(None)
    await runtime.close()

    set_sync_session(None)
    set_health_database(None)
    await db.disconnect()

    await logger.ainfo("application_shutdown_complete")


def create_app(config: Config | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Optional configuration. If not provided, configuration is
                loaded from environment variables.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = get_config()

    configure_logging(config.log_level, json_logs=config.json_logs)

    app = FastAPI(
        title="mail-sync API",
        description="Resumable, rate-limit aware mailbox synchronization",
        version="0.1.0",
        docs_url="/docs" if config.is_development else None,
        redoc_url="/redoc" if config.is_development else None,
        openapi_url="/openapi.json" if config.is_development else None,
        lifespan=lifespan,
    )
    app.state.config = config

    setup_error_handlers(app)
    setup_logging(app)

    app.include_router(health_router)
    app.include_router(sync_router)

    return app


def run_server(config: Config | None = None) -> None:
    """Run the API server using uvicorn.

    Args:
        config: Optional configuration. If not provided, configuration is
                loaded from environment variables.
    """
    import uvicorn

    if config is None:
        config = get_config()

    uvicorn.run(
        "mail_sync.api.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.is_development,
        log_level=config.log_level.lower(),
    )
