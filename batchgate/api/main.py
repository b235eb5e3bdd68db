"""FastAPI application factory and server entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import AppConfig, load_config
from ..utils.logging import configure_logging
from .config import ApiSettings
from .deps.providers import Services, build_services, get_settings
from .errors import register_error_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    settings: ApiSettings = app.state.settings
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Starting batchgate API on %s:%s", settings.host, settings.port)

    services: Services = app.state.services
    await services.start()

    yield

    await services.stop()
    logger.info("Shutting down batchgate API")


def create_app(
    settings: ApiSettings | None = None,
    cfg: Optional[AppConfig] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """Build and return the FastAPI application.

    *services* lets callers (tests, embedding) supply pre-wired components;
    otherwise they are built from *cfg* or the YAML file named by
    ``settings.config_path``.
    """
    if settings is None:
        settings = get_settings()
    if services is None:
        if cfg is None:
            cfg = load_config(settings.config_path)
        services = build_services(cfg, settings.job_db_path)

    app = FastAPI(
        title="Batchgate API",
        description="Launch Pig, Hive, streaming and jar jobs asynchronously and track them to completion.",
        version=__version__,
        lifespan=_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.services = services

    # CORS
    origins = [o.strip() for o in settings.cors_origins.split(",")]
    allow_creds = "*" not in origins
    if not allow_creds:
        logger.warning(
            "CORS_ORIGINS contains '*'. Credentials will NOT be allowed. "
            "Set explicit origins for credentialed cross-origin requests."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_creds,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handlers
    register_error_handlers(app)

    from .routers import all_routers

    for router in all_routers():
        app.include_router(router)

    return app


def run_server() -> None:
    """CLI entry point: ``python -m batchgate.api.main``."""
    import uvicorn

    settings = get_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run_server()
