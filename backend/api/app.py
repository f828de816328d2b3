"""FastAPI application factory"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from core.config import Settings, get_settings
from core.container import Engine
from core.logging import setup_logging
from routers import auth_router, extension_router
from shared.database import DatabaseManager, PoolConfig
from shared.migrations.runner import MigrationRunner

logger = logging.getLogger(__name__)

SERVICE_NAME = "gallery-ebs"
VERSION = "1.0.0"


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()

    # Setup logging first
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Connect the database, apply migrations and build the engine"""
        app.state.started_at = time.time()
        logger.info(f"Starting {SERVICE_NAME} ({settings.environment})")

        db = DatabaseManager(settings.database_url, PoolConfig(ssl=settings.database_ssl))
        await db.connect()
        applied = await MigrationRunner(db.pool).run_pending()
        if applied:
            logger.info(f"Applied migrations: {', '.join(applied)}")

        engine = Engine.build(settings, db)
        app.state.engine = engine

        yield

        logger.info(f"Shutting down {SERVICE_NAME}")
        try:
            await engine.close()
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")
        await db.disconnect()

    app = FastAPI(
        title="Gallery Extension Backend",
        description="Backend for a subscriber-gated Twitch Extension photo gallery",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.started_at = time.time()

    # Extension frontends are served from Twitch's CDN origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    app.include_router(auth_router.router)
    app.include_router(extension_router.router)

    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": SERVICE_NAME, "status": "running"}

    # Liveness probe, no external dependency
    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - app.state.started_at),
        }

    @app.get("/status")
    async def status():
        """Readiness endpoint, includes a DB round trip"""
        engine: Engine | None = getattr(app.state, "engine", None)
        db_ok = False
        if engine is not None and engine.db is not None:
            db_ok = await engine.db.check_health()
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "uptime_seconds": int(time.time() - app.state.started_at),
            "db_connected": db_ok,
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        return "pong"

    logger.info("FastAPI application configured")

    return app
