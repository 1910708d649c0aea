"""Main FastAPI application"""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

from src.click_attribution.api.endpoints import health, webhook, clicks, sync
from src.click_attribution.config import Settings, get_settings, settings as default_settings
from src.click_attribution.database import SessionLocal, check_connection, get_db
from src.click_attribution.exceptions import StoreUnavailableError
from src.click_attribution.services.export_sync import ExportSyncEngine
from src.click_attribution.services.scheduler import build_export_engine, start_scheduler
from src.click_attribution.services.secrets import SecretCache, build_secret_cache

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Settings = default_settings,
    session_factory: Callable[[], Session] = SessionLocal,
    export_engine: Optional[ExportSyncEngine] = None,
    secret_cache: Optional[SecretCache] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting click attribution API in {settings.APP_ENV} environment")
        settings.validate_for_production()

        app.state.secret_cache = secret_cache or build_secret_cache(settings)
        app.state.export_engine = export_engine or build_export_engine(settings, session_factory)

        try:
            check_connection(
                session_factory,
                retries=settings.STORE_CONNECT_RETRIES,
                delay_seconds=settings.STORE_CONNECT_RETRY_DELAY_SECONDS,
            )
            app.state.store_ready = True
        except StoreUnavailableError as e:
            logger.error(f"Session store unavailable, service marked not ready: {e}")
            app.state.store_ready = False

        scheduler = None
        if settings.SCHEDULER_ENABLED:
            scheduler = start_scheduler(app.state.export_engine, settings.SYNC_INTERVAL_MINUTES)

        yield

        app.state.export_engine.cancel()
        if scheduler:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        logger.info("Shutting down click attribution API")

    app = FastAPI(
        title="Click Attribution",
        description="Attributes inbound messaging conversations to marketing link clicks and exports engagements",
        version="0.1.0",
        lifespan=lifespan
    )

    if session_factory is not SessionLocal:
        def get_injected_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = get_injected_db

    if settings is not default_settings:
        app.dependency_overrides[get_settings] = lambda: settings

    app.include_router(health.router)
    app.include_router(webhook.router)
    app.include_router(clicks.router)
    app.include_router(sync.router)

    @app.get("/")
    def root():
        return {
            "message": "Click Attribution API",
            "environment": settings.APP_ENV,
            "docs": "/docs"
        }

    return app


configure_logging(default_settings.LOG_LEVEL)
app = create_app()
