"""API dependencies - database session, collaborators and webhook authentication"""
import hmac
import logging
from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from src.click_attribution.config import Settings, get_settings
from src.click_attribution.database import get_db
from src.click_attribution.services.attribution import AttributionResolver, ResolverConfig
from src.click_attribution.services.engagement import EngagementCommitter, InboundEventProcessor
from src.click_attribution.services.export_sync import ExportSyncEngine
from src.click_attribution.services.secrets import SecretCache
from src.click_attribution.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def get_secret_cache(request: Request) -> SecretCache:
    return request.app.state.secret_cache


def get_export_engine(request: Request) -> ExportSyncEngine:
    return request.app.state.export_engine


def get_session_store(db: Session = Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def get_event_processor(
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
) -> InboundEventProcessor:
    resolver = AttributionResolver(store, ResolverConfig.from_settings(settings), clock=store.clock)
    committer = EngagementCommitter(
        store,
        settings.DIRECT_ENGAGEMENT_POLICY,
        clock=store.clock,
        duplicate_window=timedelta(minutes=settings.DUPLICATE_WINDOW_MINUTES),
    )
    return InboundEventProcessor(resolver, committer)


def verify_webhook_token(
    x_webhook_token: Optional[str] = Header(None),
    secrets: SecretCache = Depends(get_secret_cache),
    settings: Settings = Depends(get_settings),
) -> None:
    try:
        expected = secrets.get(settings.WEBHOOK_TOKEN_SECRET_NAME)
    except Exception:
        logger.exception("Webhook token lookup failed")
        raise HTTPException(status_code=500, detail="Authentication failed")

    if not expected:
        logger.error("Webhook token not configured - webhook requests blocked")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not x_webhook_token or not hmac.compare_digest(x_webhook_token, expected):
        logger.warning("Rejected webhook request with invalid token")
        raise HTTPException(status_code=401, detail="Invalid token")


Store = Annotated[SessionStore, Depends(get_session_store)]
EventProcessor = Annotated[InboundEventProcessor, Depends(get_event_processor)]
ExportEngine = Annotated[ExportSyncEngine, Depends(get_export_engine)]
