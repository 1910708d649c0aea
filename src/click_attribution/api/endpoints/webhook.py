"""Inbound messaging webhook - attributes each message to a click session"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.click_attribution.api.deps import EventProcessor, verify_webhook_token
from src.click_attribution.config import Settings, get_settings
from src.click_attribution.exceptions import AttributionError
from src.click_attribution.schemas.webhook import WebhookEvent, WebhookResponse
from src.click_attribution.services.engagement import STATUS_PROCESSED

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhook"])


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@router.post("/inbound", response_model=WebhookResponse, dependencies=[Depends(verify_webhook_token)])
async def inbound_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    processor: EventProcessor,
    settings: Settings = Depends(get_settings),
):
    try:
        payload = await request.json()
    except Exception:
        return _error(400, "Invalid JSON")

    try:
        webhook_event = WebhookEvent.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Rejected malformed webhook payload: {e}")
        return _error(400, "Invalid payload")

    event = webhook_event.to_event()
    if not event.sender_phone:
        logger.warning("Webhook event missing sender phone")
        return _error(400, "sender_phone is required")

    try:
        result = processor.process(event)
    except AttributionError as e:
        logger.exception("Webhook processing error")
        return _error(500, "Processing failed", details=str(e))

    engine = getattr(request.app.state, "export_engine", None)
    if result.status == STATUS_PROCESSED and result.session_id and settings.EXPORT_ON_ENGAGEMENT and engine:
        background_tasks.add_task(engine.request_sync)

    logger.info(f"Processed {result.attribution_method} message, status={result.status}, session={result.session_id}")
    return WebhookResponse(
        status=result.status,
        sessionId=result.session_id,
        attributionMethod=result.attribution_method,
    )
