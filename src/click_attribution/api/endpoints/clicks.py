"""Click storage endpoint used by the link redirect path"""
import logging

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.click_attribution.api.deps import Store
from src.click_attribution.config import Settings, get_settings
from src.click_attribution.schemas.click import ClickCreate, ClickResponse
from src.click_attribution.services.phone import normalize_phone

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Clicks"])


@router.post("/store-click", response_model=ClickResponse, status_code=201)
def store_click(
    click: ClickCreate,
    response: Response,
    store: Store,
    settings: Settings = Depends(get_settings),
):
    phone = normalize_phone(
        click.phone_number,
        settings.PHONE_COUNTRY_CODE,
        settings.PHONE_NATIONAL_NUMBER_LENGTH,
    )

    try:
        session, created = store.create_click(click.session_id, click.params, phone_number=phone or None)
    except SQLAlchemyError:
        logger.exception(f"Storage error for click {click.session_id}")
        store.db.rollback()
        return JSONResponse(status_code=500, content={"error": "Database operation failed"})

    if not created:
        response.status_code = 200
        logger.info(f"Click {click.session_id} already stored, keeping first write")
        return ClickResponse(message="Click already stored", sessionId=session.session_id, created=False)

    logger.info(f"Stored click {session.session_id} source={session.source} campaign={session.campaign}")
    return ClickResponse(message="Click stored", sessionId=session.session_id, created=True)
