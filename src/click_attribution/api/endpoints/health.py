"""Health and readiness endpoints"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from src.click_attribution.api.deps import Store
from src.click_attribution.config import Settings, get_settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(store: Store, settings: Settings = Depends(get_settings)):
    db_status = "unknown"
    try:
        store.ping()
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return {
        "status": "ok",
        "environment": settings.APP_ENV,
        "database": db_status
    }


@router.get("/readiness")
def readiness(request: Request, store: Store):
    if not getattr(request.app.state, "store_ready", False):
        return JSONResponse(status_code=503, content={"error": "Not ready"})
    try:
        store.ping()
    except Exception:
        return JSONResponse(status_code=503, content={"error": "Not ready"})
    return {"status": "ready"}
