"""Export sync trigger and status endpoints"""
from fastapi import APIRouter, Depends

from src.click_attribution.api.deps import ExportEngine, Store
from src.click_attribution.config import Settings, get_settings
from src.click_attribution.schemas.sync import SyncResponse, SyncStatusResponse
from src.click_attribution.services.scheduler import run_sync_tick

router = APIRouter(tags=["Sync"])


@router.post("/scheduled-sync", response_model=SyncResponse, response_model_exclude_none=True)
def scheduled_sync(engine: ExportEngine):
    return run_sync_tick(engine).to_dict()


@router.get("/sync/status", response_model=SyncStatusResponse, response_model_exclude_none=True)
def sync_status(
    engine: ExportEngine,
    store: Store,
    settings: Settings = Depends(get_settings),
):
    last = engine.last_result
    return {
        "pending": store.count_pending_export(settings.EXPORT_INCLUDE_UNATTRIBUTED),
        "running": engine.is_running,
        "last_result": last.to_dict() if last else None,
    }
