"""APScheduler-based export runner"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from src.click_attribution.config import Settings
from src.click_attribution.database import SessionLocal
from src.click_attribution.services.export_sync import ExportConfig, ExportSyncEngine, SyncResult
from src.click_attribution.services.sheets import get_sheets_provider

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "export_sync"


def build_export_engine(settings: Settings, session_factory=SessionLocal) -> ExportSyncEngine:
    return ExportSyncEngine(
        session_factory=session_factory,
        provider=get_sheets_provider(settings),
        config=ExportConfig.from_settings(settings),
    )


def run_sync_tick(engine: ExportSyncEngine) -> SyncResult:
    """Scheduler job body; failures are logged and reported, never raised."""
    logger.info("Export sync tick started")
    try:
        result = engine.sync_batch()
    except Exception as e:
        logger.exception("Error in export sync tick")
        result = SyncResult(errors=[str(e)])
    logger.info("Export sync tick completed")
    return result


def start_scheduler(engine: ExportSyncEngine, interval_minutes: int) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        run_sync_tick,
        'interval',
        minutes=interval_minutes,
        args=[engine],
        id=SYNC_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started - exporting every {interval_minutes} minutes")
    return scheduler
