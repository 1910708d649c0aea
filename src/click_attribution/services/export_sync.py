"""Export of confirmed engagements to the reporting spreadsheet.

A sync cycle reads engaged-but-unexported sessions, appends them as rows and
then marks each one exported. Appending before marking means a failure
between the two steps re-exports the affected sessions on the next cycle:
delivery is at-least-once and duplicate rows are possible, lost rows are not.
Mark failures are reported in the cycle's errors and never cause a
re-append within the same cycle.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from src.click_attribution.config import Settings
from src.click_attribution.exceptions import ExportError
from src.click_attribution.models.click_session import ClickSession
from src.click_attribution.services.session_store import SessionStore, as_utc, utc_now
from src.click_attribution.services.sheets import SheetsProvider

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "Timestamp", "Phone Number", "Source", "Medium", "Campaign", "Content",
    "Placement", "Engaged", "Engaged At", "Attribution Method", "Contact ID",
    "Conversation ID", "Contact Name", "Last Message",
]

NOT_AVAILABLE = "N/A"
DEFAULT_CONTACT_NAME = "Anonymous"
DEFAULT_LAST_MESSAGE = "No text content"
DEFAULT_ATTRIBUTION_METHOD = "unknown"

RATE_LIMIT_MARKERS = ("quota", "rate limit", "ratelimit", "too many requests")


def _text(value: Optional[str], default: str) -> str:
    if value is None:
        return default
    value = str(value).strip()
    return value or default


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def session_to_row(
    session: ClickSession,
    now: Optional[datetime] = None,
    last_message_max: int = 150,
    contact_name_max: int = 100,
) -> list[str]:
    """Convert a session into a fixed-width row; every column has a fallback."""
    timestamp = _iso(session.created_at) or (now or utc_now()).isoformat()
    last_message = _text(session.last_message_text, "")
    last_message = " ".join(last_message[:last_message_max].splitlines()) if last_message else DEFAULT_LAST_MESSAGE

    return [
        timestamp,
        _text(session.phone_number, NOT_AVAILABLE),
        _text(session.source, "direct"),
        _text(session.medium, "organic"),
        _text(session.campaign, "none"),
        _text(session.content, "none"),
        _text(session.placement, NOT_AVAILABLE),
        "Y" if session.has_engaged else "N",
        _iso(session.engaged_at) or NOT_AVAILABLE,
        _text(session.attribution_method, DEFAULT_ATTRIBUTION_METHOD),
        _text(session.contact_id, NOT_AVAILABLE),
        _text(session.conversation_id, NOT_AVAILABLE),
        _text(session.contact_name, DEFAULT_CONTACT_NAME)[:contact_name_max],
        last_message,
    ]


def is_rate_limited(error: BaseException) -> bool:
    status = getattr(error, "code", None)
    response = getattr(error, "response", None)
    if status == 429 or getattr(response, "status_code", None) == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


@dataclass
class SyncResult:
    count: int = 0
    marked: int = 0
    errors: list[str] = field(default_factory=list)
    retryable: bool = False
    skipped: bool = False
    attempts: int = 0
    duration_ms: int = 0
    updated_range: Optional[str] = None
    timestamp: str = ""

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "count": self.count,
            "marked": self.marked,
            "success": self.success,
            "skipped": self.skipped,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp,
        }
        if self.errors:
            data["errors"] = list(self.errors)
            data["retryable"] = self.retryable
        if self.updated_range:
            data["updated_range"] = self.updated_range
        return data


@dataclass
class ExportConfig:
    sheet_name: str = "Sheet1"
    batch_size: int = 250
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    include_unattributed: bool = False
    last_message_max: int = 150
    contact_name_max: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExportConfig":
        return cls(
            sheet_name=settings.SHEETS_SHEET_NAME,
            batch_size=settings.EXPORT_BATCH_SIZE,
            max_retries=settings.EXPORT_MAX_RETRIES,
            retry_delay_seconds=settings.EXPORT_RETRY_DELAY_SECONDS,
            include_unattributed=settings.EXPORT_INCLUDE_UNATTRIBUTED,
            last_message_max=settings.LAST_MESSAGE_MAX_LENGTH,
            contact_name_max=settings.CONTACT_NAME_MAX_LENGTH,
        )


class ExportSyncEngine:
    """Single-flight export loop for one destination spreadsheet."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider: SheetsProvider,
        config: ExportConfig,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._rerun_requested = False
        self.last_result: Optional[SyncResult] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        """Abandon the in-flight cycle between documents."""
        self._cancel.set()

    def request_sync(self) -> SyncResult:
        """Change-triggered entry point; overlapping requests collapse into one rerun."""
        return self.sync_batch()

    def sync_batch(self) -> SyncResult:
        if not self._lock.acquire(blocking=False):
            self._rerun_requested = True
            logger.info("Export sync already running, queued a follow-up pass")
            return SyncResult(skipped=True, timestamp=self.clock().isoformat())

        try:
            self._cancel.clear()
            result = self._run_with_retry()
            while self._rerun_requested and not self._cancel.is_set():
                self._rerun_requested = False
                follow_up = self._run_with_retry()
                result.count += follow_up.count
                result.marked += follow_up.marked
                result.errors.extend(follow_up.errors)
                result.retryable = result.retryable or follow_up.retryable
                result.attempts += follow_up.attempts
                result.updated_range = follow_up.updated_range or result.updated_range
            self.last_result = result
            logger.info(f"Sync result: {result.to_dict()}")
            return result
        finally:
            self._lock.release()

    def _run_with_retry(self) -> SyncResult:
        """Run one cycle, retrying ExportError with a linearly growing delay."""
        started = time.monotonic()
        errors: list[str] = []
        delay = self.config.retry_delay_seconds
        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_incrementing(start=delay, increment=delay),
            retry=retry_if_exception_type(ExportError),
            sleep=self.sleep,
            reraise=True,
        )

        attempts = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    try:
                        result = self._run_once()
                    except ExportError as e:
                        errors.append(f"attempt {attempts}: {e}")
                        logger.warning(f"Sync attempt {attempts}/{self.config.max_retries} failed: {e}")
                        raise
        except ExportError as e:
            logger.error("Export sync retries exhausted, leaving records for the next cycle")
            result = SyncResult(errors=errors, retryable=e.retryable)

        result.attempts = attempts
        result.duration_ms = int((time.monotonic() - started) * 1000)
        result.timestamp = self.clock().isoformat()
        return result

    def _run_once(self) -> SyncResult:
        with self.session_factory() as db:
            store = SessionStore(db, self.clock)
            try:
                pending = store.find_pending_export(self.config.batch_size, self.config.include_unattributed)
            except SQLAlchemyError as e:
                raise ExportError(f"pending query failed: {e}") from e
            if not pending:
                logger.info("No new records to export")
                return SyncResult()

            now = self.clock()
            rows = [
                session_to_row(s, now, self.config.last_message_max, self.config.contact_name_max)
                for s in pending
            ]
            session_ids = [s.session_id for s in pending]
            db.rollback()
            logger.info(f"Found {len(rows)} sessions to export")

            try:
                self.provider.ensure_sheet(self.config.sheet_name, EXPORT_HEADERS)
                updated_range = self.provider.append_rows(self.config.sheet_name, rows)
            except Exception as e:
                raise ExportError(str(e), retryable=is_rate_limited(e)) from e

            marked, mark_errors = self._mark_exported(store, session_ids)
            return SyncResult(
                count=len(rows),
                marked=marked,
                errors=mark_errors,
                updated_range=updated_range,
            )

    def _mark_exported(self, store: SessionStore, session_ids: list[str]) -> tuple[int, list[str]]:
        marked = 0
        errors: list[str] = []

        for index, session_id in enumerate(session_ids):
            if self._cancel.is_set():
                remaining = len(session_ids) - index
                errors.append(f"cancelled with {remaining} sessions left unmarked")
                logger.warning(f"Export cancelled, {remaining} sessions will be re-exported next cycle")
                break
            try:
                if store.mark_exported(session_id):
                    marked += 1
                else:
                    logger.debug(f"Session {session_id} was already marked exported")
            except SQLAlchemyError as e:
                store.db.rollback()
                errors.append(f"mark {session_id}: {e}")
                logger.error(f"Failed to mark session {session_id} exported, it will be re-exported: {e}")

        return marked, errors
