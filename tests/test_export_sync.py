"""Tests for the export sync engine."""

import pytest
from sqlalchemy.exc import OperationalError

from src.click_attribution.models import ClickSession
from src.click_attribution.services.export_sync import (
    EXPORT_HEADERS,
    ExportConfig,
    ExportSyncEngine,
    is_rate_limited,
    session_to_row,
)
from src.click_attribution.services.session_store import SessionStore
from src.click_attribution.services.sheets import MockSheetsProvider


def engaged(make_click, session_id, clock, **fields):
    values = {"has_engaged": True, "engaged_at": clock(), "attribution_method": "phone", "phone_number": "919876543210"}
    values.update(fields)
    return make_click(session_id, **values)


class FlakySheets(MockSheetsProvider):
    def __init__(self, failures, error=RuntimeError("backend unavailable")):
        super().__init__()
        self.failures = failures
        self.error = error

    def append_rows(self, sheet_name, rows):
        if self.failures:
            self.failures -= 1
            raise self.error
        return super().append_rows(sheet_name, rows)


class TestSessionToRow:
    """Test row conversion."""

    def test_full_session(self, clock):
        session = ClickSession(
            session_id="s1",
            source="fb",
            medium="paid",
            campaign="spring",
            content="video",
            placement="feed",
            phone_number="919876543210",
            has_engaged=True,
            created_at=clock(),
            engaged_at=clock(),
            attribution_method="context",
            contact_id="ct",
            conversation_id="cv",
            contact_name="Asha",
            last_message_text="line one\nline two",
        )

        row = session_to_row(session, clock())

        assert row == [
            "2026-03-01T12:00:00+00:00", "919876543210", "fb", "paid", "spring", "video",
            "feed", "Y", "2026-03-01T12:00:00+00:00", "context", "ct", "cv", "Asha",
            "line one line two",
        ]

    def test_every_column_has_a_fallback(self, clock):
        session = ClickSession(session_id="s1", has_engaged=False)

        row = session_to_row(session, clock())

        assert len(row) == len(EXPORT_HEADERS)
        assert all(isinstance(value, str) and value for value in row)
        assert row == [
            clock().isoformat(), "N/A", "direct", "organic", "none", "none", "N/A", "N",
            "N/A", "unknown", "N/A", "N/A", "Anonymous", "No text content",
        ]

    def test_truncates_long_text(self, clock):
        session = ClickSession(session_id="s1", contact_name="n" * 300, last_message_text="m" * 500)

        row = session_to_row(session, clock(), last_message_max=150, contact_name_max=100)

        assert len(row[12]) == 100
        assert len(row[13]) == 150


class TestIsRateLimited:
    """Test rate limit classification."""

    def test_status_code(self):
        error = Exception("boom")
        error.code = 429
        assert is_rate_limited(error)

    def test_message(self):
        assert is_rate_limited(Exception("Quota exceeded for quota metric 'Write requests'"))
        assert is_rate_limited(Exception("429 Too Many Requests"))

    def test_other_errors(self):
        assert not is_rate_limited(Exception("permission denied"))


class TestSyncBatch:
    """Test export cycles."""

    def test_no_pending_records(self, export_engine, sheets):
        result = export_engine.sync_batch()

        assert result.count == 0
        assert result.success
        assert sheets.append_calls == 0

    def test_exports_and_marks_pending_sessions(self, export_engine, sheets, make_click, clock, db):
        engaged(make_click, "s1", clock)
        engaged(make_click, "s2", clock)
        make_click("not-engaged")

        result = export_engine.sync_batch()

        assert result.count == 2
        assert result.marked == 2
        assert result.success
        assert result.attempts == 1
        assert sheets.sheets["Sheet1"][0] == EXPORT_HEADERS
        assert [row[1] for row in sheets.data_rows("Sheet1")] == ["919876543210", "919876543210"]
        db.expire_all()
        assert db.get(ClickSession, "s1").synced_to_export is True
        assert db.get(ClickSession, "not-engaged").synced_to_export is False

    def test_second_cycle_does_not_re_export(self, export_engine, sheets, make_click, clock):
        engaged(make_click, "s1", clock)

        export_engine.sync_batch()
        result = export_engine.sync_batch()

        assert result.count == 0
        assert len(sheets.data_rows("Sheet1")) == 1
        assert len(sheets.sheets["Sheet1"]) == 2

    def test_direct_sessions_excluded_by_default(self, export_engine, sheets, make_click, clock):
        engaged(make_click, "direct", clock, attribution_method="direct")

        assert export_engine.sync_batch().count == 0

    def test_include_unattributed(self, session_factory, sheets, make_click, clock):
        engaged(make_click, "direct", clock, attribution_method="direct")
        engine = ExportSyncEngine(
            session_factory, sheets, ExportConfig(include_unattributed=True), clock=clock, sleep=lambda s: None
        )

        assert engine.sync_batch().count == 1

    def test_respects_batch_size(self, session_factory, sheets, make_click, clock):
        for i in range(5):
            engaged(make_click, f"s{i}", clock)
        engine = ExportSyncEngine(session_factory, sheets, ExportConfig(batch_size=2), clock=clock)

        assert engine.sync_batch().count == 2
        assert engine.sync_batch().count == 2
        assert engine.sync_batch().count == 1

    def test_mark_failure_is_reexported_next_cycle(
        self, export_engine, sheets, make_click, clock, monkeypatch
    ):
        for session_id in ("s1", "s2", "s3"):
            engaged(make_click, session_id, clock, phone_number=session_id)
        original = SessionStore.mark_exported
        failing = {"s2"}

        def flaky_mark(self, session_id):
            if session_id in failing:
                raise OperationalError("UPDATE", {}, Exception("connection reset"))
            return original(self, session_id)

        monkeypatch.setattr(SessionStore, "mark_exported", flaky_mark)

        first = export_engine.sync_batch()

        assert first.count == 3
        assert first.marked == 2
        assert not first.success
        assert any("s2" in error for error in first.errors)
        assert sheets.append_calls == 1

        failing.clear()
        second = export_engine.sync_batch()

        assert second.count == 1
        assert second.marked == 1
        assert [row[1] for row in sheets.data_rows("Sheet1")] == ["s1", "s2", "s3", "s2"]

    def test_retries_with_linear_backoff(self, session_factory, make_click, clock):
        engaged(make_click, "s1", clock)
        sheets = FlakySheets(failures=2)
        sleeps = []
        engine = ExportSyncEngine(
            session_factory, sheets, ExportConfig(max_retries=3, retry_delay_seconds=2.0),
            clock=clock, sleep=sleeps.append,
        )

        result = engine.sync_batch()

        assert result.success
        assert result.attempts == 3
        assert result.count == 1
        assert sleeps == [2.0, 4.0]

    def test_exhausted_retries_leave_records_pending(self, session_factory, make_click, clock, db):
        engaged(make_click, "s1", clock)
        sheets = FlakySheets(failures=5, error=Exception("Quota exceeded"))
        sleeps = []
        engine = ExportSyncEngine(
            session_factory, sheets, ExportConfig(max_retries=3, retry_delay_seconds=1.0),
            clock=clock, sleep=sleeps.append,
        )

        result = engine.sync_batch()

        assert not result.success
        assert result.retryable is True
        assert result.attempts == 3
        assert len(result.errors) == 3
        assert sleeps == [1.0, 2.0]
        db.expire_all()
        assert db.get(ClickSession, "s1").synced_to_export is False

    def test_non_rate_limit_failure_is_not_retryable(self, session_factory, make_click, clock):
        engaged(make_click, "s1", clock)
        sheets = FlakySheets(failures=5, error=PermissionError("caller does not have permission"))
        engine = ExportSyncEngine(
            session_factory, sheets, ExportConfig(max_retries=2, retry_delay_seconds=0), clock=clock, sleep=lambda s: None
        )

        result = engine.sync_batch()

        assert result.retryable is False
        assert result.attempts == 2
        assert "permission" in result.errors[-1]

    def test_pending_query_failure_is_retried(self, session_factory, sheets, make_click, clock, monkeypatch):
        engaged(make_click, "s1", clock)
        original = SessionStore.find_pending_export
        failures = [OperationalError("SELECT", {}, Exception("server closed the connection"))]

        def flaky_pending(self, limit, include_unattributed=False):
            if failures:
                raise failures.pop()
            return original(self, limit, include_unattributed)

        monkeypatch.setattr(SessionStore, "find_pending_export", flaky_pending)
        sleeps = []
        engine = ExportSyncEngine(
            session_factory, sheets, ExportConfig(retry_delay_seconds=0.5), clock=clock, sleep=sleeps.append
        )

        result = engine.sync_batch()

        assert result.success
        assert result.attempts == 2
        assert result.count == 1
        assert sleeps == [0.5]

    def test_unexpected_errors_are_not_retried(self, session_factory, make_click, clock, monkeypatch):
        engaged(make_click, "s1", clock)
        sleeps = []
        engine = ExportSyncEngine(session_factory, MockSheetsProvider(), ExportConfig(), clock=clock, sleep=sleeps.append)
        monkeypatch.setattr(engine, "_run_once", lambda: 1 / 0)

        with pytest.raises(ZeroDivisionError):
            engine.sync_batch()

        assert sleeps == []
        assert engine.is_running is False

    def test_overlapping_call_is_skipped_and_rerun(self, export_engine, sheets, make_click, clock):
        engaged(make_click, "s1", clock)
        export_engine._lock.acquire()
        try:
            overlapping = export_engine.sync_batch()
        finally:
            export_engine._lock.release()

        assert overlapping.skipped is True
        assert sheets.append_calls == 0
        assert export_engine._rerun_requested is True

        engaged(make_click, "s2", clock)
        result = export_engine.sync_batch()

        assert result.count == 2
        assert export_engine._rerun_requested is False

    def test_cancel_stops_marking(self, session_factory, make_click, clock, db):
        for session_id in ("s1", "s2", "s3"):
            engaged(make_click, session_id, clock)

        class CancellingSheets(MockSheetsProvider):
            engine = None

            def append_rows(self, sheet_name, rows):
                updated = super().append_rows(sheet_name, rows)
                self.engine.cancel()
                return updated

        sheets = CancellingSheets()
        engine = ExportSyncEngine(session_factory, sheets, ExportConfig(), clock=clock)
        sheets.engine = engine

        result = engine.sync_batch()

        assert result.count == 3
        assert result.marked == 0
        assert "cancelled" in result.errors[0]
        db.expire_all()
        assert db.get(ClickSession, "s1").synced_to_export is False

    def test_headers_written_once(self, export_engine, sheets, make_click, clock):
        engaged(make_click, "s1", clock)
        export_engine.sync_batch()
        engaged(make_click, "s2", clock)
        export_engine.sync_batch()

        rows = sheets.sheets["Sheet1"]
        assert rows.count(EXPORT_HEADERS) == 1
        assert len(rows) == 3

    def test_records_last_result(self, export_engine):
        assert export_engine.last_result is None
        assert export_engine.is_running is False

        result = export_engine.sync_batch()

        assert export_engine.last_result is result
        assert export_engine.is_running is False
