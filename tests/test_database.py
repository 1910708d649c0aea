"""Tests for store connectivity checks, configuration and the scheduler."""

from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from src.click_attribution.config import Settings
from src.click_attribution.database import check_connection
from src.click_attribution.exceptions import StoreUnavailableError
from src.click_attribution.services.scheduler import SYNC_JOB_ID, run_sync_tick, start_scheduler


def failing_factory(failures):
    """Session factory whose first `failures` sessions cannot reach the store."""
    state = {"calls": 0}

    def factory():
        state["calls"] += 1
        session = MagicMock()
        session.__enter__.return_value = session
        if state["calls"] <= failures:
            session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
        return session

    factory.state = state
    return factory


class TestCheckConnection:
    """Test startup connectivity retries."""

    def test_succeeds_against_real_engine(self, session_factory):
        check_connection(session_factory, retries=1, sleep=lambda s: None)

    def test_retries_then_succeeds(self):
        sleeps = []
        factory = failing_factory(failures=2)

        check_connection(factory, retries=3, delay_seconds=2.0, sleep=sleeps.append)

        assert factory.state["calls"] == 3
        assert sleeps == [2.0, 2.0]

    def test_raises_after_exhausting_retries(self):
        sleeps = []

        with pytest.raises(StoreUnavailableError) as exc_info:
            check_connection(failing_factory(failures=5), retries=3, delay_seconds=1.0, sleep=sleeps.append)

        assert sleeps == [1.0, 1.0]
        assert isinstance(exc_info.value.__cause__, OperationalError)


class TestSettings:
    """Test configuration validation."""

    def test_defaults(self):
        settings = Settings()

        assert settings.PHONE_COUNTRY_CODE == "91"
        assert settings.CHANNEL_MATCH_WINDOW_MINUTES == 5
        assert settings.EXPORT_BATCH_SIZE == 250
        assert settings.EXPORT_MAX_RETRIES == 3

    def test_reads_env_file_and_ignores_unknown_keys(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("SYNC_INTERVAL_MINUTES=15\nUNRELATED_KEY=1\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("SYNC_INTERVAL_MINUTES", raising=False)

        settings = Settings()

        assert Settings.model_config["env_file"] == ".env"
        assert settings.SYNC_INTERVAL_MINUTES == 15

    def test_rejects_unknown_direct_policy(self):
        with pytest.raises(ValidationError):
            Settings(DIRECT_ENGAGEMENT_POLICY="drop")

    def test_rejects_unknown_environment(self):
        with pytest.raises(ValidationError):
            Settings(APP_ENV="staging-2")

    def test_production_requires_token_and_sheet(self):
        settings = Settings(APP_ENV="prod", WEBHOOK_TOKEN="", GCP_PROJECT_ID="", SHEETS_SPREADSHEET_ID="")

        with pytest.raises(ValueError) as exc_info:
            settings.validate_for_production()

        assert "WEBHOOK_TOKEN" in str(exc_info.value)
        assert "SHEETS_SPREADSHEET_ID" in str(exc_info.value)

    def test_production_ok_when_configured(self):
        Settings(APP_ENV="prod", GCP_PROJECT_ID="proj", SHEETS_SPREADSHEET_ID="sheet").validate_for_production()


class TestScheduler:
    """Test the scheduled export job."""

    def test_tick_returns_engine_result(self):
        engine = MagicMock()
        engine.sync_batch.return_value.count = 4

        assert run_sync_tick(engine).count == 4

    def test_tick_never_raises(self):
        engine = MagicMock()
        engine.sync_batch.side_effect = RuntimeError("boom")

        result = run_sync_tick(engine)

        assert result.errors == ["boom"]
        assert not result.success

    def test_start_scheduler_registers_single_instance_job(self):
        engine = MagicMock()
        scheduler = start_scheduler(engine, interval_minutes=5)
        try:
            job = scheduler.get_job(SYNC_JOB_ID)
            assert job is not None
            assert job.args == (engine,)
            assert job.max_instances == 1
            assert job.coalesce is True
        finally:
            scheduler.shutdown(wait=False)
