"""Shared pytest fixtures for the click attribution service."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from src.click_attribution.config import Settings
from src.click_attribution.database import create_db_engine
from src.click_attribution.main import create_app
from src.click_attribution.models import Base, ClickSession
from src.click_attribution.services.attribution import AttributionResolver, ResolverConfig
from src.click_attribution.services.context_token import ContextTokenCodec
from src.click_attribution.services.engagement import EngagementCommitter, InboundEventProcessor
from src.click_attribution.services.export_sync import ExportConfig, ExportSyncEngine
from src.click_attribution.services.secrets import SecretCache, StaticSecretProvider
from src.click_attribution.services.session_store import SessionStore
from src.click_attribution.services.sheets import MockSheetsProvider

WEBHOOK_TOKEN = "test-webhook-token"


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db, clock):
    return SessionStore(db, clock)


@pytest.fixture
def resolver_config():
    return ResolverConfig(codec=ContextTokenCodec())


@pytest.fixture
def resolver(store, resolver_config, clock):
    return AttributionResolver(store, resolver_config, clock=clock)


@pytest.fixture
def committer(store, clock):
    return EngagementCommitter(store, clock=clock)


@pytest.fixture
def processor(resolver, committer):
    return InboundEventProcessor(resolver, committer)


@pytest.fixture
def make_click(db, clock):
    """Insert a click session directly, created `age` before the clock."""

    def _make(session_id, age=timedelta(0), **fields):
        values = {
            "source": "fb",
            "medium": "paid",
            "campaign": "spring",
            "content": "video",
            "placement": "feed",
            "has_engaged": False,
            "synced_to_export": False,
        }
        values.update(fields)
        session = ClickSession(session_id=session_id, created_at=clock() - age, **values)
        db.add(session)
        db.commit()
        return session

    return _make


@pytest.fixture
def sheets():
    return MockSheetsProvider()


@pytest.fixture
def export_config():
    return ExportConfig(retry_delay_seconds=0)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def export_engine(session_factory, sheets, export_config, clock, sleeps):
    return ExportSyncEngine(session_factory, sheets, export_config, clock=clock, sleep=sleeps.append)


@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SCHEDULER_ENABLED=False,
        WEBHOOK_TOKEN=WEBHOOK_TOKEN,
        EXPORT_ON_ENGAGEMENT=False,
        STORE_CONNECT_RETRY_DELAY_SECONDS=0,
    )


@pytest.fixture
def client(test_settings, session_factory, export_engine):
    app = create_app(
        settings=test_settings,
        session_factory=session_factory,
        export_engine=export_engine,
        secret_cache=SecretCache(StaticSecretProvider({"webhook-token": WEBHOOK_TOKEN})),
    )
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers():
    return {"X-Webhook-Token": WEBHOOK_TOKEN}
