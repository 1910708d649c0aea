"""Database engine, session factory and connectivity checks"""
import logging
import time
from typing import Callable, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_fixed

from src.click_attribution.config import settings
from src.click_attribution.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, connect_timeout: int = 10) -> Engine:
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": connect_timeout}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(database_url, connect_args=connect_args)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        connect_args={"connect_timeout": connect_timeout},
    )


engine = create_db_engine(settings.DATABASE_URL, settings.STORE_CONNECT_TIMEOUT_SECONDS)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_connection(
    session_factory: Callable[[], Session] = SessionLocal,
    retries: int = 3,
    delay_seconds: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Verify the store answers a trivial query, retrying with a fixed delay.

    Raises StoreUnavailableError once all attempts have failed.
    """
    retrying = Retrying(
        stop=stop_after_attempt(retries),
        wait=wait_fixed(delay_seconds),
        retry=retry_if_exception_type(SQLAlchemyError),
        before_sleep=before_sleep_log(logger, logging.ERROR),
        sleep=sleep,
        reraise=True,
    )

    try:
        for attempt in retrying:
            with attempt:
                with session_factory() as db:
                    db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Store connection failed after {retries} attempts: {e}")
        raise StoreUnavailableError(f"Failed to connect to session store: {e}") from e

    logger.info("Session store connected")
