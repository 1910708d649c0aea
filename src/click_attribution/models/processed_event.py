"""ProcessedEvent model - one row per inbound event fingerprint"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from src.click_attribution.models.base import Base


class ProcessedEvent(Base):
    """Claim on an inbound event, written in the same transaction as its engagement.

    The primary key makes two deliveries of one event race on a single row:
    whichever commits second fails and is answered as a replay.
    """
    __tablename__ = "processed_events"

    fingerprint: Mapped[str] = mapped_column(String(128), primary_key=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    attribution_method: Mapped[str] = mapped_column(String(32), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
