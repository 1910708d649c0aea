"""ClickSession model - one row per marketing link click"""
import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Boolean, DateTime, Text, JSON, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from src.click_attribution.models.base import Base


class AttributionMethod(str, enum.Enum):
    CONTEXT = "context"
    CHANNEL_ID = "channel_id"
    PHONE = "phone"
    DIRECT = "direct"


DEFAULT_ATTRIBUTES = {
    "source": "direct",
    "medium": "organic",
    "campaign": "none",
    "content": "none",
    "placement": "N/A",
}


class ClickSession(Base):
    __tablename__ = "click_sessions"
    __table_args__ = (
        Index("ix_click_sessions_engaged_created", "has_engaged", "created_at"),
        Index("ix_click_sessions_phone_engaged", "phone_number", "has_engaged"),
        Index("ix_click_sessions_export_pending", "has_engaged", "synced_to_export"),
    )

    session_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    source: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_ATTRIBUTES["source"])
    medium: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_ATTRIBUTES["medium"])
    campaign: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_ATTRIBUTES["campaign"])
    content: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_ATTRIBUTES["content"])
    placement: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_ATTRIBUTES["placement"])
    extra_attributes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    has_engaged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    synced_to_export: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    engaged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    exported_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    last_message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    conversation_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    attribution_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

