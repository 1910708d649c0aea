"""Database models"""
from src.click_attribution.models.base import Base
from src.click_attribution.models.click_session import ClickSession, AttributionMethod
from src.click_attribution.models.direct_engagement import DirectEngagement
from src.click_attribution.models.processed_event import ProcessedEvent

__all__ = ["Base", "ClickSession", "AttributionMethod", "DirectEngagement", "ProcessedEvent"]
