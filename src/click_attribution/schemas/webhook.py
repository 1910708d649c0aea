"""Inbound webhook schemas"""
from typing import Any, Optional
from pydantic import BaseModel, model_validator

from src.click_attribution.services.attribution import InboundEvent

MEDIA_MARKER = "[media]"


def _first(*values: Any) -> Optional[str]:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


class WebhookEvent(BaseModel):
    sender_phone: Optional[str] = None
    context_token: Optional[str] = None
    conversation_id: Optional[str] = None
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    message_text: Optional[str] = None
    message_id: Optional[str] = None
    has_media: bool = False

    @model_validator(mode="before")
    @classmethod
    def lift_channel_fields(cls, data: Any) -> Any:
        """Accept the channel-native nested payload alongside the flat shape."""
        if not isinstance(data, dict):
            return data

        channel = data.get("whatsapp") if isinstance(data.get("whatsapp"), dict) else {}
        text = channel.get("text") if isinstance(channel.get("text"), dict) else {}
        message_type = channel.get("type")

        return {
            "sender_phone": _first(data.get("sender_phone"), channel.get("from"), data.get("sender")),
            "context_token": _first(data.get("context_token"), data.get("context")),
            "conversation_id": _first(data.get("conversation_id"), data.get("conversationId")),
            "contact_id": _first(data.get("contact_id"), data.get("contactId")),
            "contact_name": _first(data.get("contact_name"), data.get("contactName")),
            "message_text": _first(data.get("message_text"), text.get("body")),
            "message_id": _first(data.get("message_id"), data.get("messageId"), channel.get("id")),
            "has_media": bool(data.get("has_media")) or (message_type is not None and message_type != "text"),
        }

    def to_event(self) -> InboundEvent:
        message_text = self.message_text
        if not message_text and self.has_media:
            message_text = MEDIA_MARKER
        return InboundEvent(
            sender_phone=self.sender_phone or "",
            context_token=self.context_token,
            conversation_id=self.conversation_id,
            contact_id=self.contact_id,
            contact_name=self.contact_name,
            message_text=message_text,
            message_id=self.message_id,
            has_media=self.has_media,
        )


class WebhookResponse(BaseModel):
    status: str
    sessionId: Optional[str] = None
    attributionMethod: str
