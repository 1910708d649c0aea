"""Context tokens carried through outbound messages back to the webhook.

A token is a reversible encoding of a small JSON object holding at least the
session id plus any attribution params captured at click time. Plain tokens
are base64 JSON (standard or URL-safe alphabet, padding optional). When a
secret is configured, tokens are signed with itsdangerous and anything that
fails verification is treated exactly like a malformed token.
"""
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from itsdangerous import URLSafeSerializer, BadSignature

logger = logging.getLogger(__name__)

CONTEXT_TOKEN_SALT = "click-context"
SESSION_ID_KEYS = ("sessionId", "session_id")


@dataclass
class ContextPayload:
    session_id: str
    params: Dict[str, Any] = field(default_factory=dict)


def _b64_decode(token: str) -> bytes:
    padded = token.rstrip("=")
    padded = padded + "=" * (-len(padded) % 4)
    return base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)


class ContextTokenCodec:
    def __init__(self, secret: str = ""):
        self._serializer = URLSafeSerializer(secret, salt=CONTEXT_TOKEN_SALT) if secret else None

    @property
    def is_signed(self) -> bool:
        return self._serializer is not None

    def encode(self, session_id: str, **params: Any) -> str:
        payload = {"sessionId": session_id, **params}
        if self._serializer:
            return self._serializer.dumps(payload)
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    def _load(self, token: str) -> Any:
        if self._serializer:
            return self._serializer.loads(token)
        return json.loads(_b64_decode(token).decode("utf-8"))

    def decode(self, token: Optional[str]) -> Optional[ContextPayload]:
        """Decode a token, returning None for anything unusable."""
        if not token or not token.strip():
            return None

        try:
            data = self._load(token.strip())
        except BadSignature:
            logger.warning("Context token failed signature verification")
            return None
        except (binascii.Error, ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Malformed context token: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning("Context token does not decode to an object")
            return None

        session_id = next((data[k] for k in SESSION_ID_KEYS if data.get(k)), None)
        if not isinstance(session_id, str) or not session_id.strip():
            logger.warning("Context token carries no session id")
            return None

        params = {k: v for k, v in data.items() if k not in SESSION_ID_KEYS}
        return ContextPayload(session_id=session_id.strip(), params=params)
