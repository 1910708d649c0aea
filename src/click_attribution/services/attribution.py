"""Attribution resolver - decides which click session an inbound message belongs to.

Strategies run in a fixed order and the first one that yields a candidate
wins:

1. context token carried back from an outbound message
2. channel identifiers (conversation/contact id) against recent unclaimed clicks
3. the sender's phone number against unclaimed clicks
4. otherwise the event is direct

Each strategy is a plain function over (event, store, config, now) that only
reads from the store.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from src.click_attribution.config import Settings
from src.click_attribution.exceptions import ResolverError
from src.click_attribution.models.click_session import ClickSession, AttributionMethod
from src.click_attribution.services.context_token import ContextTokenCodec
from src.click_attribution.services.phone import normalize_phone
from src.click_attribution.services.session_store import SessionStore, utc_now

logger = logging.getLogger(__name__)


@dataclass
class InboundEvent:
    sender_phone: str
    context_token: Optional[str] = None
    conversation_id: Optional[str] = None
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    message_text: Optional[str] = None
    message_id: Optional[str] = None
    has_media: bool = False


@dataclass
class Candidate:
    session_id: str
    method: AttributionMethod
    record: Optional[ClickSession] = None
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Decision:
    method: AttributionMethod
    phone_number: str
    session_id: Optional[str] = None
    record: Optional[ClickSession] = None
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_direct(self) -> bool:
        return self.session_id is None


@dataclass
class ResolverConfig:
    codec: ContextTokenCodec
    country_code: str = "91"
    national_length: int = 10
    channel_window: timedelta = timedelta(minutes=5)
    channel_batch_limit: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResolverConfig":
        return cls(
            codec=ContextTokenCodec(settings.CONTEXT_TOKEN_SECRET),
            country_code=settings.PHONE_COUNTRY_CODE,
            national_length=settings.PHONE_NATIONAL_NUMBER_LENGTH,
            channel_window=timedelta(minutes=settings.CHANNEL_MATCH_WINDOW_MINUTES),
            channel_batch_limit=settings.CHANNEL_MATCH_BATCH_LIMIT,
        )


Strategy = Callable[[InboundEvent, SessionStore, ResolverConfig, datetime], Optional[Candidate]]


def match_context_token(
    event: InboundEvent, store: SessionStore, config: ResolverConfig, now: datetime
) -> Optional[Candidate]:
    payload = config.codec.decode(event.context_token)
    if payload is None:
        return None

    # authoritative even if the session is missing or already engaged
    return Candidate(
        session_id=payload.session_id,
        method=AttributionMethod.CONTEXT,
        record=store.get(payload.session_id),
        params=payload.params,
    )


def match_channel_identifier(
    event: InboundEvent, store: SessionStore, config: ResolverConfig, now: datetime
) -> Optional[Candidate]:
    if not (event.conversation_id or event.contact_id):
        return None

    candidates = store.find_recent_unengaged(now - config.channel_window, config.channel_batch_limit)
    if not candidates:
        return None

    record = candidates[0]
    return Candidate(session_id=record.session_id, method=AttributionMethod.CHANNEL_ID, record=record)


def match_phone(
    event: InboundEvent, store: SessionStore, config: ResolverConfig, now: datetime
) -> Optional[Candidate]:
    if not event.sender_phone:
        return None

    record = store.find_unengaged_by_phone(event.sender_phone)
    if record is None:
        return None

    return Candidate(session_id=record.session_id, method=AttributionMethod.PHONE, record=record)


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    match_context_token,
    match_channel_identifier,
    match_phone,
)


class AttributionResolver:
    def __init__(
        self,
        store: SessionStore,
        config: ResolverConfig,
        clock: Callable[[], datetime] = utc_now,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ):
        self.store = store
        self.config = config
        self.clock = clock
        self.strategies = tuple(strategies)

    def normalize(self, raw_phone: Optional[str]) -> str:
        return normalize_phone(raw_phone, self.config.country_code, self.config.national_length)

    def resolve(self, event: InboundEvent) -> Decision:
        phone = self.normalize(event.sender_phone)
        normalized_event = replace(event, sender_phone=phone)
        now = self.clock()

        for strategy in self.strategies:
            try:
                candidate = strategy(normalized_event, self.store, self.config, now)
            except SQLAlchemyError as e:
                raise ResolverError(f"Store query failed in {strategy.__name__}: {e}") from e

            if candidate is not None:
                logger.info(f"Resolved {phone} to session {candidate.session_id} via {candidate.method.value}")
                return Decision(
                    method=candidate.method,
                    phone_number=phone,
                    session_id=candidate.session_id,
                    record=candidate.record,
                    params=candidate.params,
                )

        logger.info(f"No session matched for {phone}, treating as direct")
        return Decision(method=AttributionMethod.DIRECT, phone_number=phone)
