"""Engagement committer - applies attribution decisions exactly once"""
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import update, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.click_attribution.config import DIRECT_POLICY_RECORD, DIRECT_POLICY_SESSION
from src.click_attribution.exceptions import CommitError
from src.click_attribution.models.click_session import ClickSession, AttributionMethod
from src.click_attribution.services.attribute_normalizer import split_attributes, with_defaults
from src.click_attribution.services.attribution import AttributionResolver, Decision, InboundEvent
from src.click_attribution.services.session_store import PriorCommit, SessionStore, utc_now

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_SKIPPED = "skipped"

ENRICHMENT_FIELDS = ("last_message_text", "contact_id", "conversation_id", "contact_name")


@dataclass
class Enrichment:
    last_message_text: Optional[str] = None
    contact_id: Optional[str] = None
    conversation_id: Optional[str] = None
    contact_name: Optional[str] = None
    event_fingerprint: Optional[str] = None

    @classmethod
    def from_event(cls, event: InboundEvent, fingerprint: Optional[str] = None) -> "Enrichment":
        return cls(
            last_message_text=event.message_text,
            contact_id=event.contact_id,
            conversation_id=event.conversation_id,
            contact_name=event.contact_name,
            event_fingerprint=fingerprint,
        )

    def populated(self) -> dict:
        """Fields carrying a value; empty ones never overwrite stored data."""
        values = {}
        for name in ENRICHMENT_FIELDS:
            value = getattr(self, name)
            if value is not None and str(value).strip():
                values[name] = value
        return values


@dataclass
class CommitResult:
    status: str
    attribution_method: str
    session_id: Optional[str] = None
    session: Optional[ClickSession] = None
    direct_engagement_id: Optional[int] = None
    created: bool = False


def event_fingerprint(event: InboundEvent, normalized_phone: str) -> str:
    if event.message_id:
        return f"msg:{event.message_id}"

    parts = [
        normalized_phone,
        event.message_text or "",
        event.conversation_id or "",
        event.contact_id or "",
        event.context_token or "",
    ]
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def replay_result(prior: PriorCommit) -> CommitResult:
    return CommitResult(
        status=STATUS_SKIPPED,
        attribution_method=prior.attribution_method,
        session_id=prior.session_id,
    )


class EngagementCommitter:
    """Applies a Decision in one transaction together with the event's fingerprint claim."""

    def __init__(
        self,
        store: SessionStore,
        direct_policy: str = DIRECT_POLICY_RECORD,
        clock: Callable[[], datetime] = utc_now,
        duplicate_window: timedelta = timedelta(minutes=10),
    ):
        self.store = store
        self.direct_policy = direct_policy
        self.clock = clock
        self.duplicate_window = duplicate_window

    @property
    def db(self):
        return self.store.db

    def commit(self, decision: Decision, enrichment: Enrichment) -> CommitResult:
        try:
            if decision.is_direct:
                return self._commit_direct(decision, enrichment)
            return self._commit_session(decision, enrichment)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Engagement commit failed for session {decision.session_id}")
            raise CommitError(f"Engagement commit failed: {e}") from e

    def _engagement_values(self, decision: Decision, enrichment: Enrichment, now: datetime) -> dict:
        values = {
            "has_engaged": True,
            "engaged_at": now,
            "attribution_method": decision.method.value,
            **enrichment.populated(),
        }
        if decision.phone_number:
            values["phone_number"] = decision.phone_number
        return values

    def _claim(self, enrichment: Enrichment, session_id: Optional[str], method: str) -> bool:
        fingerprint = enrichment.event_fingerprint
        if not fingerprint:
            return True

        since = self.clock() - self.duplicate_window
        try:
            return self.store.claim_event(fingerprint, session_id, method, since)
        except IntegrityError:
            return False

    def _replayed(self, decision: Decision, enrichment: Enrichment) -> CommitResult:
        """Undo this delivery's writes and answer with what the winning delivery committed."""
        self.db.rollback()
        logger.info(f"Event {enrichment.event_fingerprint} was committed by a concurrent delivery")

        prior = self.store.find_by_fingerprint(
            enrichment.event_fingerprint, self.clock() - self.duplicate_window
        )
        if prior is not None:
            return replay_result(prior)
        return CommitResult(
            status=STATUS_SKIPPED,
            attribution_method=decision.method.value,
            session_id=decision.session_id,
        )

    def _already_engaged(self, session: ClickSession) -> CommitResult:
        logger.info(f"Session {session.session_id} already engaged, nothing to do")
        return CommitResult(
            status=STATUS_SKIPPED,
            attribution_method=session.attribution_method or AttributionMethod.DIRECT.value,
            session_id=session.session_id,
            session=session,
        )

    def _commit_session(self, decision: Decision, enrichment: Enrichment) -> CommitResult:
        session_id = decision.session_id
        method = decision.method.value

        for attempt in range(2):
            now = self.clock()
            session = self.store.get_for_update(session_id)

            if session is None:
                attributes, extras = split_attributes(decision.params)
                session = ClickSession(
                    session_id=session_id,
                    **with_defaults(attributes),
                    extra_attributes=extras or None,
                    synced_to_export=False,
                    created_at=now,
                    **self._engagement_values(decision, enrichment, now),
                )
                self.db.add(session)
                try:
                    self.db.flush()
                except IntegrityError:
                    # another delivery created it first; re-run against the stored row
                    self.db.rollback()
                    continue

                if not self._claim(enrichment, session_id, method):
                    return self._replayed(decision, enrichment)
                self.db.commit()
                logger.info(f"Created engaged session {session_id} via {method}")
                return CommitResult(
                    status=STATUS_PROCESSED,
                    attribution_method=method,
                    session_id=session_id,
                    session=session,
                    created=True,
                )

            if session.has_engaged:
                self.db.rollback()
                return self._already_engaged(session)

            result = self.db.execute(
                update(ClickSession)
                .where(
                    and_(
                        ClickSession.session_id == session_id,
                        ClickSession.has_engaged == False,  # noqa: E712
                    )
                )
                .values(**self._engagement_values(decision, enrichment, now))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                current = self.store.get_for_update(session_id)
                if current is None:
                    raise CommitError(f"Session {session_id} disappeared while committing")
                return self._already_engaged(current)

            if not self._claim(enrichment, session_id, method):
                return self._replayed(decision, enrichment)
            self.db.commit()
            self.db.refresh(session)
            logger.info(f"Session {session_id} engaged via {method}")
            return CommitResult(
                status=STATUS_PROCESSED,
                attribution_method=method,
                session_id=session_id,
                session=session,
            )

        raise CommitError(f"Could not commit engagement for session {session_id}")

    def _commit_direct(self, decision: Decision, enrichment: Enrichment) -> CommitResult:
        now = self.clock()
        method = AttributionMethod.DIRECT.value

        if self.direct_policy == DIRECT_POLICY_SESSION:
            session = ClickSession(
                session_id=str(uuid.uuid4()),
                **with_defaults({}),
                synced_to_export=False,
                created_at=now,
                **self._engagement_values(decision, enrichment, now),
            )
            self.db.add(session)
            self.db.flush()
            if not self._claim(enrichment, session.session_id, method):
                return self._replayed(decision, enrichment)
            self.db.commit()
            logger.info(f"Created synthetic session {session.session_id} for direct message from {decision.phone_number}")
            return CommitResult(
                status=STATUS_PROCESSED,
                attribution_method=method,
                session_id=session.session_id,
                session=session,
                created=True,
            )

        record = self.store.add_direct_engagement(
            phone_number=decision.phone_number,
            message_text=enrichment.last_message_text,
            contact_id=enrichment.contact_id,
            conversation_id=enrichment.conversation_id,
            contact_name=enrichment.contact_name,
        )
        if not self._claim(enrichment, None, method):
            return self._replayed(decision, enrichment)
        self.db.commit()
        logger.info(f"Recorded direct engagement {record.id} from {decision.phone_number}")
        return CommitResult(
            status=STATUS_PROCESSED,
            attribution_method=method,
            direct_engagement_id=record.id,
            created=True,
        )


class InboundEventProcessor:
    """Runs one inbound event through replay detection, resolution and commit.

    The lookup before resolving answers most replays cheaply. Deliveries that
    race past it are caught by the committer's fingerprint claim.
    """

    def __init__(self, resolver: AttributionResolver, committer: EngagementCommitter):
        self.resolver = resolver
        self.committer = committer

    def process(self, event: InboundEvent) -> CommitResult:
        phone = self.resolver.normalize(event.sender_phone)
        fingerprint = event_fingerprint(event, phone)

        try:
            since = self.committer.clock() - self.committer.duplicate_window
            prior = self.resolver.store.find_by_fingerprint(fingerprint, since)
        except SQLAlchemyError as e:
            raise CommitError(f"Replay lookup failed: {e}") from e

        if prior is not None:
            logger.info(f"Replayed delivery from {phone}, already committed as {prior.attribution_method}")
            return replay_result(prior)

        decision = self.resolver.resolve(event)
        return self.committer.commit(decision, Enrichment.from_event(event, fingerprint))
