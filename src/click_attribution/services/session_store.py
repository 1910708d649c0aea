"""Access contract for click sessions and direct engagements.

All reads and writes of the core go through SessionStore so the resolver,
committer and export engine can be exercised against any SQLAlchemy session.
Store errors (SQLAlchemyError) propagate to the caller.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, update, func, or_, and_, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.click_attribution.models.click_session import ClickSession, AttributionMethod
from src.click_attribution.models.direct_engagement import DirectEngagement
from src.click_attribution.models.processed_event import ProcessedEvent
from src.click_attribution.services.attribute_normalizer import split_attributes, with_defaults

logger = logging.getLogger(__name__)

UNATTRIBUTED_SOURCE = "direct_message"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class PriorCommit:
    session_id: Optional[str]
    attribution_method: str


class SessionStore:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def ping(self) -> None:
        self.db.execute(text("SELECT 1"))

    def get(self, session_id: str) -> Optional[ClickSession]:
        return self.db.get(ClickSession, session_id)

    def get_for_update(self, session_id: str) -> Optional[ClickSession]:
        stmt = (
            select(ClickSession)
            .where(ClickSession.session_id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_click(
        self,
        session_id: str,
        params: Dict[str, Any],
        phone_number: Optional[str] = None,
    ) -> tuple[ClickSession, bool]:
        """Create an unengaged session; first write wins."""
        existing = self.get(session_id)
        if existing:
            return existing, False

        attributes, extras = split_attributes(params)
        session = ClickSession(
            session_id=session_id,
            **with_defaults(attributes),
            extra_attributes=extras or None,
            phone_number=phone_number or None,
            has_engaged=False,
            synced_to_export=False,
            created_at=self.clock(),
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Click session {session_id} created concurrently, keeping first write")
            return self.get(session_id), False

        return session, True

    def find_recent_unengaged(self, since: datetime, limit: int) -> list[ClickSession]:
        stmt = select(ClickSession).where(
            and_(
                ClickSession.has_engaged == False,  # noqa: E712
                ClickSession.created_at >= since,
            )
        ).order_by(ClickSession.created_at.desc()).limit(limit)

        return list(self.db.execute(stmt).scalars().all())

    def find_unengaged_by_phone(self, phone_number: str) -> Optional[ClickSession]:
        stmt = select(ClickSession).where(
            and_(
                ClickSession.has_engaged == False,  # noqa: E712
                ClickSession.phone_number == phone_number,
            )
        ).order_by(ClickSession.created_at.desc()).limit(1)

        return self.db.execute(stmt).scalars().first()

    def find_by_fingerprint(self, fingerprint: str, since: datetime) -> Optional[PriorCommit]:
        stmt = select(ProcessedEvent).where(
            and_(
                ProcessedEvent.fingerprint == fingerprint,
                ProcessedEvent.received_at >= since,
            )
        ).execution_options(populate_existing=True)

        event = self.db.execute(stmt).scalar_one_or_none()
        if event is None:
            return None
        return PriorCommit(session_id=event.session_id, attribution_method=event.attribution_method)

    def claim_event(
        self,
        fingerprint: str,
        session_id: Optional[str],
        attribution_method: str,
        since: datetime,
    ) -> bool:
        """Record an event fingerprint inside the current transaction.

        Returns False when the fingerprint was already recorded at or after
        ``since``. An older record is taken over so the same content can be
        processed again once the window has passed. A concurrent insert of the
        same fingerprint raises IntegrityError on flush.
        """
        now = self.clock()
        if self.db.get(ProcessedEvent, fingerprint) is None:
            self.db.add(ProcessedEvent(
                fingerprint=fingerprint,
                session_id=session_id,
                attribution_method=attribution_method,
                received_at=now,
            ))
            self.db.flush()
            return True

        result = self.db.execute(
            update(ProcessedEvent)
            .where(
                and_(
                    ProcessedEvent.fingerprint == fingerprint,
                    ProcessedEvent.received_at < since,
                )
            )
            .values(session_id=session_id, attribution_method=attribution_method, received_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add_direct_engagement(
        self,
        phone_number: str,
        message_text: Optional[str] = None,
        contact_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        contact_name: Optional[str] = None,
    ) -> DirectEngagement:
        record = DirectEngagement(
            phone_number=phone_number,
            message_text=message_text,
            contact_id=contact_id,
            conversation_id=conversation_id,
            contact_name=contact_name,
            received_at=self.clock(),
        )
        self.db.add(record)
        self.db.flush()
        return record

    def _pending_export_filter(self, include_unattributed: bool):
        conditions = [
            ClickSession.has_engaged == True,  # noqa: E712
            ClickSession.synced_to_export == False,  # noqa: E712
        ]
        if not include_unattributed:
            conditions.append(ClickSession.source != UNATTRIBUTED_SOURCE)
            conditions.append(
                or_(
                    ClickSession.attribution_method.is_(None),
                    ClickSession.attribution_method != AttributionMethod.DIRECT.value,
                )
            )
        return and_(*conditions)

    def find_pending_export(self, limit: int, include_unattributed: bool = False) -> list[ClickSession]:
        stmt = select(ClickSession).where(
            self._pending_export_filter(include_unattributed)
        ).order_by(ClickSession.engaged_at, ClickSession.session_id).limit(limit)

        return list(self.db.execute(stmt).scalars().all())

    def count_pending_export(self, include_unattributed: bool = False) -> int:
        return self.db.execute(
            select(func.count()).select_from(ClickSession).where(
                self._pending_export_filter(include_unattributed)
            )
        ).scalar() or 0

    def mark_exported(self, session_id: str) -> bool:
        """Flip synced_to_export once; returns False if nothing changed."""
        result = self.db.execute(
            update(ClickSession)
            .where(
                and_(
                    ClickSession.session_id == session_id,
                    ClickSession.has_engaged == True,  # noqa: E712
                    ClickSession.synced_to_export == False,  # noqa: E712
                )
            )
            .values(synced_to_export=True, exported_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1
