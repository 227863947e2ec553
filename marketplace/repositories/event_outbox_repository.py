# marketplace/repositories/event_outbox_repository.py
"""
Repository for the availability event outbox.

Events are inserted in the same transaction as the booking change that
produced them; the idempotency key makes a repeated enqueue return the
existing row instead of creating a second one.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Optional, cast

from sqlalchemy import Select, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session
import ulid

from marketplace.core.timezone_utils import utc_now
from marketplace.database import get_dialect_name
from marketplace.models.event_outbox import EventOutbox, EventOutboxStatus

logger = logging.getLogger(__name__)


class EventOutboxRepository:
    """Data access helpers for event outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db).lower()

    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        idempotency_key: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> EventOutbox:
        """
        Insert a PENDING event unless one already exists for the idempotency key.

        Returns the persisted row (existing or newly created).
        """
        event_id = str(ulid.ULID())
        now = utc_now()
        values = dict(
            id=event_id,
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload or {},
            idempotency_key=idempotency_key,
            status=EventOutboxStatus.PENDING.value,
            attempt_count=0,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
        )

        inserted = False
        if self._dialect == "postgresql":
            stmt = (
                pg_insert(EventOutbox)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
                .returning(EventOutbox.id)
            )
            inserted = self.db.execute(stmt).scalar_one_or_none() is not None
        else:
            stmt = insert(EventOutbox).values(**values)
            if self._dialect == "sqlite":
                stmt = stmt.prefix_with("OR IGNORE")
            inserted = bool(getattr(self.db.execute(stmt), "rowcount", 0))

        if inserted:
            self.db.flush()
            row = cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))
            if row is None:
                raise RuntimeError("Inserted outbox row could not be reloaded")
            return row

        logger.debug("Outbox event %s already enqueued", idempotency_key)
        existing = self.get_by_key(idempotency_key)
        if existing is None:
            raise RuntimeError("Outbox row not found after enqueue conflict")
        return existing

    def get_by_key(self, idempotency_key: str) -> Optional[EventOutbox]:
        result = self.db.execute(
            select(EventOutbox).where(EventOutbox.idempotency_key == idempotency_key)
        )
        return cast(Optional[EventOutbox], result.scalar_one_or_none())

    def fetch_pending(self, limit: int = 200, now: Optional[datetime] = None) -> list[EventOutbox]:
        """Pending events due for delivery, oldest attempt first."""
        stmt: Select[Any] = (
            select(EventOutbox)
            .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
            .where(EventOutbox.next_attempt_at <= (now or utc_now()))
            .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return cast(list[EventOutbox], self.db.execute(stmt).scalars().all())

    def get_by_id(self, event_id: str, for_update: bool = False) -> Optional[EventOutbox]:
        if for_update and self._dialect == "postgresql":
            stmt = (
                select(EventOutbox)
                .where(EventOutbox.id == event_id)
                .with_for_update(skip_locked=True)
            )
            return cast(Optional[EventOutbox], self.db.execute(stmt).scalar_one_or_none())
        return cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))

    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        now = utc_now()
        self.db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(
                status=EventOutboxStatus.SENT.value,
                attempt_count=attempt_count,
                last_error=None,
                next_attempt_at=now,
                updated_at=now,
            )
        )
        self.db.flush()

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Schedule a retry after backoff_seconds, or give up when terminal."""
        now = utc_now()
        values: dict[str, Any] = {
            "attempt_count": attempt_count,
            "updated_at": now,
            "last_error": (error[:1000] if error else None),
        }
        if terminal:
            values["status"] = EventOutboxStatus.FAILED.value
            values["next_attempt_at"] = now
        else:
            values["status"] = EventOutboxStatus.PENDING.value
            values["next_attempt_at"] = now + timedelta(seconds=max(backoff_seconds, 1))

        self.db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(**values)
        )
        self.db.flush()
