"""Repository helpers for the webhook event ledger."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from marketplace.core.timezone_utils import utc_now
from marketplace.models.webhook_event import WebhookEvent
from marketplace.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger writes."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def get_by_source_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        return self.find_one_by(source=source, event_id=event_id)

    def record(
        self,
        *,
        source: str,
        event_type: str,
        payload: dict[str, Any],
        event_id: str | None = None,
    ) -> WebhookEvent:
        return self.create(
            source=source,
            event_type=event_type,
            event_id=event_id,
            payload=payload,
            status="received",
        )

    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        event.status = "processed"
        event.processed_at = utc_now()
        event.processing_error = None
        event.processing_duration_ms = duration_ms
        if related_entity_type:
            event.related_entity_type = related_entity_type
            event.related_entity_id = related_entity_id
        self.db.flush()

    def mark_ignored(self, event: WebhookEvent, reason: str) -> None:
        event.status = "ignored"
        event.processing_error = reason[:1000]
        event.processed_at = utc_now()
        self.db.flush()

    def mark_failed(self, event: WebhookEvent, error: str, duration_ms: int | None = None) -> None:
        event.status = "failed"
        event.processing_error = error[:1000]
        event.processed_at = utc_now()
        event.processing_duration_ms = duration_ms
        self.db.flush()
