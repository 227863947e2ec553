# marketplace/tasks/availability_tasks.py
"""
Celery tasks for the availability outbox.

Implements a two-step workflow:
1. `availability.dispatch_pending` periodically enqueues delivery tasks.
2. `availability.deliver_event` applies one event to the slot counters.

A failed delivery is not retried by Celery; the outbox row carries its next
attempt time and the periodic sweep picks it up again.
"""

from __future__ import annotations

from typing import Optional

from celery.utils.log import get_task_logger

from marketplace.core.config import settings
from marketplace.database import session_scope
from marketplace.services.availability_sync import AvailabilitySyncDispatcher
from marketplace.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="availability.dispatch_pending", max_retries=0)
def dispatch_pending_availability_events(limit: Optional[int] = None) -> int:
    """
    Fetch due outbox events and enqueue one delivery task per event.

    Returns the number of events scheduled.
    """
    with session_scope() as session:
        event_ids = AvailabilitySyncDispatcher(session).pending_event_ids(
            limit or settings.outbox_batch_size
        )

    for event_id in event_ids:
        deliver_availability_event.apply_async((event_id,))
    if event_ids:
        logger.info("Scheduled %s availability events for delivery", len(event_ids))
    return len(event_ids)


@celery_app.task(name="availability.deliver_event", max_retries=0)
def deliver_availability_event(event_id: str) -> str:
    """Deliver a single outbox event and return the delivery outcome."""
    with session_scope() as session:
        result = AvailabilitySyncDispatcher(session).deliver(event_id)

    if result.outcome == "failed":
        logger.error("Availability event %s failed permanently: %s", event_id, result.message)
    return result.outcome
