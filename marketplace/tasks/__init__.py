# marketplace/tasks/__init__.py
"""
Celery tasks package for the marketplace ledger.

- availability.dispatch_pending / availability.deliver_event: outbox delivery
  of slot counter updates
- earnings.process_clearance / earnings.backfill: ledger batch jobs
"""

from marketplace.tasks.availability_tasks import (
    deliver_availability_event,
    dispatch_pending_availability_events,
)
from marketplace.tasks.celery_app import BaseTask, celery_app
from marketplace.tasks.earnings_tasks import backfill_earnings, process_earnings_clearance

__all__ = [
    "BaseTask",
    "backfill_earnings",
    "celery_app",
    "deliver_availability_event",
    "dispatch_pending_availability_events",
    "process_earnings_clearance",
]
