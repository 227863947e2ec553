# marketplace/tasks/earnings_tasks.py
"""Celery tasks for the earnings ledger batch jobs."""

from __future__ import annotations

from typing import Any, Dict, Optional

from celery.utils.log import get_task_logger

from marketplace.database import session_scope
from marketplace.services.earnings_ledger import EarningsLedger
from marketplace.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="earnings.process_clearance", max_retries=0)
def process_earnings_clearance(
    provider_id: Optional[str] = None, clearance_delay_hours: Optional[int] = None
) -> Dict[str, int]:
    """Move earnings past the clearance delay to AVAILABLE."""
    with session_scope() as session:
        result = EarningsLedger(session).process_earnings_clearance(
            provider_id=provider_id, clearance_delay_hours=clearance_delay_hours
        )
    if result.errors:
        logger.warning(
            "Earnings clearance finished with %s errors (%s processed)",
            result.errors,
            result.processed,
        )
    return result.model_dump()


@celery_app.task(name="earnings.backfill", max_retries=0)
def backfill_earnings(limit: Optional[int] = None) -> Dict[str, Any]:
    """Create earnings for completed bookings that have none."""
    with session_scope() as session:
        result = EarningsLedger(session).backfill_earnings(limit=limit)
    return result.model_dump(mode="json")
