# marketplace/tasks/beat_schedule.py
"""
Celery Beat schedule for the marketplace ledger.

- availability outbox sweep: every minute
- earnings clearance: hourly
"""

from typing import Any, Dict

from celery.schedules import crontab

from marketplace.core.config import settings

CELERYBEAT_SCHEDULE: Dict[str, Dict[str, Any]] = {
    "dispatch-availability-outbox": {
        "task": "availability.dispatch_pending",
        "schedule": crontab(minute="*"),
        "options": {"queue": "availability", "expires": 55},
    },
    "process-earnings-clearance": {
        "task": "earnings.process_clearance",
        "schedule": crontab(minute=5),
        "kwargs": {"clearance_delay_hours": settings.earnings_clearance_delay_hours},
        "options": {"queue": "earnings"},
    },
}


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    """Return a copy of the beat schedule."""
    return {name: dict(entry) for name, entry in CELERYBEAT_SCHEDULE.items()}
