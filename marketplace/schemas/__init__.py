"""Pydantic result models returned by the ledger services."""

from .availability import (
    AvailabilitySlotSummary,
    AvailabilityStats,
    AvailabilityUpdateResult,
    SlotServiceInfo,
    SlotValidationResult,
)
from .earnings import (
    AvailableBalance,
    BackfillFailure,
    BackfillResult,
    ClearanceResult,
    EarningsBreakdown,
    EarningsSummary,
)

__all__ = [
    "AvailabilitySlotSummary",
    "AvailabilityStats",
    "AvailabilityUpdateResult",
    "AvailableBalance",
    "BackfillFailure",
    "BackfillResult",
    "ClearanceResult",
    "EarningsBreakdown",
    "EarningsSummary",
    "SlotServiceInfo",
    "SlotValidationResult",
]
