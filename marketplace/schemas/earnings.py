"""Earnings ledger results."""

from decimal import Decimal
from typing import List

from pydantic import Field, computed_field

from .base import StandardizedModel


class EarningsBreakdown(StandardizedModel):
    """Gross/fee/net split for one gross amount. Used for previews and real earnings."""

    gross_amount: Decimal
    platform_fee: Decimal
    provider_amount: Decimal
    currency: str
    fee_percentage: Decimal = Field(description="Platform fee rate in percent")


class EarningsSummary(StandardizedModel):
    total_lifetime: Decimal = Decimal("0")
    available_balance: Decimal = Decimal("0")
    pending_clearance: Decimal = Decimal("0")
    paid_out: Decimal = Decimal("0")
    currency: str = "NGN"


class ClearanceResult(StandardizedModel):
    processed: int = 0
    errors: int = 0


class BackfillFailure(StandardizedModel):
    booking_id: str
    error: str


class BackfillResult(StandardizedModel):
    """Per-item outcome of an earnings backfill run."""

    total_found: int = 0
    processed: int = 0
    errors: int = 0
    duration_ms: int = 0
    failures: List[BackfillFailure] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def http_status(self) -> int:
        """200 when every booking succeeded, 207 on partial failure."""
        return 207 if self.errors else 200


class AvailableBalance(StandardizedModel):
    available_balance: Decimal
    pending_payouts: Decimal
    currency: str = "NGN"
