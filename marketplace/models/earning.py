"""
Provider earnings ledger.

One Earning is created per completed booking and is never deleted. Its status
walks the clearance/payout state machine:

    PENDING_CLEARANCE -> AVAILABLE -> PAID_OUT
                             ^            |
                             +------------+   (payout failed, released)

Any non-frozen earning may be FROZEN.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON
import ulid

from marketplace.database import Base

if TYPE_CHECKING:
    from marketplace.models.booking import Booking
    from marketplace.models.payout import PayoutRequest


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class EarningStatus(str, Enum):
    PENDING_CLEARANCE = "PENDING_CLEARANCE"
    AVAILABLE = "AVAILABLE"
    PAID_OUT = "PAID_OUT"
    FROZEN = "FROZEN"


EARNING_TRANSITIONS: Dict[EarningStatus, FrozenSet[EarningStatus]] = {
    EarningStatus.PENDING_CLEARANCE: frozenset({EarningStatus.AVAILABLE, EarningStatus.FROZEN}),
    EarningStatus.AVAILABLE: frozenset({EarningStatus.PAID_OUT, EarningStatus.FROZEN}),
    EarningStatus.PAID_OUT: frozenset({EarningStatus.AVAILABLE, EarningStatus.FROZEN}),
    EarningStatus.FROZEN: frozenset(),
}


def is_valid_earning_transition(current: EarningStatus, new: EarningStatus) -> bool:
    return new in EARNING_TRANSITIONS[current]


class Earning(Base):
    """Net amount owed to a provider for one completed booking."""

    __tablename__ = "earnings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="Net of platform fee")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EarningStatus.PENDING_CLEARANCE.value
    )
    cleared_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("payouts.id", ondelete="SET NULL"), nullable=True
    )
    # "metadata" is reserved on declarative classes, so the attribute is named details
    details: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now_utc
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="earning")
    payout: Mapped[Optional["PayoutRequest"]] = relationship(
        "PayoutRequest", back_populates="earnings"
    )

    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_earnings_booking_id"),
        Index("idx_earnings_provider_status", "provider_id", "status"),
        Index("idx_earnings_status_created", "status", "created_at"),
        Index("idx_earnings_payout_id", "payout_id"),
    )

    def __repr__(self) -> str:
        return f"<Earning(booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"
