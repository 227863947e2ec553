"""Provider payout requests."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON
import ulid

from marketplace.database import Base

if TYPE_CHECKING:
    from marketplace.models.earning import Earning


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


OPEN_PAYOUT_STATUSES = (
    PayoutStatus.PENDING.value,
    PayoutStatus.APPROVED.value,
    PayoutStatus.PROCESSING.value,
)


class PayoutRequest(Base):
    """Withdrawal of AVAILABLE earnings to a provider's bank account."""

    __tablename__ = "payouts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PayoutStatus.PENDING.value)
    payment_provider: Mapped[str] = mapped_column(String(20), nullable=False, default="FLUTTERWAVE")
    transaction_ref: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    fees: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    net_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gateway_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now_utc
    )

    earnings: Mapped[List["Earning"]] = relationship("Earning", back_populates="payout")

    __table_args__ = (Index("idx_payouts_provider_status", "provider_id", "status"),)

    def __repr__(self) -> str:
        return f"<PayoutRequest(id={self.id}, amount={self.amount}, status={self.status})>"
