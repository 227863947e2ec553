# marketplace/services/earnings_ledger.py
"""
Earnings Ledger for the marketplace.

Turns completed bookings into provider earnings and walks them through the
clearance and payout state machine. Standalone operations (creation, status
changes, clearance, backfill) commit their own work. Payout reservation and
release join the caller's transaction so a payout and its earnings always
change together.
"""

from datetime import datetime, timedelta
from decimal import Decimal
import logging
import time
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import PlatformFeeConfig, settings
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    InsufficientEarningsException,
    InvalidEarningTransitionException,
    NotFoundException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.booking import Booking, BookingStatus
from ..models.earning import Earning, EarningStatus, is_valid_earning_transition
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.earnings import (
    AvailableBalance,
    BackfillFailure,
    BackfillResult,
    ClearanceResult,
    EarningsBreakdown,
    EarningsSummary,
)
from .base import BaseService
from .platform_fees import calculate_earnings, get_platform_fee_config

logger = logging.getLogger(__name__)

RESERVATION_CANDIDATE_LIMIT = 100


class EarningsLedger(BaseService):
    """
    Provider earnings ledger.

    The fee configuration is fixed at construction; it defaults to the
    process-wide configuration read from settings.
    """

    def __init__(self, db: Session, fee_config: Optional[PlatformFeeConfig] = None):
        super().__init__(db)
        self.fee_config = fee_config or get_platform_fee_config()
        self.booking_repository = self.repositories.create_booking_repository(db)
        self.earning_repository = self.repositories.create_earning_repository(db)
        self.payout_repository = self.repositories.create_payout_repository(db)

    def calculate_earnings(self, gross_amount: Decimal) -> EarningsBreakdown:
        """Preview the split for a gross amount with this ledger's fee configuration."""
        return calculate_earnings(gross_amount, self.fee_config)

    # Creation

    @BaseService.measure_operation("create_earnings_from_completed_booking")
    def create_earnings_from_completed_booking(self, booking_id: str) -> Optional[Earning]:
        """
        Record the earning for a completed booking exactly once.

        Args:
            booking_id: Booking that has just become COMPLETED

        Returns:
            The new earning, or None if the booking already has one

        Raises:
            NotFoundException: Booking does not exist
            BusinessRuleException: Booking is not COMPLETED, its service has no
                positive price, or the fee would exceed the price
        """
        with self.transaction():
            booking = self.booking_repository.get_with_details(booking_id)
            if not booking:
                raise NotFoundException(f"Booking not found: {booking_id}", code="BOOKING_NOT_FOUND")

            if booking.status != BookingStatus.COMPLETED.value:
                raise BusinessRuleException(
                    f"Booking {booking_id} is not completed. Current status: {booking.status}",
                    code="BOOKING_NOT_COMPLETED",
                    details={"booking_id": booking_id, "status": booking.status},
                )

            existing = self.earning_repository.get_by_booking_id(booking_id)
            if existing:
                self.logger.warning(
                    f"Earnings already exist for booking {booking_id}",
                    extra={"earning_id": existing.id, "provider_id": booking.provider_id},
                )
                return None

            breakdown = self._breakdown_for(booking)
            earning = self.earning_repository.create_once(
                provider_id=booking.provider_id,
                booking_id=booking.id,
                gross_amount=breakdown.gross_amount,
                platform_fee=breakdown.platform_fee,
                amount=breakdown.provider_amount,
                currency=breakdown.currency,
                status=EarningStatus.PENDING_CLEARANCE.value,
                details=self._snapshot(booking),
            )
            if earning is None:
                # Lost a race with a concurrent creation; the other row stands
                self.logger.warning(f"Earnings already exist for booking {booking_id}")
                return None

        prometheus_metrics.record_earning_transition(EarningStatus.PENDING_CLEARANCE.value)
        self.logger.info(
            "Earnings created successfully",
            extra={
                "earning_id": earning.id,
                "booking_id": booking.id,
                "provider_id": booking.provider_id,
                "gross_amount": str(breakdown.gross_amount),
                "platform_fee": str(breakdown.platform_fee),
                "net_amount": str(breakdown.provider_amount),
                "service_name": booking.service.name,
            },
        )
        return earning

    def _breakdown_for(self, booking: Booking) -> EarningsBreakdown:
        price = booking.service.price if booking.service is not None else None
        if price is None or Decimal(price) <= 0:
            raise BusinessRuleException(
                f"Booking {booking.id} has no billable service price",
                code="INVALID_SERVICE_PRICE",
                details={"booking_id": booking.id, "price": str(price)},
            )

        breakdown = calculate_earnings(price, self.fee_config)
        if breakdown.provider_amount < 0:
            raise BusinessRuleException(
                f"Platform fee {breakdown.platform_fee} exceeds price {breakdown.gross_amount}",
                code="NEGATIVE_NET_EARNING",
                details={
                    "booking_id": booking.id,
                    "gross_amount": str(breakdown.gross_amount),
                    "platform_fee": str(breakdown.platform_fee),
                },
            )
        return breakdown

    @staticmethod
    def _snapshot(booking: Booking) -> dict:
        completed_at = booking.completed_at or utc_now()
        return {
            "serviceName": booking.service.name,
            "studentName": booking.student.name if booking.student else None,
            "completedAt": ensure_utc(completed_at).isoformat(),
            "bookingScheduledFor": ensure_utc(booking.scheduled_for).isoformat(),
        }

    # Status transitions

    @BaseService.measure_operation("update_earnings_status")
    def update_earnings_status(
        self,
        earning_id: str,
        new_status: EarningStatus,
        cleared_at: Optional[datetime] = None,
    ) -> Earning:
        """
        Move an earning to a new status.

        cleared_at is stored only when moving to AVAILABLE.

        Raises:
            NotFoundException: Unknown earning
            InvalidEarningTransitionException: Transition not in the status table
        """
        new_status = EarningStatus(new_status)
        with self.transaction():
            earning = self.earning_repository.get_by_id(earning_id, load_relationships=False)
            if not earning:
                raise NotFoundException(f"Earning not found: {earning_id}", code="EARNING_NOT_FOUND")

            current = EarningStatus(earning.status)
            if not is_valid_earning_transition(current, new_status):
                raise InvalidEarningTransitionException(earning_id, current.value, new_status.value)

            earning.status = new_status.value
            if new_status == EarningStatus.AVAILABLE:
                # An AVAILABLE earning never belongs to a payout
                earning.payout_id = None
                if cleared_at is not None:
                    earning.cleared_at = cleared_at
            self.earning_repository.flush()

        prometheus_metrics.record_earning_transition(new_status.value)
        self.logger.info(
            "Earnings status updated",
            extra={
                "earning_id": earning_id,
                "previous_status": current.value,
                "new_status": new_status.value,
                "cleared_at": cleared_at.isoformat() if cleared_at else None,
            },
        )
        return earning

    @BaseService.measure_operation("process_earnings_clearance")
    def process_earnings_clearance(
        self,
        provider_id: Optional[str] = None,
        clearance_delay_hours: Optional[int] = None,
    ) -> ClearanceResult:
        """
        Make earnings older than the clearance delay withdrawable.

        Each earning is moved on its own; a failed item is logged and counted
        but does not stop the batch. Only a failure to query the candidates
        is raised.
        """
        if clearance_delay_hours is None:
            clearance_delay_hours = settings.earnings_clearance_delay_hours
        cutoff = utc_now() - timedelta(hours=clearance_delay_hours)

        candidates = self.earning_repository.get_pending_clearance(cutoff, provider_id)
        candidate_ids = [(earning.id, earning.provider_id) for earning in candidates]
        self.logger.info(
            f"Processing {len(candidate_ids)} earnings for clearance",
            extra={"provider_id": provider_id, "clearance_delay_hours": clearance_delay_hours},
        )

        result = ClearanceResult()
        for earning_id, earning_provider_id in candidate_ids:
            try:
                self.update_earnings_status(earning_id, EarningStatus.AVAILABLE, cleared_at=utc_now())
                result.processed += 1
            except Exception as e:
                self.logger.error(
                    "Failed to clear individual earning",
                    extra={
                        "earning_id": earning_id,
                        "provider_id": earning_provider_id,
                        "error": str(e),
                    },
                )
                result.errors += 1

        self.logger.info(
            "Earnings clearance process completed",
            extra={"processed": result.processed, "errors": result.errors, "provider_id": provider_id},
        )
        return result

    # Reporting

    def get_provider_earnings_summary(self, provider_id: str) -> EarningsSummary:
        """Lifetime, available, pending and paid-out totals for a provider."""
        totals = self.earning_repository.get_status_totals(provider_id)
        return EarningsSummary(
            total_lifetime=totals["total_lifetime"],
            available_balance=totals["available"],
            pending_clearance=totals["pending_clearance"],
            paid_out=totals["paid_out"],
            currency=self.fee_config.currency,
        )

    def get_available_balance(self, provider_id: str) -> AvailableBalance:
        """Withdrawable balance and the amount already requested in open payouts."""
        return AvailableBalance(
            available_balance=self.earning_repository.sum_unreserved_available(provider_id),
            pending_payouts=self.payout_repository.sum_open_amount(provider_id),
            currency=self.fee_config.currency,
        )

    # Backfill

    @BaseService.measure_operation("backfill_earnings")
    def backfill_earnings(self, limit: Optional[int] = None) -> BackfillResult:
        """
        Create missing earnings for completed bookings.

        Per-booking failures are collected with the booking id; the query that
        finds the bookings is the only failure that propagates.
        """
        started = time.monotonic()
        booking_ids = [b.id for b in self.booking_repository.get_completed_without_earnings(limit)]
        self.logger.info(f"Found {len(booking_ids)} completed bookings without earnings")

        result = BackfillResult(total_found=len(booking_ids))
        for booking_id in booking_ids:
            try:
                self.create_earnings_from_completed_booking(booking_id)
                result.processed += 1
            except Exception as e:
                self.logger.error(
                    f"Failed to create earnings for booking {booking_id}",
                    extra={"booking_id": booking_id, "error": str(e)},
                )
                result.errors += 1
                result.failures.append(BackfillFailure(booking_id=booking_id, error=str(e)))

        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(
            "Earnings backfill completed",
            extra={
                "total_found": result.total_found,
                "processed": result.processed,
                "errors": result.errors,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    # Payout reservation

    def reserve_earnings_for_payout(
        self, provider_id: str, payout_id: str, amount: Decimal
    ) -> List[str]:
        """
        Attach whole AVAILABLE earnings to a payout until the amount is covered.

        Earnings are taken oldest-cleared first; one that would overshoot the
        remaining amount is skipped. Does not commit.

        Returns:
            Ids of the reserved earnings

        Raises:
            InsufficientEarningsException: The amount cannot be covered exactly
            ConflictException: Another reservation took some of the earnings
        """
        remaining = Decimal(amount)
        chosen: List[str] = []
        for earning in self.earning_repository.get_reservable(
            provider_id, limit=RESERVATION_CANDIDATE_LIMIT
        ):
            if remaining <= 0:
                break
            if earning.amount <= remaining:
                chosen.append(earning.id)
                remaining -= earning.amount

        if remaining > 0:
            raise InsufficientEarningsException(provider_id, str(amount), str(remaining))

        reserved = self.earning_repository.reserve_for_payout(chosen, payout_id)
        if reserved != len(chosen):
            raise ConflictException(
                "Earnings changed while reserving payout",
                code="RESERVATION_CONFLICT",
                details={"payout_id": payout_id, "expected": len(chosen), "reserved": reserved},
            )

        prometheus_metrics.record_earning_transition(EarningStatus.PAID_OUT.value, reserved)
        self.log_operation(
            "earnings_reserved", payout_id=payout_id, provider_id=provider_id, count=reserved
        )
        return chosen

    def release_payout_earnings(self, payout_id: str) -> int:
        """
        Return every PAID_OUT earning of a failed payout to AVAILABLE.

        One bulk UPDATE, so the whole set moves or none of it does. Does not
        commit.

        Returns:
            Number of earnings released
        """
        released = self.earning_repository.release_payout(payout_id)
        prometheus_metrics.record_earning_transition(EarningStatus.AVAILABLE.value, released)
        self.log_operation("payout_earnings_released", payout_id=payout_id, count=released)
        return released
