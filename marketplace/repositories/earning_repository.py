# marketplace/repositories/earning_repository.py
"""
EarningRepository - provider earnings ledger queries.

Set-wide changes (payout reservation and release) are bulk UPDATE statements
so a payout's earnings always change together.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Dict, List, Optional, Sequence, cast

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.timezone_utils import utc_now
from ..models.earning import Earning, EarningStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class EarningRepository(BaseRepository[Earning]):
    """Repository for Earning rows."""

    def __init__(self, db: Session):
        super().__init__(db, Earning)

    def get_by_booking_id(self, booking_id: str) -> Optional[Earning]:
        try:
            return cast(
                Optional[Earning],
                self.db.query(Earning).filter(Earning.booking_id == booking_id).first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting earning for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve earning: {str(e)}")

    def create_once(self, **kwargs) -> Optional[Earning]:
        """
        Insert an earning inside a SAVEPOINT.

        Returns:
            The new earning, or None if another earning already holds the
            booking_id (unique constraint). The outer transaction stays usable.
        """
        earning = Earning(**kwargs)
        try:
            with self.db.begin_nested():
                self.db.add(earning)
        except IntegrityError:
            self.logger.warning(
                "Earning insert for booking %s hit the unique constraint", kwargs.get("booking_id")
            )
            return None
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating earning: {str(e)}")
            raise RepositoryException(f"Failed to create Earning: {str(e)}") from e
        return earning

    def get_pending_clearance(
        self, created_before: datetime, provider_id: Optional[str] = None
    ) -> List[Earning]:
        """Earnings still in PENDING_CLEARANCE created at or before the cutoff."""
        try:
            query = self.db.query(Earning).filter(
                and_(
                    Earning.status == EarningStatus.PENDING_CLEARANCE.value,
                    Earning.created_at <= created_before,
                )
            )
            if provider_id:
                query = query.filter(Earning.provider_id == provider_id)
            return cast(List[Earning], query.order_by(Earning.created_at, Earning.id).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting earnings pending clearance: {str(e)}")
            raise RepositoryException(f"Failed to query earnings for clearance: {str(e)}")

    def get_status_totals(self, provider_id: str) -> Dict[str, Decimal]:
        """
        Lifetime, available, pending and paid-out sums in one round trip.

        Nulls (no rows in a bucket) come back as zero.
        """

        def _bucket(status: EarningStatus):
            return func.coalesce(
                func.sum(case((Earning.status == status.value, Earning.amount), else_=0)), 0
            )

        stmt = select(
            func.coalesce(func.sum(Earning.amount), 0).label("total_lifetime"),
            _bucket(EarningStatus.AVAILABLE).label("available"),
            _bucket(EarningStatus.PENDING_CLEARANCE).label("pending_clearance"),
            _bucket(EarningStatus.PAID_OUT).label("paid_out"),
        ).where(Earning.provider_id == provider_id)
        try:
            row = self.db.execute(stmt).one()
        except SQLAlchemyError as e:
            self.logger.error(f"Error summarising earnings for provider {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to summarise earnings: {str(e)}")
        return {key: Decimal(str(value or 0)) for key, value in row._mapping.items()}

    def sum_unreserved_available(self, provider_id: str) -> Decimal:
        stmt = select(func.coalesce(func.sum(Earning.amount), 0)).where(
            Earning.provider_id == provider_id,
            Earning.status == EarningStatus.AVAILABLE.value,
            Earning.payout_id.is_(None),
        )
        try:
            value = self.db.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            self.logger.error(f"Error summing available earnings: {str(e)}")
            raise RepositoryException(f"Failed to sum available earnings: {str(e)}")
        return Decimal(str(value or 0))

    def get_reservable(self, provider_id: str, limit: int = 100) -> List[Earning]:
        """AVAILABLE earnings not attached to a payout, oldest cleared first."""
        try:
            return cast(
                List[Earning],
                self.db.query(Earning)
                .filter(
                    and_(
                        Earning.provider_id == provider_id,
                        Earning.status == EarningStatus.AVAILABLE.value,
                        Earning.payout_id.is_(None),
                    )
                )
                .order_by(Earning.cleared_at.asc(), Earning.id.asc())
                .limit(limit)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting reservable earnings: {str(e)}")
            raise RepositoryException(f"Failed to get reservable earnings: {str(e)}")

    def reserve_for_payout(self, earning_ids: Sequence[str], payout_id: str) -> int:
        """Move the given AVAILABLE earnings to PAID_OUT under one payout."""
        if not earning_ids:
            return 0
        stmt = (
            update(Earning)
            .where(
                Earning.id.in_(list(earning_ids)),
                Earning.status == EarningStatus.AVAILABLE.value,
                Earning.payout_id.is_(None),
            )
            .values(
                status=EarningStatus.PAID_OUT.value,
                payout_id=payout_id,
                updated_at=utc_now(),
            )
        )
        try:
            return int(self.db.execute(stmt).rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Error reserving earnings for payout {payout_id}: {str(e)}")
            raise RepositoryException(f"Failed to reserve earnings: {str(e)}")

    def release_payout(self, payout_id: str) -> int:
        """Return every PAID_OUT earning of a payout to AVAILABLE and detach it."""
        stmt = (
            update(Earning)
            .where(
                Earning.payout_id == payout_id,
                Earning.status == EarningStatus.PAID_OUT.value,
            )
            .values(
                status=EarningStatus.AVAILABLE.value,
                payout_id=None,
                updated_at=utc_now(),
            )
        )
        try:
            return int(self.db.execute(stmt).rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Error releasing earnings of payout {payout_id}: {str(e)}")
            raise RepositoryException(f"Failed to release payout earnings: {str(e)}")
