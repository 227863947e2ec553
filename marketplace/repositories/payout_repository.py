"""Repository for payout requests."""

from decimal import Decimal
import logging
from typing import Optional, cast

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payout import OPEN_PAYOUT_STATUSES, PayoutRequest
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PayoutRepository(BaseRepository[PayoutRequest]):
    def __init__(self, db: Session):
        super().__init__(db, PayoutRequest)

    def get_by_transaction_ref(self, transaction_ref: str) -> Optional[PayoutRequest]:
        try:
            query = self.db.query(PayoutRequest).filter(
                PayoutRequest.transaction_ref == transaction_ref
            )
            # Webhook transitions check the status under this lock
            if self.dialect_name == "postgresql":
                query = query.with_for_update()
            return cast(Optional[PayoutRequest], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting payout by reference {transaction_ref}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve payout: {str(e)}")

    def sum_open_amount(self, provider_id: str) -> Decimal:
        """Total of payouts still PENDING, APPROVED or PROCESSING."""
        stmt = select(func.coalesce(func.sum(PayoutRequest.amount), 0)).where(
            PayoutRequest.provider_id == provider_id,
            PayoutRequest.status.in_(OPEN_PAYOUT_STATUSES),
        )
        try:
            value = self.db.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            self.logger.error(f"Error summing open payouts: {str(e)}")
            raise RepositoryException(f"Failed to sum open payouts: {str(e)}")
        return Decimal(str(value or 0))
