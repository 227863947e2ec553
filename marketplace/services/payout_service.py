# marketplace/services/payout_service.py
"""
Payout Service for the marketplace.

Creates payout requests against a provider's available earnings and applies
the payment gateway's transfer webhooks to them. Webhook signatures are
verified by the caller before anything here runs.
"""

from decimal import Decimal
import logging
import time
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import BusinessRuleException, ValidationException
from ..core.timezone_utils import utc_now
from ..models.payout import OPEN_PAYOUT_STATUSES, PayoutRequest, PayoutStatus
from .base import BaseService
from .earnings_ledger import EarningsLedger

logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "flutterwave"
TRANSFER_COMPLETED = "transfer.completed"
TRANSFER_FAILED = "transfer.failed"
FINISHED_WEBHOOK_STATUSES = ("processed", "ignored")


class TransferOutcome(NamedTuple):
    """A transfer webhook's effect: the changed payout, or why nothing changed."""

    payout: Optional[PayoutRequest] = None
    ignored_reason: Optional[str] = None


def _webhook_event_id(event_type: str, data: Dict[str, Any]) -> Optional[str]:
    transfer_id = data.get("id")
    if transfer_id is None:
        return None
    return f"{event_type}:{transfer_id}"


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


class PayoutService(BaseService):
    """Payout requests and transfer status transitions."""

    def __init__(self, db: Session, ledger: Optional[EarningsLedger] = None):
        super().__init__(db)
        self.ledger = ledger or EarningsLedger(db)
        self.payout_repository = self.repositories.create_payout_repository(db)
        self.webhook_repository = self.repositories.create_webhook_event_repository(db)

    @BaseService.measure_operation("request_payout")
    def request_payout(
        self,
        provider_id: str,
        amount: Decimal,
        transaction_ref: Optional[str] = None,
    ) -> PayoutRequest:
        """
        Create a PROCESSING payout and reserve earnings that cover it exactly.

        Raises:
            ValidationException: Non-positive amount
            BusinessRuleException: Available balance too small, or no exact
                combination of earnings covers the amount
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationException("Payout amount must be positive", code="INVALID_PAYOUT_AMOUNT")

        with self.transaction():
            balance = self.ledger.get_available_balance(provider_id)
            if balance.available_balance < amount:
                raise BusinessRuleException(
                    "Insufficient available balance",
                    code="INSUFFICIENT_BALANCE",
                    details={
                        "available_balance": str(balance.available_balance),
                        "requested_amount": str(amount),
                    },
                )

            payout = self.payout_repository.create(
                provider_id=provider_id,
                amount=amount,
                currency=self.ledger.fee_config.currency,
                status=PayoutStatus.PROCESSING.value,
                transaction_ref=transaction_ref,
            )
            self.ledger.reserve_earnings_for_payout(provider_id, payout.id, amount)

        self.log_operation(
            "payout_requested", payout_id=payout.id, provider_id=provider_id, amount=str(amount)
        )
        return payout

    # Webhooks

    @BaseService.measure_operation("process_webhook")
    def process_webhook(self, event_type: str, data: Dict[str, Any]) -> Optional[PayoutRequest]:
        """
        Record a gateway webhook and apply it.

        The event row is committed before processing so a failure still leaves
        an audit entry, which is then marked failed and the error re-raised.
        A replay of an event already processed or ignored is dropped; a replay
        of a failed one is processed again on the same row.

        Returns:
            The affected payout, or None when nothing was applied
        """
        started = time.monotonic()
        event_id = _webhook_event_id(event_type, data)
        with self.transaction():
            event = (
                self.webhook_repository.get_by_source_event_id(WEBHOOK_SOURCE, event_id)
                if event_id
                else None
            )
            if event is not None and event.status in FINISHED_WEBHOOK_STATUSES:
                self.logger.info(
                    "Duplicate webhook ignored",
                    extra={
                        "event_id": event_id,
                        "webhook_event_id": event.id,
                        "status": event.status,
                    },
                )
                return None
            if event is None:
                event = self.webhook_repository.record(
                    source=WEBHOOK_SOURCE,
                    event_type=event_type,
                    payload={"event": event_type, "data": data},
                    event_id=event_id,
                )

        try:
            with self.transaction():
                if event_type == TRANSFER_COMPLETED:
                    outcome = self._apply_transfer_completed(data)
                elif event_type == TRANSFER_FAILED:
                    outcome = self._apply_transfer_failed(data)
                else:
                    self.logger.warning(
                        "Unhandled webhook event type",
                        extra={
                            "event_type": event_type,
                            "available_handlers": [TRANSFER_COMPLETED, TRANSFER_FAILED],
                        },
                    )
                    self.webhook_repository.mark_ignored(event, f"Unhandled event type {event_type}")
                    return None

                if outcome.ignored_reason:
                    self.webhook_repository.mark_ignored(event, outcome.ignored_reason)
                    return None

                self.webhook_repository.mark_processed(
                    event,
                    related_entity_type="payout",
                    related_entity_id=outcome.payout.id,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
            return outcome.payout
        except Exception as e:
            self.logger.error(
                "Webhook processing error",
                extra={"webhook_event_id": event.id, "event_type": event_type, "error": str(e)},
            )
            with self.transaction():
                self.webhook_repository.mark_failed(
                    event, str(e), duration_ms=int((time.monotonic() - started) * 1000)
                )
            raise

    def handle_transfer_completed(self, data: Dict[str, Any]) -> Optional[PayoutRequest]:
        with self.transaction():
            return self._apply_transfer_completed(data).payout

    def handle_transfer_failed(self, data: Dict[str, Any]) -> Optional[PayoutRequest]:
        with self.transaction():
            return self._apply_transfer_failed(data).payout

    def _find_open_payout(self, data: Dict[str, Any], action: str) -> TransferOutcome:
        """
        Resolve the payout a transfer webhook refers to.

        Only a payout still in flight may change; a late or replayed event for
        a settled payout is left alone.
        """
        reference = data.get("reference")
        payout = self.payout_repository.get_by_transaction_ref(reference) if reference else None
        if payout is None:
            self.logger.warning(
                f"Payout not found for {action}",
                extra={"reference": reference, "transfer_id": data.get("id")},
            )
            return TransferOutcome(ignored_reason=f"No payout for reference {reference}")

        if payout.status not in OPEN_PAYOUT_STATUSES:
            self.logger.warning(
                f"Ignoring {action} for settled payout",
                extra={
                    "payout_id": payout.id,
                    "status": payout.status,
                    "reference": reference,
                    "transfer_id": data.get("id"),
                },
            )
            return TransferOutcome(ignored_reason=f"Payout {payout.id} is already {payout.status}")

        return TransferOutcome(payout=payout)

    def _apply_transfer_completed(self, data: Dict[str, Any]) -> TransferOutcome:
        self.logger.info(
            "Transfer completed",
            extra={"reference": data.get("reference"), "amount": data.get("amount")},
        )
        found = self._find_open_payout(data, "transfer completion")
        if found.payout is None:
            return found
        payout = found.payout

        now = utc_now()
        payout.status = PayoutStatus.COMPLETED.value
        payout.processed_at = now
        payout.gateway_response = data.get("complete_message") or "Transfer completed successfully"
        payout.fees = _to_decimal(data.get("fee"))
        payout.net_amount = _to_decimal(data.get("amount")) or payout.amount
        payout.details = {
            **(payout.details or {}),
            "flutterwaveTransferId": data.get("id"),
            "completedAt": now.isoformat(),
            "transferData": data,
        }
        self.payout_repository.flush()

        self.logger.info(
            "Payout completed successfully",
            extra={
                "payout_id": payout.id,
                "provider_id": payout.provider_id,
                "amount": str(payout.amount),
                "reference": data.get("reference"),
            },
        )
        return found

    def _apply_transfer_failed(self, data: Dict[str, Any]) -> TransferOutcome:
        reason = data.get("complete_message") or "Transfer failed"
        self.logger.warning(
            "Transfer failed",
            extra={"reference": data.get("reference"), "amount": data.get("amount"), "reason": reason},
        )
        found = self._find_open_payout(data, "failed transfer")
        if found.payout is None:
            return found
        payout = found.payout

        payout.status = PayoutStatus.FAILED.value
        payout.failure_reason = reason
        payout.gateway_response = data.get("complete_message")
        payout.details = {
            **(payout.details or {}),
            "flutterwaveTransferId": data.get("id"),
            "failedAt": utc_now().isoformat(),
            "transferData": data,
        }
        self.payout_repository.flush()

        released = self.ledger.release_payout_earnings(payout.id)
        self.logger.info(
            "Payout failed - earnings released back to available",
            extra={
                "payout_id": payout.id,
                "provider_id": payout.provider_id,
                "amount": str(payout.amount),
                "earnings_released": released,
            },
        )
        return found
