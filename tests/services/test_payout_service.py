from decimal import Decimal
from unittest.mock import patch

import pytest

from marketplace.core.exceptions import BusinessRuleException, ValidationException
from marketplace.models.earning import EarningStatus
from marketplace.models.payout import PayoutRequest, PayoutStatus
from marketplace.models.webhook_event import WebhookEvent
from marketplace.services.payout_service import PayoutService
from tests.factories.ledger_builders import create_available_earnings


@pytest.fixture
def payout_service(db):
    return PayoutService(db)


@pytest.fixture
def reserved_payout(db, payout_service, provider, student, service):
    earnings = create_available_earnings(db, student, service, ["850.00", "400.00"])
    payout = payout_service.request_payout(provider.id, Decimal("1250.00"), transaction_ref="PO-1")
    return payout, earnings


class TestRequestPayout:
    def test_reserves_earnings(self, db, payout_service, provider, student, service):
        earnings = create_available_earnings(db, student, service, ["850.00", "400.00"])

        payout = payout_service.request_payout(provider.id, Decimal("850.00"), transaction_ref="PO-9")

        assert payout.status == PayoutStatus.PROCESSING.value
        db.refresh(earnings[0])
        assert earnings[0].payout_id == payout.id
        assert earnings[0].status == EarningStatus.PAID_OUT.value
        balance = payout_service.ledger.get_available_balance(provider.id)
        assert balance.available_balance == Decimal("400.00")
        assert balance.pending_payouts == Decimal("850.00")

    def test_non_positive_amount(self, payout_service, provider):
        with pytest.raises(ValidationException):
            payout_service.request_payout(provider.id, Decimal("0"))

    def test_balance_too_small(self, db, payout_service, provider, student, service):
        create_available_earnings(db, student, service, ["400.00"])

        with pytest.raises(BusinessRuleException) as exc_info:
            payout_service.request_payout(provider.id, Decimal("500.00"))

        assert exc_info.value.code == "INSUFFICIENT_BALANCE"

    def test_no_exact_cover_rolls_back_payout(self, db, payout_service, provider, student, service):
        create_available_earnings(db, student, service, ["850.00", "850.00"])

        with pytest.raises(BusinessRuleException):
            payout_service.request_payout(provider.id, Decimal("1000.00"))

        assert db.query(PayoutRequest).count() == 0


class TestTransferWebhooks:
    def test_completed_transfer(self, db, payout_service, reserved_payout):
        payout, earnings = reserved_payout

        result = payout_service.process_webhook(
            "transfer.completed",
            {"id": 4242, "reference": "PO-1", "amount": 1250, "fee": 26.88},
        )

        assert result.id == payout.id
        db.refresh(payout)
        assert payout.status == PayoutStatus.COMPLETED.value
        assert payout.fees == Decimal("26.88")
        assert payout.net_amount == Decimal("1250.00")
        assert payout.processed_at is not None
        assert payout.details["flutterwaveTransferId"] == 4242
        for earning in earnings:
            db.refresh(earning)
            assert earning.status == EarningStatus.PAID_OUT.value

        event = db.query(WebhookEvent).one()
        assert event.status == "processed"
        assert event.related_entity_id == payout.id

    def test_completed_without_amount_uses_payout_amount(self, db, payout_service, reserved_payout):
        payout, _ = reserved_payout

        payout_service.handle_transfer_completed({"id": 1, "reference": "PO-1"})

        db.refresh(payout)
        assert payout.net_amount == Decimal("1250.00")
        assert payout.gateway_response == "Transfer completed successfully"

    def test_failed_transfer_releases_earnings(self, db, payout_service, provider, reserved_payout):
        payout, earnings = reserved_payout

        payout_service.process_webhook(
            "transfer.failed",
            {"id": 4243, "reference": "PO-1", "complete_message": "Account resolve failed"},
        )

        db.refresh(payout)
        assert payout.status == PayoutStatus.FAILED.value
        assert payout.failure_reason == "Account resolve failed"
        for earning in earnings:
            db.refresh(earning)
            assert earning.status == EarningStatus.AVAILABLE.value
            assert earning.payout_id is None
        balance = payout_service.ledger.get_available_balance(provider.id)
        assert balance.available_balance == Decimal("1250.00")
        assert balance.pending_payouts == Decimal("0")

    def test_failed_after_completed_is_ignored(self, db, payout_service, reserved_payout):
        payout, earnings = reserved_payout
        payout_service.process_webhook("transfer.completed", {"id": 4242, "reference": "PO-1"})

        result = payout_service.process_webhook(
            "transfer.failed",
            {"id": 4242, "reference": "PO-1", "complete_message": "Late failure"},
        )

        assert result is None
        db.refresh(payout)
        assert payout.status == PayoutStatus.COMPLETED.value
        assert payout.failure_reason is None
        for earning in earnings:
            db.refresh(earning)
            assert earning.status == EarningStatus.PAID_OUT.value
            assert earning.payout_id == payout.id
        late = db.query(WebhookEvent).filter_by(event_type="transfer.failed").one()
        assert late.status == "ignored"
        assert "COMPLETED" in late.processing_error

    def test_completed_after_failed_is_ignored(self, db, payout_service, provider, reserved_payout):
        payout, _ = reserved_payout
        payout_service.process_webhook("transfer.failed", {"id": 5, "reference": "PO-1"})

        late = payout_service.process_webhook("transfer.completed", {"id": 5, "reference": "PO-1"})

        assert late is None

        db.refresh(payout)
        assert payout.status == PayoutStatus.FAILED.value
        balance = payout_service.ledger.get_available_balance(provider.id)
        assert balance.available_balance == Decimal("1250.00")

    def test_replayed_event_is_dropped(self, db, payout_service, reserved_payout):
        data = {"id": 4242, "reference": "PO-1", "fee": 26.88}
        payout_service.process_webhook("transfer.completed", data)

        assert payout_service.process_webhook("transfer.completed", data) is None

        event = db.query(WebhookEvent).one()
        assert event.event_id == "transfer.completed:4242"
        assert event.status == "processed"

    def test_replay_after_failure_reuses_the_event_row(self, db, payout_service, reserved_payout):
        data = {"id": 77, "reference": "PO-1"}
        with patch.object(
            payout_service.ledger, "release_payout_earnings", side_effect=RuntimeError("db gone")
        ):
            with pytest.raises(RuntimeError):
                payout_service.process_webhook("transfer.failed", data)

        payout = payout_service.process_webhook("transfer.failed", data)

        assert payout.status == PayoutStatus.FAILED.value
        event = db.query(WebhookEvent).one()
        assert event.status == "processed"
        assert event.related_entity_id == payout.id

    def test_unknown_reference_is_a_no_op(self, db, payout_service, reserved_payout):
        assert payout_service.process_webhook("transfer.failed", {"reference": "nope"}) is None
        assert db.query(WebhookEvent).one().status == "ignored"

        payout, _ = reserved_payout
        db.refresh(payout)
        assert payout.status == PayoutStatus.PROCESSING.value

    def test_unhandled_event_type_is_ignored(self, db, payout_service):
        assert payout_service.process_webhook("transfer.reversed", {"reference": "PO-1"}) is None
        assert db.query(WebhookEvent).one().status == "ignored"

    def test_processing_error_is_recorded_and_raised(self, db, payout_service, reserved_payout):
        with patch.object(
            payout_service.ledger, "release_payout_earnings", side_effect=RuntimeError("db gone")
        ):
            with pytest.raises(RuntimeError):
                payout_service.process_webhook("transfer.failed", {"reference": "PO-1"})

        event = db.query(WebhookEvent).one()
        assert event.status == "failed"
        assert event.processing_error == "db gone"
        payout, _ = reserved_payout
        db.refresh(payout)
        assert payout.status == PayoutStatus.PROCESSING.value
