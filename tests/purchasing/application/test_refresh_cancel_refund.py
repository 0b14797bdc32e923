"""Tests for refresh, cancel and refund transitions."""

import pytest

from purchasing.errors import (
    AlreadyExistsError,
    FailedPreconditionError,
    GatewayError,
    InvalidArgumentError,
)
from purchasing.purchase.machine import CANCEL_FAILED_MESSAGE, REFUND_FAILED_MESSAGE
from purchasing.store.port import DELETE_FIELD

RETURN_URL = "https://shop.example.com/purchase/return"


@pytest.fixture()
def failed(machine, buyer, created, gateway):
    """A purchase whose confirmation was declined."""
    gateway.configure(should_succeed=False)
    with pytest.raises(GatewayError):
        machine.confirm_purchase(buyer["user_id"], created["order_id"], RETURN_URL)
    gateway.configure()
    return created


@pytest.fixture()
def new_card(buyer, gateway, registry):
    """Replace the buyer's default card with a freshly added one."""
    method = gateway.add_payment_method(buyer["customer_id"], brand="mastercard", last4="4444")
    registry.sync(buyer["user_id"], buyer["customer_id"])
    registry.set_default(buyer["user_id"], method.id)
    return method


class TestRefresh:
    def test_after_success_is_already_exists(self, machine, buyer, captured):
        with pytest.raises(AlreadyExistsError, match="already been succeed"):
            machine.refresh_purchase(buyer["user_id"], captured["order_id"])

    def test_without_error_succeeds_without_registry(self, machine, buyer, created, store, settings):
        # with no customer link any registry lookup would fail
        store.set(settings.user_doc(buyer["user_id"]), {"gatewayCustomerId": DELETE_FIELD})
        assert machine.refresh_purchase(buyer["user_id"], created["order_id"]) == {"success": True}

    def test_unchanged_method_is_failed_precondition(self, machine, buyer, failed):
        with pytest.raises(FailedPreconditionError, match="no change in the Payment method"):
            machine.refresh_purchase(buyer["user_id"], failed["order_id"])

    def test_new_method_clears_error_and_resets_confirmation(
        self, machine, buyer, failed, new_card, repository, gateway
    ):
        assert machine.refresh_purchase(buyer["user_id"], failed["order_id"]) == {"success": True}

        record = repository.get(buyer["user_id"], failed["order_id"])
        assert record.payment_method_id == new_card.id
        assert record.error is False
        assert record.error_message is None
        assert record.confirm is False
        assert record.verify is False
        assert gateway.intents[failed["purchase_id"]].payment_method_id == new_card.id

    def test_refreshed_purchase_can_complete(self, machine, buyer, failed, new_card, repository):
        machine.refresh_purchase(buyer["user_id"], failed["order_id"])
        machine.confirm_purchase(buyer["user_id"], failed["order_id"], RETURN_URL)
        machine.capture_purchase(buyer["user_id"], failed["order_id"])

        record = repository.get(buyer["user_id"], failed["order_id"])
        assert record.success is True
        assert record.payment_method_id == new_card.id


class TestCancel:
    def test_cancel_twice_succeeds(self, machine, buyer, created, repository, gateway):
        assert machine.cancel_purchase(buyer["user_id"], created["order_id"]) == {"success": True}
        assert machine.cancel_purchase(buyer["user_id"], created["order_id"]) == {"success": True}

        assert repository.get(buyer["user_id"], created["order_id"]).cancel is True
        assert len(gateway.calls_to("cancel_payment_intent")) == 1
        assert gateway.intents[created["purchase_id"]].status == "canceled"

    def test_cancel_clears_stale_error(self, machine, buyer, failed, repository):
        machine.cancel_purchase(buyer["user_id"], failed["order_id"])

        record = repository.get(buyer["user_id"], failed["order_id"])
        assert record.cancel is True
        assert record.error is False
        assert record.error_message is None

    def test_cancel_after_capture_is_failed_precondition(self, machine, buyer, captured, repository):
        with pytest.raises(FailedPreconditionError, match="already been completed"):
            machine.cancel_purchase(buyer["user_id"], captured["order_id"])
        assert repository.get(buyer["user_id"], captured["order_id"]).cancel is False

    def test_gateway_failure_is_persisted(self, machine, buyer, confirmed, gateway, repository):
        gateway.configure(should_succeed=False)
        with pytest.raises(GatewayError):
            machine.cancel_purchase(buyer["user_id"], confirmed["order_id"])

        record = repository.get(buyer["user_id"], confirmed["order_id"])
        assert record.cancel is False
        assert record.error_message == CANCEL_FAILED_MESSAGE


class TestRefund:
    def test_before_capture_is_failed_precondition(self, machine, buyer, confirmed):
        with pytest.raises(FailedPreconditionError):
            machine.refund_purchase(buyer["user_id"], confirmed["order_id"])

    def test_partial_refunds_accumulate(self, machine, buyer, captured, repository):
        machine.refund_purchase(buyer["user_id"], captured["order_id"], amount=400)

        record = repository.get(buyer["user_id"], captured["order_id"])
        assert record.refund is True
        assert record.cancel is True
        assert record.capture is True
        assert record.refunded_amount == 400

        with pytest.raises(InvalidArgumentError):
            machine.refund_purchase(buyer["user_id"], captured["order_id"], amount=700)

        machine.refund_purchase(buyer["user_id"], captured["order_id"], amount=600)
        assert repository.get(buyer["user_id"], captured["order_id"]).refunded_amount == 1000

    def test_full_refund_then_nothing_left(self, machine, buyer, captured, repository):
        machine.refund_purchase(buyer["user_id"], captured["order_id"])
        assert repository.get(buyer["user_id"], captured["order_id"]).refunded_amount == 1000

        with pytest.raises(AlreadyExistsError):
            machine.refund_purchase(buyer["user_id"], captured["order_id"])

    def test_bound_is_captured_amount(self, machine, buyer, confirmed):
        machine.capture_purchase(buyer["user_id"], confirmed["order_id"], amount=500)
        with pytest.raises(InvalidArgumentError):
            machine.refund_purchase(buyer["user_id"], confirmed["order_id"], amount=600)

    def test_refund_idempotency_key_tracks_progress(self, machine, buyer, captured, gateway):
        machine.refund_purchase(buyer["user_id"], captured["order_id"], amount=400)
        machine.refund_purchase(buyer["user_id"], captured["order_id"], amount=400)

        keys = [call["idempotency_key"] for call in gateway.calls_to("create_refund")]
        assert keys == [f"{captured['purchase_id']}:refund:0:400", f"{captured['purchase_id']}:refund:400:400"]

    def test_gateway_failure_is_persisted(self, machine, buyer, captured, gateway, repository):
        gateway.configure(should_succeed=False)
        with pytest.raises(GatewayError):
            machine.refund_purchase(buyer["user_id"], captured["order_id"], amount=100)

        record = repository.get(buyer["user_id"], captured["order_id"])
        assert record.refund is False
        assert record.refunded_amount == 0
        assert record.error_message == REFUND_FAILED_MESSAGE
