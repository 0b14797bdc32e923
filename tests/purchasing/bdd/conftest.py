"""Shared BDD fixtures and step definitions for purchases."""

import pytest
from pytest_bdd import given, parsers, then

from purchasing.errors import PurchaseError

RETURN_URL = "https://shop.example.com/purchase/return"


@pytest.fixture()
def rejection():
    """Holds the error raised by the last rejected step."""
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a buyer with a saved card", target_fixture="buyer_account")
def _buyer_with_card(buyer):
    return buyer


@given("a seller who finished onboarding", target_fixture="seller_account")
def _onboarded_seller(seller):
    return seller


@given("no email channel is configured")
def _no_email_channel(machine):
    machine.notifier = None


@given("the gateway asks for authentication")
def _gateway_requires_action(gateway):
    gateway.configure(requires_action=True)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
def _record(repository, buyer_account, order_id):
    return repository.get(buyer_account["user_id"], order_id)


@then(parsers.cfparse('purchase "{order_id}" has refunded {amount:d}'))
def _refunded(repository, buyer_account, order_id, amount):
    assert _record(repository, buyer_account, order_id).refunded_amount == amount


@then(parsers.cfparse('purchase "{order_id}" is marked as refunded'))
def _marked_refunded(repository, buyer_account, order_id):
    record = _record(repository, buyer_account, order_id)
    assert record.refund is True
    assert record.cancel is True
    assert record.capture is True


@then(parsers.cfparse('purchase "{order_id}" is marked as cancelled'))
def _marked_cancelled(repository, buyer_account, order_id):
    record = _record(repository, buyer_account, order_id)
    assert record.cancel is True
    assert record.capture is False


@then(parsers.cfparse('purchase "{order_id}" is not captured'))
def _not_captured(repository, buyer_account, order_id):
    record = _record(repository, buyer_account, order_id)
    assert record.capture is False
    assert record.error is False


@then(parsers.cfparse('purchase "{order_id}" has an application fee of {fee:d}'))
def _application_fee(repository, buyer_account, order_id, fee):
    record = _record(repository, buyer_account, order_id)
    assert record.application_fee_amount == fee
    assert record.transfer_amount == record.amount - fee


@then(parsers.cfparse('purchase "{order_id}" transfers to the seller account'))
def _transfers_to_seller(repository, buyer_account, seller_account, gateway, order_id):
    record = _record(repository, buyer_account, order_id)
    assert record.transfer_destination == seller_account["account_id"]
    assert gateway.intents[record.purchase_id].transfer_destination == seller_account["account_id"]


@then(parsers.cfparse('purchase "{order_id}" records an error'))
def _records_error(repository, buyer_account, order_id):
    record = _record(repository, buyer_account, order_id)
    assert record.error is True
    assert record.error_message


@then(parsers.cfparse('refunding {amount:d} on purchase "{order_id}" is rejected as "{kind}"'))
def _refund_rejected(machine, buyer_account, order_id, amount, kind):
    with pytest.raises(PurchaseError) as exc_info:
        machine.refund_purchase(buyer_account["user_id"], order_id, amount=amount)
    assert exc_info.value.kind == kind


@then(parsers.cfparse('capturing purchase "{order_id}" is rejected as "{kind}"'))
def _capture_rejected(machine, buyer_account, order_id, kind):
    with pytest.raises(PurchaseError) as exc_info:
        machine.capture_purchase(buyer_account["user_id"], order_id)
    assert exc_info.value.kind == kind


@then(parsers.cfparse('confirming purchase "{order_id}" offline is rejected as "{kind}"'))
def _offline_confirm_rejected(machine, buyer_account, order_id, kind):
    with pytest.raises(PurchaseError) as exc_info:
        machine.confirm_purchase(buyer_account["user_id"], order_id, RETURN_URL, online=False)
    assert exc_info.value.kind == kind
