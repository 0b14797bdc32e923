"""StripeGateway with the SDK's network calls patched out."""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from purchasing.errors import GatewayError, InvalidArgumentError
from purchasing.gateway import get_gateway, reset_gateway
from purchasing.gateway.fake_adapter import FakeGateway
from purchasing.gateway.stripe_adapter import StripeGateway

WEBHOOK_SECRET = "whsec_integration"


@pytest.fixture()
def stripe_gateway(monkeypatch):
    monkeypatch.setattr(stripe, "api_key", None)
    return StripeGateway(api_key="sk_test_123")


def _sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class TestPaymentIntents:
    def test_create_is_manual_capture_with_split(self, stripe_gateway, monkeypatch):
        seen = {}

        def create(**params):
            seen.update(params)
            return {
                "id": "pi_123",
                "status": "requires_confirmation",
                "amount": params["amount"],
                "currency": params["currency"],
                "customer": params["customer"],
                "payment_method": {"id": params["payment_method"]},
                "transfer_data": {"destination": "acct_1"},
                "metadata": {"order_id": "o1"},
            }

        monkeypatch.setattr(stripe.PaymentIntent, "create", create)

        intent = stripe_gateway.create_payment_intent(
            amount=1000,
            currency="jpy",
            customer_id="cus_1",
            payment_method_id="pm_1",
            application_fee_amount=100,
            transfer_destination="acct_1",
            idempotency_key="purchase-create:u1:o1",
        )

        assert seen["capture_method"] == "manual"
        assert seen["setup_future_usage"] == "off_session"
        assert seen["transfer_data"] == {"destination": "acct_1"}
        assert seen["application_fee_amount"] == 100
        assert seen["idempotency_key"] == "purchase-create:u1:o1"
        assert intent.payment_method_id == "pm_1"
        assert intent.transfer_destination == "acct_1"
        assert intent.metadata == {"order_id": "o1"}

    def test_confirm_maps_redirect(self, stripe_gateway, monkeypatch):
        def confirm(intent_id, **params):
            return {
                "id": intent_id,
                "status": "requires_action",
                "amount": 1000,
                "currency": "jpy",
                "next_action": {
                    "redirect_to_url": {"url": "https://hooks.stripe.com/3ds", "return_url": params["return_url"]}
                },
            }

        monkeypatch.setattr(stripe.PaymentIntent, "confirm", confirm)

        intent = stripe_gateway.confirm_payment_intent("pi_123", return_url="https://shop/return")

        assert intent.requires_action
        assert intent.next_action_url == "https://hooks.stripe.com/3ds"
        assert intent.next_action_return_url == "https://shop/return"

    def test_capture_passes_amount_and_reads_receipt(self, stripe_gateway, monkeypatch):
        seen = {}

        def capture(intent_id, **params):
            seen.update(params)
            return {
                "id": intent_id,
                "status": "succeeded",
                "amount": 1000,
                "amount_received": 600,
                "currency": "jpy",
                "latest_charge": {"receipt_url": "https://pay.stripe.com/receipts/1"},
            }

        monkeypatch.setattr(stripe.PaymentIntent, "capture", capture)

        intent = stripe_gateway.capture_payment_intent("pi_123", amount=600, idempotency_key="pi_123:capture:pm_1:600")

        assert seen["amount_to_capture"] == 600
        assert intent.amount_received == 600
        assert intent.receipt_url == "https://pay.stripe.com/receipts/1"

    def test_sdk_errors_become_gateway_errors(self, stripe_gateway, monkeypatch):
        def confirm(intent_id, **params):
            raise stripe.CardError("Your card was declined.", None, "card_declined")

        monkeypatch.setattr(stripe.PaymentIntent, "confirm", confirm)

        with pytest.raises(GatewayError) as exc_info:
            stripe_gateway.confirm_payment_intent("pi_123")
        assert exc_info.value.message == "Your card was declined."


class TestCustomers:
    def test_default_method_from_invoice_settings(self, stripe_gateway, monkeypatch):
        monkeypatch.setattr(
            stripe.Customer,
            "retrieve",
            lambda customer_id: {"id": customer_id, "invoice_settings": {"default_payment_method": "pm_9"}},
        )
        assert stripe_gateway.retrieve_customer("cus_1").default_payment_method_id == "pm_9"

    def test_list_payment_methods(self, stripe_gateway, monkeypatch):
        monkeypatch.setattr(
            stripe.PaymentMethod,
            "list",
            lambda **params: {
                "data": [
                    {
                        "id": "pm_1",
                        "type": "card",
                        "customer": params["customer"],
                        "card": {"brand": "visa", "last4": "4242", "exp_month": 1, "exp_year": 2030},
                        "billing_details": {"email": "buyer@example.com"},
                    }
                ]
            },
        )

        [method] = stripe_gateway.list_payment_methods("cus_1")

        assert method.brand == "visa"
        assert method.billing_email == "buyer@example.com"
        assert method.customer_id == "cus_1"


class TestWebhooks:
    def test_valid_signature(self, stripe_gateway):
        payload = json.dumps(
            {
                "id": "evt_1",
                "object": "event",
                "type": "payment_intent.succeeded",
                "data": {"object": {"id": "pi_1", "metadata": {"order_id": "o1"}}},
            }
        )

        event = stripe_gateway.construct_webhook_event(payload, _sign(payload), WEBHOOK_SECRET)

        assert event.type == "payment_intent.succeeded"
        assert event.data["id"] == "pi_1"
        assert event.data["metadata"]["order_id"] == "o1"

    def test_wrong_secret(self, stripe_gateway):
        payload = json.dumps({"id": "evt_1", "object": "event", "type": "x", "data": {"object": {}}})
        with pytest.raises(InvalidArgumentError, match="signature"):
            stripe_gateway.construct_webhook_event(payload, _sign(payload, "whsec_other"), WEBHOOK_SECRET)


class TestGatewayFactory:
    def test_fake_without_secret_key(self, settings):
        reset_gateway()
        assert isinstance(get_gateway(), FakeGateway)

    def test_stripe_with_secret_key(self, settings, monkeypatch):
        monkeypatch.setattr(stripe, "api_key", None)
        settings.secret_key = "sk_test_abc"
        reset_gateway()

        gateway = get_gateway()

        assert isinstance(gateway, StripeGateway)
        assert stripe.api_key == "sk_test_abc"
