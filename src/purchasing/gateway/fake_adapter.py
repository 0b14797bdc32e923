"""Configurable fake payment gateway for development and testing.

Simulates the gateway objects the service relies on (connected accounts,
customers, saved cards, manual-capture payment intents, refunds) entirely in
memory. Runtime knobs make it useful for:
- Automated tests with predictable outcomes
- Exercising the 3-D Secure redirect path (``requires_action``)
- Development without real gateway credentials

Idempotency keys behave like the real gateway: a repeated key returns the
first result without touching state.
"""

import json
from dataclasses import replace
from uuid import uuid4

from purchasing.errors import GatewayError, InvalidArgumentError
from purchasing.gateway.port import (
    CheckoutSession,
    GatewayAccount,
    GatewayCustomer,
    GatewayPaymentMethod,
    GatewayRefund,
    PaymentGateway,
    PaymentIntent,
    WebhookEvent,
)

VALID_SIGNATURE = "test-signature"


def _new_id(prefix: str) -> str:
    return f"{prefix}_fake_{uuid4().hex[:12]}"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.requires_action: bool = False
        self.capture_status: str = "succeeded"
        self.calls: list[dict] = []

        self.accounts: dict[str, GatewayAccount] = {}
        self.customers: dict[str, GatewayCustomer] = {}
        self.payment_methods: dict[str, GatewayPaymentMethod] = {}
        self.intents: dict[str, PaymentIntent] = {}
        self.refunded: dict[str, int] = {}
        self.subscriptions: dict[str, dict] = {}
        self._idempotent_results: dict[str, object] = {}

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Card declined",
        requires_action: bool = False,
        capture_status: str = "succeeded",
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.requires_action = requires_action
        self.capture_status = capture_status

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------
    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})

    def _check_failure(self) -> None:
        if not self.should_succeed:
            raise GatewayError(self.failure_reason, code="card_declined")

    def _cached(self, method: str, idempotency_key: str | None):
        if idempotency_key is None:
            return None
        return self._idempotent_results.get(f"{method}:{idempotency_key}")

    def _remember(self, method: str, idempotency_key: str | None, result):
        if idempotency_key is not None:
            self._idempotent_results[f"{method}:{idempotency_key}"] = result
        return result

    def _intent(self, intent_id: str) -> PaymentIntent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise GatewayError(f"No such payment_intent: '{intent_id}'", code="resource_missing")
        return intent

    def _store_intent(self, intent: PaymentIntent) -> PaymentIntent:
        self.intents[intent.id] = intent
        return intent

    # -------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------
    def add_payment_method(
        self,
        customer_id: str,
        brand: str = "visa",
        last4: str = "4242",
        billing_email: str | None = None,
        make_default: bool = False,
    ) -> GatewayPaymentMethod:
        """Attach a new card to a customer, as the hosted setup page would."""
        method = GatewayPaymentMethod(
            id=_new_id("pm"),
            brand=brand,
            last4=last4,
            exp_month=12,
            exp_year=2030,
            billing_email=billing_email,
            customer_id=customer_id,
        )
        self.payment_methods[method.id] = method
        if make_default:
            self.customers[customer_id] = replace(self.customers[customer_id], default_payment_method_id=method.id)
        return method

    def activate_transfers(self, account_id: str) -> GatewayAccount:
        """Mark a connected account as having finished onboarding."""
        account = replace(
            self.accounts[account_id],
            details_submitted=True,
            charges_enabled=True,
            payouts_enabled=True,
            capabilities={"transfers": "active", "card_payments": "active"},
        )
        self.accounts[account_id] = account
        return account

    def complete_action(self, intent_id: str, succeed: bool = True) -> PaymentIntent:
        """Finish a pending 3-D Secure challenge."""
        intent = self._intent(intent_id)
        if succeed:
            return self._store_intent(replace(intent, status="requires_capture", next_action_url=None))
        return self._store_intent(
            replace(
                intent,
                status="requires_payment_method",
                next_action_url=None,
                last_error="Authentication failed",
            )
        )

    # -------------------------------------------------------------------
    # Connected accounts
    # -------------------------------------------------------------------
    def create_account(self, email: str | None, country: str, idempotency_key: str | None = None) -> GatewayAccount:
        self._record("create_account", email=email, country=country, idempotency_key=idempotency_key)
        cached = self._cached("create_account", idempotency_key)
        if cached is not None:
            return cached
        self._check_failure()
        account = GatewayAccount(
            id=_new_id("acct"),
            email=email,
            country=country,
            capabilities={"transfers": "inactive", "card_payments": "inactive"},
        )
        self.accounts[account.id] = account
        return self._remember("create_account", idempotency_key, account)

    def create_account_onboarding_link(self, account_id: str, refresh_url: str, return_url: str) -> str:
        self._record("create_account_onboarding_link", account_id=account_id)
        self.retrieve_account(account_id)
        return f"https://connect.fake-gateway.test/setup/{account_id}/{uuid4().hex[:8]}"

    def retrieve_account(self, account_id: str) -> GatewayAccount:
        account = self.accounts.get(account_id)
        if account is None:
            raise GatewayError(f"No such account: '{account_id}'", code="resource_missing")
        return account

    def create_login_link(self, account_id: str) -> str:
        self._record("create_login_link", account_id=account_id)
        self.retrieve_account(account_id)
        return f"https://connect.fake-gateway.test/express/{account_id}"

    def delete_account(self, account_id: str) -> None:
        self._record("delete_account", account_id=account_id)
        self.retrieve_account(account_id)
        del self.accounts[account_id]

    # -------------------------------------------------------------------
    # Customers and payment methods
    # -------------------------------------------------------------------
    def create_customer(
        self, email: str | None, metadata: dict | None = None, idempotency_key: str | None = None
    ) -> GatewayCustomer:
        self._record("create_customer", email=email, idempotency_key=idempotency_key)
        cached = self._cached("create_customer", idempotency_key)
        if cached is not None:
            return cached
        self._check_failure()
        customer = GatewayCustomer(id=_new_id("cus"), email=email)
        self.customers[customer.id] = customer
        return self._remember("create_customer", idempotency_key, customer)

    def retrieve_customer(self, customer_id: str) -> GatewayCustomer:
        customer = self.customers.get(customer_id)
        if customer is None:
            raise GatewayError(f"No such customer: '{customer_id}'", code="resource_missing")
        return customer

    def update_customer_default_payment_method(self, customer_id: str, payment_method_id: str) -> GatewayCustomer:
        self._record(
            "update_customer_default_payment_method",
            customer_id=customer_id,
            payment_method_id=payment_method_id,
        )
        customer = replace(self.retrieve_customer(customer_id), default_payment_method_id=payment_method_id)
        self.customers[customer_id] = customer
        return customer

    def delete_customer(self, customer_id: str) -> None:
        self._record("delete_customer", customer_id=customer_id)
        self.retrieve_customer(customer_id)
        del self.customers[customer_id]
        for method_id in [m.id for m in self.payment_methods.values() if m.customer_id == customer_id]:
            del self.payment_methods[method_id]

    def list_payment_methods(self, customer_id: str) -> list[GatewayPaymentMethod]:
        self._record("list_payment_methods", customer_id=customer_id)
        return [m for m in self.payment_methods.values() if m.customer_id == customer_id]

    def retrieve_payment_method(self, payment_method_id: str) -> GatewayPaymentMethod:
        method = self.payment_methods.get(payment_method_id)
        if method is None:
            raise GatewayError(f"No such PaymentMethod: '{payment_method_id}'", code="resource_missing")
        return method

    def detach_payment_method(self, payment_method_id: str) -> None:
        self._record("detach_payment_method", payment_method_id=payment_method_id)
        method = self.retrieve_payment_method(payment_method_id)
        self.payment_methods[payment_method_id] = replace(method, customer_id=None)
        for customer in list(self.customers.values()):
            if customer.default_payment_method_id == payment_method_id:
                self.customers[customer.id] = replace(customer, default_payment_method_id=None)

    def create_setup_session(self, customer_id: str, success_url: str, cancel_url: str) -> CheckoutSession:
        self._record("create_setup_session", customer_id=customer_id)
        self.retrieve_customer(customer_id)
        session_id = _new_id("cs")
        return CheckoutSession(id=session_id, url=f"https://checkout.fake-gateway.test/setup/{session_id}")

    def create_subscription_session(
        self,
        customer_id: str,
        price_id: str,
        quantity: int,
        success_url: str,
        cancel_url: str,
        metadata: dict | None = None,
    ) -> CheckoutSession:
        self._record(
            "create_subscription_session",
            customer_id=customer_id,
            price_id=price_id,
            quantity=quantity,
            metadata=metadata or {},
        )
        self._check_failure()
        session_id = _new_id("cs")
        return CheckoutSession(id=session_id, url=f"https://checkout.fake-gateway.test/pay/{session_id}")

    def cancel_subscription_at_period_end(self, subscription_id: str) -> None:
        self._record("cancel_subscription_at_period_end", subscription_id=subscription_id)
        self._check_failure()
        self.subscriptions.setdefault(subscription_id, {})["cancel_at_period_end"] = True

    # -------------------------------------------------------------------
    # Payment intents
    # -------------------------------------------------------------------
    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: str,
        payment_method_id: str,
        description: str | None = None,
        receipt_email: str | None = None,
        metadata: dict | None = None,
        application_fee_amount: int | None = None,
        transfer_destination: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        self._record(
            "create_payment_intent",
            amount=amount,
            currency=currency,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            receipt_email=receipt_email,
            application_fee_amount=application_fee_amount,
            transfer_destination=transfer_destination,
            idempotency_key=idempotency_key,
        )
        cached = self._cached("create_payment_intent", idempotency_key)
        if cached is not None:
            return cached
        self._check_failure()
        intent_id = _new_id("pi")
        intent = PaymentIntent(
            id=intent_id,
            status="requires_confirmation",
            amount=amount,
            currency=currency,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}",
            application_fee_amount=application_fee_amount,
            transfer_destination=transfer_destination,
            metadata=dict(metadata or {}),
        )
        self._store_intent(intent)
        return self._remember("create_payment_intent", idempotency_key, intent)

    def confirm_payment_intent(
        self,
        intent_id: str,
        return_url: str | None = None,
        payment_method_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        self._record(
            "confirm_payment_intent",
            intent_id=intent_id,
            return_url=return_url,
            payment_method_id=payment_method_id,
            idempotency_key=idempotency_key,
        )
        cached = self._cached("confirm_payment_intent", idempotency_key)
        if cached is not None:
            return cached
        intent = self._intent(intent_id)
        if intent.status not in ("requires_confirmation", "requires_payment_method", "requires_action"):
            raise GatewayError(
                f"This PaymentIntent's status is {intent.status} and it cannot be confirmed.",
                code="payment_intent_unexpected_state",
            )
        self._check_failure()
        method_id = payment_method_id or intent.payment_method_id
        if self.requires_action:
            intent = replace(
                intent,
                status="requires_action",
                payment_method_id=method_id,
                next_action_url=f"https://hooks.fake-gateway.test/3d_secure/{intent_id}",
                next_action_return_url=return_url,
                last_error=None,
            )
        else:
            intent = replace(
                intent,
                status="requires_capture",
                payment_method_id=method_id,
                next_action_url=None,
                last_error=None,
            )
        self._store_intent(intent)
        return self._remember("confirm_payment_intent", idempotency_key, intent)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        self._record("retrieve_payment_intent", intent_id=intent_id)
        return self._intent(intent_id)

    def capture_payment_intent(
        self, intent_id: str, amount: int | None = None, idempotency_key: str | None = None
    ) -> PaymentIntent:
        self._record("capture_payment_intent", intent_id=intent_id, amount=amount, idempotency_key=idempotency_key)
        cached = self._cached("capture_payment_intent", idempotency_key)
        if cached is not None:
            return cached
        intent = self._intent(intent_id)
        if intent.status != "requires_capture":
            raise GatewayError(
                f"This PaymentIntent could not be captured because it has a status of {intent.status}.",
                code="payment_intent_unexpected_state",
            )
        self._check_failure()
        captured = amount if amount is not None else intent.amount
        if captured > intent.amount:
            raise GatewayError("Amount to capture exceeds the authorised amount.", code="amount_too_large")
        intent = replace(
            intent,
            status=self.capture_status,
            amount_received=captured if self.capture_status == "succeeded" else 0,
            receipt_url=f"https://pay.fake-gateway.test/receipts/{intent_id}",
        )
        self._store_intent(intent)
        return self._remember("capture_payment_intent", idempotency_key, intent)

    def cancel_payment_intent(self, intent_id: str, idempotency_key: str | None = None) -> PaymentIntent:
        self._record("cancel_payment_intent", intent_id=intent_id, idempotency_key=idempotency_key)
        cached = self._cached("cancel_payment_intent", idempotency_key)
        if cached is not None:
            return cached
        intent = self._intent(intent_id)
        if intent.status in ("succeeded", "canceled"):
            raise GatewayError(
                f"You cannot cancel this PaymentIntent because it has a status of {intent.status}.",
                code="payment_intent_unexpected_state",
            )
        self._check_failure()
        intent = self._store_intent(replace(intent, status="canceled", next_action_url=None))
        return self._remember("cancel_payment_intent", idempotency_key, intent)

    def update_payment_intent(
        self, intent_id: str, payment_method_id: str, idempotency_key: str | None = None
    ) -> PaymentIntent:
        self._record(
            "update_payment_intent",
            intent_id=intent_id,
            payment_method_id=payment_method_id,
            idempotency_key=idempotency_key,
        )
        cached = self._cached("update_payment_intent", idempotency_key)
        if cached is not None:
            return cached
        intent = self._intent(intent_id)
        if intent.status in ("succeeded", "canceled"):
            raise GatewayError(
                f"This PaymentIntent's payment_method could not be updated because it has a status of {intent.status}.",
                code="payment_intent_unexpected_state",
            )
        self._check_failure()
        intent = self._store_intent(
            replace(
                intent,
                payment_method_id=payment_method_id,
                status="requires_confirmation",
                next_action_url=None,
                last_error=None,
            )
        )
        return self._remember("update_payment_intent", idempotency_key, intent)

    def create_refund(
        self, intent_id: str, amount: int | None = None, idempotency_key: str | None = None
    ) -> GatewayRefund:
        self._record("create_refund", intent_id=intent_id, amount=amount, idempotency_key=idempotency_key)
        cached = self._cached("create_refund", idempotency_key)
        if cached is not None:
            return cached
        intent = self._intent(intent_id)
        if intent.status != "succeeded":
            raise GatewayError("This PaymentIntent has not been captured.", code="charge_not_captured")
        self._check_failure()
        remaining = intent.amount_received - self.refunded.get(intent_id, 0)
        refund_amount = amount if amount is not None else remaining
        if refund_amount <= 0 or refund_amount > remaining:
            raise GatewayError(
                f"Refund amount ({refund_amount}) is greater than unrefunded amount on charge ({remaining})",
                code="amount_too_large",
            )
        self.refunded[intent_id] = self.refunded.get(intent_id, 0) + refund_amount
        refund = GatewayRefund(id=_new_id("re"), status="succeeded", amount=refund_amount)
        return self._remember("create_refund", idempotency_key, refund)

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    def construct_webhook_event(self, payload: bytes | str, signature: str, secret: str) -> WebhookEvent:
        if signature != VALID_SIGNATURE:
            raise InvalidArgumentError("Invalid webhook signature", field="signature")
        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise InvalidArgumentError("Invalid webhook payload", field="payload") from exc
        return WebhookEvent(
            id=body.get("id", _new_id("evt")),
            type=body.get("type", ""),
            data=(body.get("data") or {}).get("object") or {},
        )
