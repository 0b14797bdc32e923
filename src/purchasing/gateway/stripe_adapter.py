"""Stripe payment gateway adapter.

Uses the stripe-python SDK. Every SDK failure is translated into
GatewayError carrying Stripe's user-facing message, so the state machine
never sees Stripe exception types.
"""

from collections.abc import Mapping
from contextlib import contextmanager

import stripe
import structlog

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

logger = structlog.get_logger(__name__)


def _field(obj, *names, default=None):
    """Walk nested attributes of a Stripe object, returning ``default`` on a gap."""
    for name in names:
        if obj is None:
            return default
        if isinstance(obj, Mapping):
            obj = obj.get(name)
        else:
            obj = getattr(obj, name, None)
    return default if obj is None else obj


def _plain(value):
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def _id_of(value) -> str | None:
    """Expandable fields come back either as an id string or an object."""
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


@contextmanager
def _stripe_errors(operation: str):
    try:
        yield
    except stripe.StripeError as exc:
        message = getattr(exc, "user_message", None) or str(exc)
        logger.warning("stripe_call_failed", operation=operation, error=message, code=getattr(exc, "code", None))
        raise GatewayError(message, code=getattr(exc, "code", None)) from exc


def _to_intent(obj) -> PaymentIntent:
    return PaymentIntent(
        id=_field(obj, "id"),
        status=_field(obj, "status"),
        amount=_field(obj, "amount", default=0),
        currency=_field(obj, "currency", default=""),
        customer_id=_id_of(_field(obj, "customer")),
        payment_method_id=_id_of(_field(obj, "payment_method")),
        client_secret=_field(obj, "client_secret"),
        next_action_url=_field(obj, "next_action", "redirect_to_url", "url"),
        next_action_return_url=_field(obj, "next_action", "redirect_to_url", "return_url"),
        amount_received=_field(obj, "amount_received", default=0),
        application_fee_amount=_field(obj, "application_fee_amount"),
        transfer_destination=_id_of(_field(obj, "transfer_data", "destination")),
        metadata=_plain(_field(obj, "metadata", default={})),
        last_error=_field(obj, "last_payment_error", "message"),
        receipt_url=_field(obj, "latest_charge", "receipt_url"),
    )


def _to_account(obj) -> GatewayAccount:
    return GatewayAccount(
        id=_field(obj, "id"),
        email=_field(obj, "email"),
        country=_field(obj, "country"),
        charges_enabled=bool(_field(obj, "charges_enabled", default=False)),
        payouts_enabled=bool(_field(obj, "payouts_enabled", default=False)),
        details_submitted=bool(_field(obj, "details_submitted", default=False)),
        capabilities=_plain(_field(obj, "capabilities", default={})),
    )


def _to_customer(obj) -> GatewayCustomer:
    return GatewayCustomer(
        id=_field(obj, "id"),
        email=_field(obj, "email"),
        default_payment_method_id=_id_of(_field(obj, "invoice_settings", "default_payment_method")),
    )


def _to_payment_method(obj) -> GatewayPaymentMethod:
    return GatewayPaymentMethod(
        id=_field(obj, "id"),
        type=_field(obj, "type", default="card"),
        brand=_field(obj, "card", "brand"),
        last4=_field(obj, "card", "last4"),
        exp_month=_field(obj, "card", "exp_month"),
        exp_year=_field(obj, "card", "exp_year"),
        billing_email=_field(obj, "billing_details", "email"),
        customer_id=_id_of(_field(obj, "customer")),
    )


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key
        stripe.api_key = api_key

    # -------------------------------------------------------------------
    # Connected accounts
    # -------------------------------------------------------------------
    def create_account(self, email: str | None, country: str, idempotency_key: str | None = None) -> GatewayAccount:
        with _stripe_errors("create_account"):
            account = stripe.Account.create(
                type="express",
                country=country,
                email=email,
                capabilities={"card_payments": {"requested": True}, "transfers": {"requested": True}},
                idempotency_key=idempotency_key,
            )
        return _to_account(account)

    def create_account_onboarding_link(self, account_id: str, refresh_url: str, return_url: str) -> str:
        with _stripe_errors("create_account_onboarding_link"):
            link = stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        return _field(link, "url")

    def retrieve_account(self, account_id: str) -> GatewayAccount:
        with _stripe_errors("retrieve_account"):
            return _to_account(stripe.Account.retrieve(account_id))

    def create_login_link(self, account_id: str) -> str:
        with _stripe_errors("create_login_link"):
            link = stripe.Account.create_login_link(account_id)
        return _field(link, "url")

    def delete_account(self, account_id: str) -> None:
        with _stripe_errors("delete_account"):
            stripe.Account.delete(account_id)

    # -------------------------------------------------------------------
    # Customers and payment methods
    # -------------------------------------------------------------------
    def create_customer(
        self, email: str | None, metadata: dict | None = None, idempotency_key: str | None = None
    ) -> GatewayCustomer:
        with _stripe_errors("create_customer"):
            customer = stripe.Customer.create(email=email, metadata=metadata or {}, idempotency_key=idempotency_key)
        return _to_customer(customer)

    def retrieve_customer(self, customer_id: str) -> GatewayCustomer:
        with _stripe_errors("retrieve_customer"):
            return _to_customer(stripe.Customer.retrieve(customer_id))

    def update_customer_default_payment_method(self, customer_id: str, payment_method_id: str) -> GatewayCustomer:
        with _stripe_errors("update_customer_default_payment_method"):
            customer = stripe.Customer.modify(
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
            )
        return _to_customer(customer)

    def delete_customer(self, customer_id: str) -> None:
        with _stripe_errors("delete_customer"):
            stripe.Customer.delete(customer_id)

    def list_payment_methods(self, customer_id: str) -> list[GatewayPaymentMethod]:
        with _stripe_errors("list_payment_methods"):
            methods = stripe.PaymentMethod.list(customer=customer_id, type="card")
        return [_to_payment_method(method) for method in _field(methods, "data", default=[])]

    def retrieve_payment_method(self, payment_method_id: str) -> GatewayPaymentMethod:
        with _stripe_errors("retrieve_payment_method"):
            return _to_payment_method(stripe.PaymentMethod.retrieve(payment_method_id))

    def detach_payment_method(self, payment_method_id: str) -> None:
        with _stripe_errors("detach_payment_method"):
            stripe.PaymentMethod.detach(payment_method_id)

    def create_setup_session(self, customer_id: str, success_url: str, cancel_url: str) -> CheckoutSession:
        with _stripe_errors("create_setup_session"):
            session = stripe.checkout.Session.create(
                mode="setup",
                customer=customer_id,
                payment_method_types=["card"],
                success_url=success_url,
                cancel_url=cancel_url,
            )
        return CheckoutSession(id=_field(session, "id"), url=_field(session, "url"))

    def create_subscription_session(
        self,
        customer_id: str,
        price_id: str,
        quantity: int,
        success_url: str,
        cancel_url: str,
        metadata: dict | None = None,
    ) -> CheckoutSession:
        with _stripe_errors("create_subscription_session"):
            session = stripe.checkout.Session.create(
                mode="subscription",
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": quantity}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata or {},
                subscription_data={"metadata": metadata or {}},
            )
        return CheckoutSession(id=_field(session, "id"), url=_field(session, "url"))

    def cancel_subscription_at_period_end(self, subscription_id: str) -> None:
        with _stripe_errors("cancel_subscription_at_period_end"):
            stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)

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
        params = {
            "amount": amount,
            "currency": currency,
            "customer": customer_id,
            "payment_method": payment_method_id,
            "payment_method_types": ["card"],
            "capture_method": "manual",
            "setup_future_usage": "off_session",
            "metadata": metadata or {},
        }
        if description:
            params["description"] = description
        if receipt_email:
            params["receipt_email"] = receipt_email
        if application_fee_amount is not None:
            params["application_fee_amount"] = application_fee_amount
        if transfer_destination:
            params["transfer_data"] = {"destination": transfer_destination}

        with _stripe_errors("create_payment_intent"):
            intent = stripe.PaymentIntent.create(**params, idempotency_key=idempotency_key)
        return _to_intent(intent)

    def confirm_payment_intent(
        self,
        intent_id: str,
        return_url: str | None = None,
        payment_method_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        params = {}
        if return_url:
            params["return_url"] = return_url
        if payment_method_id:
            params["payment_method"] = payment_method_id
        with _stripe_errors("confirm_payment_intent"):
            intent = stripe.PaymentIntent.confirm(intent_id, **params, idempotency_key=idempotency_key)
        return _to_intent(intent)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        with _stripe_errors("retrieve_payment_intent"):
            return _to_intent(stripe.PaymentIntent.retrieve(intent_id, expand=["latest_charge"]))

    def capture_payment_intent(
        self, intent_id: str, amount: int | None = None, idempotency_key: str | None = None
    ) -> PaymentIntent:
        params = {"expand": ["latest_charge"]}
        if amount is not None:
            params["amount_to_capture"] = amount
        with _stripe_errors("capture_payment_intent"):
            intent = stripe.PaymentIntent.capture(intent_id, **params, idempotency_key=idempotency_key)
        return _to_intent(intent)

    def cancel_payment_intent(self, intent_id: str, idempotency_key: str | None = None) -> PaymentIntent:
        with _stripe_errors("cancel_payment_intent"):
            intent = stripe.PaymentIntent.cancel(intent_id, idempotency_key=idempotency_key)
        return _to_intent(intent)

    def update_payment_intent(
        self, intent_id: str, payment_method_id: str, idempotency_key: str | None = None
    ) -> PaymentIntent:
        with _stripe_errors("update_payment_intent"):
            intent = stripe.PaymentIntent.modify(
                intent_id,
                payment_method=payment_method_id,
                idempotency_key=idempotency_key,
            )
        return _to_intent(intent)

    def create_refund(
        self, intent_id: str, amount: int | None = None, idempotency_key: str | None = None
    ) -> GatewayRefund:
        params = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = amount
        with _stripe_errors("create_refund"):
            refund = stripe.Refund.create(**params, idempotency_key=idempotency_key)
        return GatewayRefund(
            id=_field(refund, "id"),
            status=_field(refund, "status"),
            amount=_field(refund, "amount", default=0),
        )

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    def construct_webhook_event(self, payload: bytes | str, signature: str, secret: str) -> WebhookEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except ValueError as exc:
            logger.error("invalid_webhook_payload")
            raise InvalidArgumentError("Invalid webhook payload", field="payload") from exc
        except stripe.SignatureVerificationError as exc:
            logger.error("invalid_webhook_signature")
            raise InvalidArgumentError("Invalid webhook signature", field="signature") from exc
        return WebhookEvent(
            id=_field(event, "id"),
            type=_field(event, "type"),
            data=_plain(_field(event, "data", "object", default={})),
        )
