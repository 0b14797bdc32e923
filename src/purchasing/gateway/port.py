"""Payment gateway port (abstract interface).

Defines the contract that gateway adapters implement so the state machine
can run against FakeGateway (dev/test) or StripeGateway (production)
without changing any application code.

Mutating calls accept an ``idempotency_key``. Repeating a call with the same
key returns the first call's result instead of acting twice.
Adapters raise ``purchasing.errors.GatewayError`` for gateway-side failures.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

# Intent statuses that mean the card has been authorised (or charged)
AUTHORIZED_STATUSES = frozenset({"requires_capture", "succeeded", "processing"})


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    status: str
    amount: int
    currency: str
    customer_id: str | None = None
    payment_method_id: str | None = None
    client_secret: str | None = None
    next_action_url: str | None = None
    next_action_return_url: str | None = None
    amount_received: int = 0
    application_fee_amount: int | None = None
    transfer_destination: str | None = None
    metadata: dict = field(default_factory=dict)
    last_error: str | None = None
    receipt_url: str | None = None

    @property
    def requires_action(self) -> bool:
        return self.status == "requires_action" and bool(self.next_action_url)


@dataclass(frozen=True)
class GatewayAccount:
    id: str
    email: str | None = None
    country: str | None = None
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    capabilities: dict = field(default_factory=dict)

    @property
    def transfers_active(self) -> bool:
        return self.capabilities.get("transfers") == "active"

    @property
    def card_payments_active(self) -> bool:
        return self.capabilities.get("card_payments") == "active"


@dataclass(frozen=True)
class GatewayCustomer:
    id: str
    email: str | None = None
    default_payment_method_id: str | None = None


@dataclass(frozen=True)
class GatewayPaymentMethod:
    id: str
    type: str = "card"
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None
    billing_email: str | None = None
    customer_id: str | None = None


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    status: str
    amount: int


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    data: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    # -------------------------------------------------------------------
    # Connected (seller) accounts
    # -------------------------------------------------------------------
    @abstractmethod
    def create_account(self, email: str | None, country: str, idempotency_key: str | None = None) -> GatewayAccount:
        """Create a connected account able to receive transfers."""
        ...

    @abstractmethod
    def create_account_onboarding_link(self, account_id: str, refresh_url: str, return_url: str) -> str:
        """Return a hosted onboarding URL for the account."""
        ...

    @abstractmethod
    def retrieve_account(self, account_id: str) -> GatewayAccount: ...

    @abstractmethod
    def create_login_link(self, account_id: str) -> str:
        """Return a dashboard login URL for the account."""
        ...

    @abstractmethod
    def delete_account(self, account_id: str) -> None: ...

    # -------------------------------------------------------------------
    # Customers and payment methods
    # -------------------------------------------------------------------
    @abstractmethod
    def create_customer(
        self, email: str | None, metadata: dict | None = None, idempotency_key: str | None = None
    ) -> GatewayCustomer: ...

    @abstractmethod
    def retrieve_customer(self, customer_id: str) -> GatewayCustomer: ...

    @abstractmethod
    def update_customer_default_payment_method(self, customer_id: str, payment_method_id: str) -> GatewayCustomer: ...

    @abstractmethod
    def delete_customer(self, customer_id: str) -> None: ...

    @abstractmethod
    def list_payment_methods(self, customer_id: str) -> list[GatewayPaymentMethod]:
        """Return the customer's saved cards."""
        ...

    @abstractmethod
    def retrieve_payment_method(self, payment_method_id: str) -> GatewayPaymentMethod: ...

    @abstractmethod
    def detach_payment_method(self, payment_method_id: str) -> None: ...

    @abstractmethod
    def create_setup_session(self, customer_id: str, success_url: str, cancel_url: str) -> CheckoutSession:
        """Start a hosted session in which the customer saves a card."""
        ...

    @abstractmethod
    def create_subscription_session(
        self,
        customer_id: str,
        price_id: str,
        quantity: int,
        success_url: str,
        cancel_url: str,
        metadata: dict | None = None,
    ) -> CheckoutSession: ...

    @abstractmethod
    def cancel_subscription_at_period_end(self, subscription_id: str) -> None: ...

    # -------------------------------------------------------------------
    # Payment intents
    # -------------------------------------------------------------------
    @abstractmethod
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
        """Create a manual-capture intent saved for off-session reuse."""
        ...

    @abstractmethod
    def confirm_payment_intent(
        self,
        intent_id: str,
        return_url: str | None = None,
        payment_method_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntent: ...

    @abstractmethod
    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent: ...

    @abstractmethod
    def capture_payment_intent(
        self, intent_id: str, amount: int | None = None, idempotency_key: str | None = None
    ) -> PaymentIntent: ...

    @abstractmethod
    def cancel_payment_intent(self, intent_id: str, idempotency_key: str | None = None) -> PaymentIntent: ...

    @abstractmethod
    def update_payment_intent(
        self, intent_id: str, payment_method_id: str, idempotency_key: str | None = None
    ) -> PaymentIntent: ...

    @abstractmethod
    def create_refund(
        self, intent_id: str, amount: int | None = None, idempotency_key: str | None = None
    ) -> GatewayRefund: ...

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    @abstractmethod
    def construct_webhook_event(self, payload: bytes | str, signature: str, secret: str) -> WebhookEvent:
        """Verify a webhook payload's signature and parse it.

        Raises InvalidArgumentError when the payload or signature is invalid.
        """
        ...
