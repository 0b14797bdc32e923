"""Gateway webhook processing.

Two endpoints feed this module: the platform endpoint (intents, payment
methods, customers, checkout sessions, subscriptions) and the connect
endpoint (connected-account updates). Each event is verified with the
gateway's signature check before it is applied.

Intent events only ever raise purchase flags. A late or replayed event can
never move a record backwards.
"""

import structlog

from purchasing.account.directory import AccountDirectory
from purchasing.config import Settings, get_settings
from purchasing.errors import InvalidArgumentError, NotFoundError
from purchasing.gateway.port import GatewayAccount, PaymentGateway, WebhookEvent
from purchasing.payment_method.registry import PaymentMethodRegistry
from purchasing.purchase.record import PurchaseRecord
from purchasing.purchase.repository import PurchaseRepository
from purchasing.purchase.subscription import SubscriptionService
from purchasing.store.port import DELETE_FIELD, DocumentStore

logger = structlog.get_logger(__name__)

# intent status -> flags it implies
_STATUS_FLAGS = {
    "requires_action": ("confirm",),
    "requires_capture": ("confirm", "verify"),
    "processing": ("confirm", "verify"),
    "succeeded": ("confirm", "verify", "capture", "success"),
}


def _raised(record: PurchaseRecord, flags: tuple[str, ...]) -> dict:
    return {flag: True for flag in flags if not getattr(record, flag)}


def _capabilities(account: dict) -> dict:
    capabilities = account.get("capabilities") or {}
    return {name: status for name, status in capabilities.items() if isinstance(status, str)}


class WebhookProcessor:
    def __init__(
        self,
        store: DocumentStore,
        gateway: PaymentGateway,
        settings: Settings | None = None,
        directory: AccountDirectory | None = None,
        registry: PaymentMethodRegistry | None = None,
        subscriptions: SubscriptionService | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.directory = directory or AccountDirectory(store, gateway, self.settings)
        self.registry = registry or PaymentMethodRegistry(store, gateway, self.settings, self.directory)
        self.subscriptions = subscriptions or SubscriptionService(store, gateway, self.settings, self.directory)
        self.repository = PurchaseRepository(store, self.settings)

        self._handlers = {
            "payment_intent.requires_action": self._intent_progressed,
            "payment_intent.amount_capturable_updated": self._intent_progressed,
            "payment_intent.succeeded": self._intent_succeeded,
            "payment_intent.payment_failed": self._intent_failed,
            "payment_intent.canceled": self._intent_canceled,
            "payment_method.attached": self._payment_methods_changed,
            "payment_method.detached": self._payment_methods_changed,
            "payment_method.updated": self._payment_methods_changed,
            "customer.updated": self._customer_updated,
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.created": self._subscription_changed,
            "customer.subscription.updated": self._subscription_changed,
            "customer.subscription.trial_will_end": self._subscription_changed,
            "customer.subscription.deleted": self._subscription_deleted,
        }
        self._connect_handlers = {
            "account.updated": self._account_updated,
        }

    # -------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------
    def handle(self, payload: bytes | str, signature: str | None) -> dict:
        event = self._verify(payload, signature, self.settings.webhook_secret)
        return self.apply(event, self._handlers)

    def handle_connect(self, payload: bytes | str, signature: str | None) -> dict:
        event = self._verify(payload, signature, self.settings.webhook_connect_secret)
        return self.apply(event, self._connect_handlers)

    def _verify(self, payload: bytes | str, signature: str | None, secret: str) -> WebhookEvent:
        if not signature:
            raise InvalidArgumentError("Access denied.", field="signature")
        return self.gateway.construct_webhook_event(payload, signature, secret)

    def apply(self, event: WebhookEvent, handlers: dict | None = None) -> dict:
        handler = (handlers if handlers is not None else self._handlers).get(event.type)
        if handler is None:
            logger.warning("webhook_event_unhandled", event_id=event.id, event_type=event.type)
            raise NotFoundError(f"Event {event.type} is not found.", field="type")

        logger.info("webhook_event_received", event_id=event.id, event_type=event.type)
        handler(event.data)
        return {"success": True}

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def _user_for_customer(self, customer_id: str | None) -> str:
        if not customer_id:
            raise NotFoundError("The customer id is not found.", field="customer")
        link = self.directory.find_by_customer(customer_id)
        if link is None:
            raise NotFoundError("The account data is not found.", field="customer")
        return link.user_id

    def _find_record(self, intent: dict) -> PurchaseRecord:
        metadata = intent.get("metadata") or {}
        if metadata.get("user_id") and metadata.get("order_id"):
            record = self.repository.load(metadata["user_id"], metadata["order_id"])
            if record is not None and record.purchase_id == intent.get("id"):
                return record

        user_id = self._user_for_customer(intent.get("customer"))
        docs = self.store.find(self.settings.purchase_collection(user_id), "purchaseId", intent.get("id"))
        if not docs:
            raise NotFoundError("The purchase data is not found.", field="purchaseId")
        record = PurchaseRecord.from_document(docs[0])
        record.user_id = record.user_id or user_id
        return record

    # -------------------------------------------------------------------
    # Payment intents
    # -------------------------------------------------------------------
    def _intent_progressed(self, intent: dict) -> None:
        flags = _STATUS_FLAGS.get(intent.get("status"), ())
        record = self._find_record(intent)
        self.repository.commit(record, lambda current: _raised(current, flags))

    def _intent_succeeded(self, intent: dict) -> None:
        record = self._find_record(intent)
        charge = intent.get("latest_charge")
        receipt_url = charge.get("receipt_url") if isinstance(charge, dict) else None

        def change(current: PurchaseRecord) -> dict:
            changes = _raised(current, _STATUS_FLAGS["succeeded"])
            if current.error:
                changes.update({"error": False, "errorMessage": DELETE_FIELD})
            if current.captured_amount is None and intent.get("amount_received"):
                changes["capturedAmount"] = intent["amount_received"]
            if receipt_url and not current.receipt_url:
                changes["receiptUrl"] = receipt_url
            return changes

        self.repository.commit(record, change)

    def _intent_failed(self, intent: dict) -> None:
        record = self._find_record(intent)
        message = (intent.get("last_payment_error") or {}).get("message") or "The payment failed."
        flags = _STATUS_FLAGS.get(intent.get("status"), ())

        def change(current: PurchaseRecord) -> dict | None:
            if current.success:
                return None
            return {**_raised(current, flags), "error": True, "errorMessage": message}

        self.repository.commit(record, change)

    def _intent_canceled(self, intent: dict) -> None:
        record = self._find_record(intent)

        def change(current: PurchaseRecord) -> dict | None:
            if current.cancel or current.capture:
                return None
            return {"cancel": True, "nextAction": DELETE_FIELD}

        self.repository.commit(record, change)

    # -------------------------------------------------------------------
    # Customers and payment methods
    # -------------------------------------------------------------------
    def _payment_methods_changed(self, method: dict) -> None:
        customer_id = method.get("customer")
        user_id = self._user_for_customer(customer_id)
        self.registry.sync(user_id, customer_id)

    def _customer_updated(self, customer: dict) -> None:
        customer_id = customer.get("id")
        user_id = self._user_for_customer(customer_id)
        self.registry.sync(user_id, customer_id)

    def _checkout_completed(self, session: dict) -> None:
        if session.get("mode") == "subscription":
            # the subscription itself arrives through customer.subscription.*
            return
        customer_id = session.get("customer")
        setup_intent = session.get("setup_intent")
        if not setup_intent:
            raise NotFoundError("The setup intent is not found.", field="setup_intent")
        user_id = self._user_for_customer(customer_id)
        self.store.set(self.settings.user_doc(user_id), {"setupIntentId": setup_intent}, merge=True)
        self.registry.sync(user_id, customer_id)

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------
    def _subscription_changed(self, subscription: dict) -> None:
        self.subscriptions.mirror(subscription)

    def _subscription_deleted(self, subscription: dict) -> None:
        self.subscriptions.mirror(subscription, deleted=True)

    # -------------------------------------------------------------------
    # Connected accounts
    # -------------------------------------------------------------------
    def _account_updated(self, account: dict) -> None:
        if not account.get("id"):
            raise NotFoundError("The account id is not found.", field="id")
        updated = GatewayAccount(
            id=account["id"],
            email=account.get("email"),
            country=account.get("country"),
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
            capabilities=_capabilities(account),
        )
        if not self.directory.update_capabilities(updated):
            raise NotFoundError("The account data is not found.", field="id")
