"""Payment Method Registry: a user's saved cards and their default.

Saved cards are mirrored under ``{userPath}/{userId}/{paymentPath}/{methodId}``.
The default is resolved with this precedence and then cached on the Account
Link as ``defaultPaymentMethodId``:

    1. the cached default
    2. the gateway customer's invoice default
    3. the earliest saved card
"""

import structlog

from purchasing.account.directory import AccountDirectory
from purchasing.config import Settings, get_settings
from purchasing.errors import NotFoundError
from purchasing.gateway.port import GatewayPaymentMethod, PaymentGateway
from purchasing.store.port import DELETE_FIELD, Document, DocumentStore
from purchasing.utils.clock import timestamp

logger = structlog.get_logger(__name__)


class PaymentMethodRegistry:
    def __init__(
        self,
        store: DocumentStore,
        gateway: PaymentGateway,
        settings: Settings | None = None,
        directory: AccountDirectory | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.directory = directory or AccountDirectory(store, gateway, self.settings)

    def saved_methods(self, user_id: str) -> list[Document]:
        docs = self.store.list_collection(self.settings.payment_collection(user_id))
        return sorted(docs, key=lambda doc: (doc.get("addedAt") or "", doc.id))

    def _cache_default(self, user_id: str, method_id: str | None) -> None:
        value = method_id if method_id else DELETE_FIELD
        self.store.set(
            self.settings.user_doc(user_id),
            {"defaultPaymentMethodId": value, "updatedTime": timestamp()},
            merge=True,
        )

    def resolve_default(self, user_id: str, customer_id: str) -> str:
        link = self.directory.get_link(user_id)
        if link.default_payment_method_id:
            return link.default_payment_method_id

        method_id = self.gateway.retrieve_customer(customer_id).default_payment_method_id
        if not method_id:
            saved = self.saved_methods(user_id)
            if not saved:
                raise NotFoundError("The payment method is not found.", field="paymentMethodId")
            method_id = saved[0].id

        self._cache_default(user_id, method_id)
        logger.debug("default_payment_method_resolved", user_id=user_id, payment_method_id=method_id)
        return method_id

    def _require_saved(self, user_id: str, method_id: str) -> Document:
        doc = self.store.get(self.settings.payment_doc(user_id, method_id))
        if doc is None:
            raise NotFoundError("The payment method is not registered.", field="paymentId")
        return doc

    def set_default(self, user_id: str, method_id: str) -> dict:
        self._require_saved(user_id, method_id)
        link = self.directory.get_link(user_id)
        customer_id = self.directory.require_customer(user_id)

        self.gateway.update_customer_default_payment_method(customer_id, method_id)
        if link.default_payment_method_id != method_id:
            self._cache_default(user_id, method_id)
            self._mark_default(user_id, method_id)
        logger.info("default_payment_method_set", user_id=user_id, payment_method_id=method_id)
        return {"success": True}

    def _mark_default(self, user_id: str, method_id: str | None) -> None:
        for doc in self.saved_methods(user_id):
            is_default = doc.id == method_id
            if bool(doc.get("default")) != is_default:
                self.store.set(doc.path, {"default": is_default}, merge=True)

    def detach(self, user_id: str, method_id: str) -> dict:
        """Remove a saved card. A detached default is not replaced automatically."""
        self._require_saved(user_id, method_id)
        self.gateway.detach_payment_method(method_id)
        self.store.delete(self.settings.payment_doc(user_id, method_id))

        if self.directory.get_link(user_id).default_payment_method_id == method_id:
            self._cache_default(user_id, None)
        logger.info("payment_method_detached", user_id=user_id, payment_method_id=method_id)
        return {"success": True}

    def attach(self, user_id: str, method: GatewayPaymentMethod, default: bool = False) -> Document:
        path = self.settings.payment_doc(user_id, method.id)
        existing = self.store.get(path)
        data = {
            "methodId": method.id,
            "type": method.type,
            "brand": method.brand,
            "last4": method.last4,
            "expMonth": method.exp_month,
            "expYear": method.exp_year,
            "default": default,
        }
        if existing is None:
            data["addedAt"] = timestamp()
        return self.store.set(path, data, merge=True)

    def sync(self, user_id: str, customer_id: str) -> list[str]:
        """Make the saved-card collection mirror the gateway and return its ids."""
        methods = self.gateway.list_payment_methods(customer_id)
        default_id = self.gateway.retrieve_customer(customer_id).default_payment_method_id
        method_ids = [method.id for method in methods]

        if methods and default_id not in method_ids:
            default_id = methods[0].id
            self.gateway.update_customer_default_payment_method(customer_id, default_id)
        elif not methods:
            default_id = None

        for doc in self.saved_methods(user_id):
            if doc.id not in method_ids:
                self.store.delete(doc.path)
        for method in methods:
            self.attach(user_id, method, default=method.id == default_id)

        if self.directory.get_link(user_id).default_payment_method_id != default_id:
            self._cache_default(user_id, default_id)
        logger.info("payment_methods_synced", user_id=user_id, count=len(methods), default=default_id)
        return method_ids
