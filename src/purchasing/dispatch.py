"""Mode dispatcher with multi-database fan-out.

A request is validated once, then the whole mode runs against each
configured document store in order until one completes without raising.
Later stores are not tried after a success. When every store fails, the
last error is re-raised.
"""

import structlog

from purchasing.account.directory import AccountDirectory
from purchasing.api.schemas import ModeRequest, parse_request
from purchasing.config import Settings, get_settings
from purchasing.errors import PurchaseError, classify
from purchasing.gateway import get_gateway
from purchasing.gateway.port import PaymentGateway
from purchasing.notifier import get_notifier
from purchasing.notifier.port import Notifier
from purchasing.payment_method.registry import PaymentMethodRegistry
from purchasing.purchase.machine import PurchaseStateMachine
from purchasing.purchase.subscription import SubscriptionService
from purchasing.store import get_stores
from purchasing.store.port import DocumentStore
from purchasing.utils.logging import add_context, clear_context

logger = structlog.get_logger(__name__)


class Services:
    """Everything one mode needs, bound to a single document store."""

    def __init__(
        self,
        store: DocumentStore,
        gateway: PaymentGateway,
        notifier: Notifier | None,
        settings: Settings,
    ) -> None:
        self.store = store
        self.directory = AccountDirectory(store, gateway, settings)
        self.registry = PaymentMethodRegistry(store, gateway, settings, self.directory)
        self.machine = PurchaseStateMachine(
            store,
            gateway,
            settings,
            notifier=notifier,
            directory=self.directory,
            registry=self.registry,
        )
        self.subscriptions = SubscriptionService(store, gateway, settings, self.directory)


def _run(services: Services, request: ModeRequest) -> dict:
    mode = request.mode
    directory = services.directory
    registry = services.registry
    machine = services.machine

    if mode == "create_account":
        return directory.ensure_seller(request.user_id, request.locale, request.refresh_url, request.return_url)
    if mode == "delete_account":
        return directory.delete_seller(request.user_id)
    if mode == "get_account":
        return directory.get_seller(request.user_id)
    if mode == "dashboard_account":
        return directory.seller_dashboard(request.user_id)
    if mode == "create_customer_and_payment":
        return directory.create_customer_and_payment(request.user_id, request.success_url, request.cancel_url)
    if mode == "set_customer_default_payment":
        return registry.set_default(request.user_id, request.payment_id)
    if mode == "delete_payment":
        return registry.detach(request.user_id, request.payment_id)
    if mode == "delete_customer":
        return directory.delete_buyer(request.user_id)
    if mode == "authorization":
        return machine.authorization(
            request.user_id,
            request.amount,
            request.return_url,
            currency=request.currency,
            online=request.online,
            email_from=request.email_from,
            email_title=request.email_title,
            email_content=request.email_content,
        )
    if mode == "confirm_authorization":
        return machine.confirm_authorization(request.authorized_id)
    if mode == "create_purchase":
        return machine.create_purchase(
            request.user_id,
            request.order_id,
            request.amount,
            currency=request.currency,
            description=request.description,
            target_user_id=request.target_user_id,
            revenue_ratio=request.revenue_ratio,
            email_from=request.email_from,
            email_title=request.email_title,
            email_content=request.email_content,
            locale=request.locale,
        )
    if mode == "confirm_purchase":
        return machine.confirm_purchase(
            request.user_id,
            request.order_id,
            request.return_url,
            online=request.online,
            success_url=request.success_url,
            failure_url=request.failure_url,
        )
    if mode == "capture_purchase":
        return machine.capture_purchase(request.user_id, request.order_id, amount=request.amount)
    if mode == "refresh_purchase":
        return machine.refresh_purchase(request.user_id, request.order_id)
    if mode == "cancel_purchase":
        return machine.cancel_purchase(request.user_id, request.order_id)
    if mode == "refund_purchase":
        return machine.refund_purchase(request.user_id, request.order_id, amount=request.amount)
    if mode == "create_subscription":
        return services.subscriptions.create_subscription(
            request.user_id,
            request.order_id,
            request.product_id,
            request.count,
            request.success_url,
            request.cancel_url,
        )
    if mode == "delete_subscription":
        return services.subscriptions.delete_subscription(request.order_id)
    raise AssertionError(f"Unhandled mode {mode}")


class Dispatcher:
    def __init__(
        self,
        stores: list[DocumentStore] | None = None,
        gateway: PaymentGateway | None = None,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.stores = stores if stores is not None else get_stores()
        self.gateway = gateway or get_gateway()
        self.notifier = notifier if notifier is not None else get_notifier()

    def services_for(self, store: DocumentStore) -> Services:
        return Services(store, self.gateway, self.notifier, self.settings)

    def dispatch(self, body: dict) -> dict:
        request = parse_request(body)
        add_context(
            mode=request.mode,
            user_id=getattr(request, "user_id", None),
            order_id=getattr(request, "order_id", None),
        )
        try:
            return self._fan_out(request)
        finally:
            clear_context()

    def _fan_out(self, request: ModeRequest) -> dict:
        last_error: Exception | None = None
        for store in self.stores:
            add_context(database=store.name)
            try:
                result = _run(self.services_for(store), request)
            except PurchaseError as exc:
                logger.warning("mode_failed", kind=exc.kind, error=exc.message)
                last_error = exc
                continue
            except Exception as exc:
                logger.exception("mode_crashed", error=str(exc))
                last_error = classify(exc)
                continue
            logger.info("mode_completed")
            return result

        if last_error is None:
            raise PurchaseError("No database is configured.")
        raise last_error
