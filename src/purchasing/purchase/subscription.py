"""Recurring subscriptions through hosted checkout.

The checkout session carries ``userId`` / ``orderId`` metadata so that the
``customer.subscription.*`` webhooks can mirror the gateway subscription into
``{subscriptionPath}/{orderId}``. Cancellation reads the subscription id from
that mirror.
"""

import structlog

from purchasing.account.directory import AccountDirectory
from purchasing.config import Settings, get_settings
from purchasing.errors import NotFoundError
from purchasing.gateway.port import PaymentGateway
from purchasing.store.port import DocumentStore
from purchasing.utils.clock import timestamp, utcnow

logger = structlog.get_logger(__name__)


class SubscriptionService:
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

    def create_subscription(
        self,
        user_id: str,
        order_id: str,
        product_id: str,
        count: int,
        success_url: str,
        cancel_url: str,
    ) -> dict:
        customer_id = self.directory.ensure_buyer(user_id)
        session = self.gateway.create_subscription_session(
            customer_id,
            price_id=product_id,
            quantity=count,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"userId": user_id, "orderId": order_id},
        )
        logger.info("subscription_checkout_created", user_id=user_id, order_id=order_id, price_id=product_id)
        return {"endpoint": session.url}

    def delete_subscription(self, order_id: str) -> dict:
        doc = self.store.get(self.settings.subscription_doc(order_id))
        if doc is None or not doc.get("subscriptionId"):
            raise NotFoundError("The orderId data is not found.", field="orderId")

        subscription_id = doc.get("subscriptionId")
        self.gateway.cancel_subscription_at_period_end(subscription_id)
        self.store.set(doc.path, {"cancelAtPeriodEnd": True, "updatedTime": timestamp()}, merge=True)
        logger.info("subscription_cancel_scheduled", order_id=order_id, subscription_id=subscription_id)
        return {"success": True}

    def mirror(self, subscription: dict, deleted: bool = False) -> str | None:
        """Write a gateway subscription object into its mirror document.

        Returns the order id written, or None when the subscription carries
        no order metadata and no mirror exists for it yet.
        """
        subscription_id = subscription.get("id")
        metadata = subscription.get("metadata") or {}
        order_id = metadata.get("orderId")
        if not order_id:
            existing = self.store.find(self.settings.subscription_path, "subscriptionId", subscription_id)
            if not existing:
                logger.warning("subscription_without_order", subscription_id=subscription_id)
                return None
            order_id = existing[0].id

        period_end = subscription.get("current_period_end")
        expired = deleted
        if period_end and not deleted:
            expired = utcnow().timestamp() >= period_end
        plan = subscription.get("plan") or {}

        data = {
            "subscriptionId": subscription_id,
            "status": subscription.get("status"),
            "priceId": plan.get("id"),
            "quantity": subscription.get("quantity"),
            "currentPeriodEnd": period_end,
            "cancelAtPeriodEnd": bool(subscription.get("cancel_at_period_end")),
            "expired": expired,
            "updatedTime": timestamp(),
        }
        if metadata.get("userId"):
            data["userId"] = metadata["userId"]
        self.store.set(self.settings.subscription_doc(order_id), data, merge=True)
        logger.info(
            "subscription_mirrored",
            order_id=order_id,
            subscription_id=subscription_id,
            status=data["status"],
            expired=expired,
        )
        return order_id
