"""Purchase State Machine.

Drives one order's payment through the gateway:

    create -> confirm -> capture -> refund
                  \\-> cancel (before capture)
    refresh: swap the payment method after a persisted error

Every transition loads the record fresh, checks its preconditions without
writing, calls the gateway with an idempotency key derived from the record,
and writes the outcome through PurchaseRepository.commit (compare-and-set).
The change functions re-check the flags they depend on against the freshest
record, so a transition that lost a race never overwrites the winner.
Gateway failures are the only errors that are both persisted on the record
(``error`` / ``errorMessage``) and re-raised.
"""

import structlog

from purchasing.account.directory import AccountDirectory
from purchasing.config import Settings, get_settings
from purchasing.errors import (
    AbortedError,
    AlreadyExistsError,
    ContentionError,
    FailedPreconditionError,
    GatewayError,
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)
from purchasing.gateway.port import AUTHORIZED_STATUSES, PaymentGateway, PaymentIntent
from purchasing.notifier.port import Notifier, render_content
from purchasing.payment_method.registry import PaymentMethodRegistry
from purchasing.purchase.continuation import ContinuationSigner
from purchasing.purchase.record import PurchaseRecord
from purchasing.purchase.repository import PurchaseRepository
from purchasing.store.port import DELETE_FIELD, DocumentStore, VersionConflictError

logger = structlog.get_logger(__name__)

CONFIRM_FAILED_MESSAGE = "The Purchase confirmation failed. Please replace the billing information and Refresh."
CAPTURE_FAILED_MESSAGE = "The Purchase capture failed. Please replace the billing information and Refresh."
REFRESH_FAILED_MESSAGE = "The Purchase refresh failed. Please replace the billing information and Refresh."
CANCEL_FAILED_MESSAGE = "The Purchase cancellation failed. Please try again."
REFUND_FAILED_MESSAGE = "The Purchase refund failed. Please try again."
OFFLINE_UNCONFIGURED_MESSAGE = (
    "3D Secure authentication is required, but the user is offline and no email settings have been configured."
)
EMAIL_FAILED_MESSAGE = (
    "3D Secure authentication is required, but the authentication email could not be sent to the user."
)

_CLEAR_ERROR = {"error": False, "errorMessage": DELETE_FIELD}


class PurchaseStateMachine:
    def __init__(
        self,
        store: DocumentStore,
        gateway: PaymentGateway,
        settings: Settings | None = None,
        notifier: Notifier | None = None,
        directory: AccountDirectory | None = None,
        registry: PaymentMethodRegistry | None = None,
        signer: ContinuationSigner | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.repository = PurchaseRepository(store, self.settings)
        self.directory = directory or AccountDirectory(store, gateway, self.settings)
        self.registry = registry or PaymentMethodRegistry(store, gateway, self.settings, self.directory)
        self.signer = signer or ContinuationSigner(self.settings)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _record_failure(self, record: PurchaseRecord, message: str) -> PurchaseRecord:
        logger.warning(
            "purchase_error_recorded",
            order_id=record.order_id,
            purchase_id=record.purchase_id,
            error_message=message,
        )
        return self.repository.commit(record, lambda _: {"error": True, "errorMessage": message})

    def _buyer_email(self, user_id: str, method_id: str) -> str:
        email = self.directory.lookup_email(user_id)
        if email:
            return email
        email = self.gateway.retrieve_payment_method(method_id).billing_email
        if not email:
            raise NotFoundError("The user's email is not found.", field="userId")
        return email

    def _send_link(self, sender: str | None, to: str | None, title: str | None, content: str | None, url: str) -> None:
        """Deliver the authentication link out of band or raise UnavailableError."""
        if self.notifier is None or not (sender and to and title and content):
            raise UnavailableError(OFFLINE_UNCONFIGURED_MESSAGE)
        try:
            result = self.notifier.send(sender=sender, to=to, title=title, content=render_content(content, url))
        except Exception as exc:
            logger.error("authentication_email_failed", to=to, error=str(exc))
            raise UnavailableError(EMAIL_FAILED_MESSAGE) from exc
        if result.get("status") != "sent":
            logger.error("authentication_email_failed", to=to, error=result.get("error"))
            raise UnavailableError(EMAIL_FAILED_MESSAGE)
        logger.info("authentication_email_sent", to=to, message_id=result.get("message_id"))

    # -------------------------------------------------------------------
    # create
    # -------------------------------------------------------------------
    def create_purchase(
        self,
        user_id: str,
        order_id: str,
        amount: int,
        currency: str | None = None,
        description: str | None = None,
        target_user_id: str | None = None,
        revenue_ratio: float | None = None,
        email_from: str | None = None,
        email_title: str | None = None,
        email_content: str | None = None,
        locale: str | None = None,
    ) -> dict:
        existing = self.repository.load(user_id, order_id)
        if existing is not None and existing.purchase_id:
            logger.info("purchase_already_created", order_id=order_id, purchase_id=existing.purchase_id)
            return {"purchaseId": existing.purchase_id}

        if amount <= 0:
            raise InvalidArgumentError("The amount must be positive.", field="amount")
        ratio = revenue_ratio or 0.0
        if not 0.0 <= ratio <= 1.0:
            raise InvalidArgumentError("The revenue ratio must be between 0 and 1.", field="revenueRatio")
        currency = (currency or self.settings.default_currency).lower()

        customer_id = self.directory.require_customer(user_id)
        method_id = self.registry.resolve_default(user_id, customer_id)
        email = self._buyer_email(user_id, method_id)

        application_fee = None
        destination = None
        if target_user_id:
            destination = self.directory.require_payable_account(target_user_id)
            application_fee = round(amount * ratio)

        intent = self.gateway.create_payment_intent(
            amount=amount,
            currency=currency,
            customer_id=customer_id,
            payment_method_id=method_id,
            description=description,
            receipt_email=email,
            metadata={"order_id": order_id, "user_id": user_id},
            application_fee_amount=application_fee,
            transfer_destination=destination,
            idempotency_key=f"purchase-create:{user_id}:{order_id}",
        )

        record = PurchaseRecord(
            order_id=order_id,
            user_id=user_id,
            purchase_id=intent.id,
            payment_method_id=method_id,
            customer_id=customer_id,
            amount=intent.amount,
            currency=intent.currency,
            description=description,
            application_fee_amount=application_fee,
            transfer_amount=intent.amount - application_fee if destination else None,
            transfer_destination=destination,
            target_user_id=target_user_id,
            client_secret=intent.client_secret,
            email_from=email_from,
            email_to=email,
            email_title=email_title,
            email_content=email_content,
            locale=locale,
        )
        try:
            self.repository.create(record, expected_version=existing.version if existing else 0)
        except VersionConflictError as exc:
            current = self.repository.get(user_id, order_id)
            if current.purchase_id:
                logger.info("purchase_created_concurrently", order_id=order_id, purchase_id=current.purchase_id)
                return {"purchaseId": current.purchase_id}
            raise ContentionError("The purchase data was updated concurrently. Please try again.") from exc

        logger.info(
            "purchase_created",
            order_id=order_id,
            purchase_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            destination=destination,
            application_fee=application_fee,
        )
        return {"purchaseId": intent.id}

    # -------------------------------------------------------------------
    # confirm
    # -------------------------------------------------------------------
    def confirm_purchase(
        self,
        user_id: str,
        order_id: str,
        return_url: str,
        online: bool = True,
        success_url: str | None = None,
        failure_url: str | None = None,
    ) -> dict:
        record = self.repository.get(user_id, order_id)
        record.ensure_created()
        record.ensure_no_error()
        record.ensure_not_cancelled()

        if record.is_verified:
            return {"url": "", "returnUrl": "", "purchaseId": record.purchase_id}

        redirect_to = return_url
        if not online:
            redirect_to = self.signer.append_token(
                return_url,
                user_id=user_id,
                order_id=order_id,
                success_url=success_url or return_url,
                failure_url=failure_url or return_url,
            )

        try:
            if record.confirm:
                intent = self.gateway.retrieve_payment_intent(record.purchase_id)
            else:
                intent = self.gateway.confirm_payment_intent(
                    record.purchase_id,
                    return_url=redirect_to,
                    payment_method_id=record.payment_method_id,
                    idempotency_key=f"{record.purchase_id}:confirm:{record.payment_method_id}",
                )
        except GatewayError:
            self._record_failure(record, CONFIRM_FAILED_MESSAGE)
            raise

        return self._apply_confirmation(record, intent, online)

    def _apply_confirmation(self, record: PurchaseRecord, intent: PaymentIntent, online: bool) -> dict:
        if intent.status in AUTHORIZED_STATUSES:

            def verified(current: PurchaseRecord) -> dict | None:
                if current.is_verified:
                    return None
                current.ensure_no_error()
                current.ensure_not_cancelled()
                return {"confirm": True, "verify": True, "nextAction": DELETE_FIELD}

            self.repository.commit(record, verified)
            logger.info("purchase_confirmed", order_id=record.order_id, purchase_id=record.purchase_id)
            return {"url": "", "returnUrl": "", "purchaseId": record.purchase_id}

        if intent.requires_action:
            next_action = {"url": intent.next_action_url, "returnUrl": intent.next_action_return_url or ""}

            def pending(current: PurchaseRecord) -> dict | None:
                current.ensure_no_error()
                current.ensure_not_cancelled()
                if current.is_verified:
                    return None
                return {"confirm": True, "nextAction": next_action}

            record = self.repository.commit(record, pending)
            if record.is_verified:
                return {"url": "", "returnUrl": "", "purchaseId": record.purchase_id}
            logger.info(
                "purchase_requires_action",
                order_id=record.order_id,
                purchase_id=record.purchase_id,
                online=online,
            )
            if online:
                return {**next_action, "purchaseId": record.purchase_id}

            try:
                self._send_link(
                    record.email_from,
                    record.email_to,
                    record.email_title,
                    record.email_content,
                    next_action["url"],
                )
            except UnavailableError as exc:
                self._record_failure(record, exc.message)
                raise
            return {"url": "", "returnUrl": "", "purchaseId": record.purchase_id}

        message = intent.last_error or CONFIRM_FAILED_MESSAGE
        self._record_failure(record, CONFIRM_FAILED_MESSAGE)
        raise AbortedError(message)

    def resume_continuation(self, token: str) -> str:
        """Finish an offline confirmation and return the URL to redirect to."""
        payload = self.signer.loads(token)
        success_url = payload.get("successUrl") or ""
        failure_url = payload.get("failureUrl") or ""

        record = self.repository.get(payload.get("userId", ""), payload.get("orderId", ""))
        record.ensure_created()

        intent = self.gateway.retrieve_payment_intent(record.purchase_id)
        if intent.status not in AUTHORIZED_STATUSES:
            logger.info("continuation_failed", order_id=record.order_id, status=intent.status)
            return failure_url

        def verified(current: PurchaseRecord) -> dict | None:
            if current.is_verified:
                return None
            return {"confirm": True, "verify": True, "nextAction": DELETE_FIELD}

        self.repository.commit(record, verified)
        logger.info("continuation_verified", order_id=record.order_id, purchase_id=record.purchase_id)
        return success_url

    # -------------------------------------------------------------------
    # capture
    # -------------------------------------------------------------------
    def capture_purchase(self, user_id: str, order_id: str, amount: int | None = None) -> dict:
        record = self.repository.get(user_id, order_id)
        record.ensure_created()
        record.ensure_no_error()
        record.ensure_not_cancelled()
        record.ensure_verified()
        record.ensure_not_captured()
        if amount is not None and amount > record.amount:
            raise InvalidArgumentError(
                "You cannot capture an amount higher than the billing amount already saved.",
                field="amount",
            )

        try:
            intent = self.gateway.capture_payment_intent(
                record.purchase_id,
                amount=amount or None,
                idempotency_key=f"{record.purchase_id}:capture:{record.payment_method_id}:{amount or record.amount}",
            )
        except GatewayError:
            self._record_failure(record, CAPTURE_FAILED_MESSAGE)
            raise

        if intent.status != "succeeded":
            self._record_failure(record, CAPTURE_FAILED_MESSAGE)
            raise AbortedError("The Payment capture failed.")

        captured = intent.amount_received or amount or record.amount
        changes = {"capture": True, "success": True, "capturedAmount": captured, **_CLEAR_ERROR}
        if intent.receipt_url:
            changes["receiptUrl"] = intent.receipt_url

        def captured_change(current: PurchaseRecord) -> dict | None:
            if current.capture:
                return None
            current.ensure_not_cancelled()
            return changes

        self.repository.commit(record, captured_change)
        logger.info("purchase_captured", order_id=order_id, purchase_id=record.purchase_id, amount=captured)
        return {"purchaseId": record.purchase_id}

    # -------------------------------------------------------------------
    # refresh
    # -------------------------------------------------------------------
    def refresh_purchase(self, user_id: str, order_id: str) -> dict:
        record = self.repository.get(user_id, order_id)
        record.ensure_created()
        if record.success:
            raise AlreadyExistsError("The payment has already been succeed.")
        if not record.error:
            return {"success": True}
        record.ensure_not_cancelled()

        customer_id = self.directory.require_customer(user_id)
        method_id = self.registry.resolve_default(user_id, customer_id)
        if method_id == record.payment_method_id:
            raise FailedPreconditionError("There was no change in the Payment method.")

        try:
            self.gateway.update_payment_intent(
                record.purchase_id,
                payment_method_id=method_id,
                idempotency_key=f"{record.purchase_id}:refresh:{method_id}",
            )
        except GatewayError:
            self._record_failure(record, REFRESH_FAILED_MESSAGE)
            raise

        def refreshed(current: PurchaseRecord) -> dict | None:
            if current.payment_method_id == method_id and not current.error:
                return None
            if current.success:
                raise AlreadyExistsError("The payment has already been succeed.")
            current.ensure_not_cancelled()
            return {
                "paymentMethodId": method_id,
                "confirm": False,
                "verify": False,
                "nextAction": DELETE_FIELD,
                **_CLEAR_ERROR,
            }

        self.repository.commit(record, refreshed)
        logger.info("purchase_refreshed", order_id=order_id, payment_method_id=method_id)
        return {"success": True}

    # -------------------------------------------------------------------
    # cancel
    # -------------------------------------------------------------------
    def cancel_purchase(self, user_id: str, order_id: str) -> dict:
        record = self.repository.get(user_id, order_id)
        record.ensure_created()
        if record.cancel:
            return {"success": True}
        record.ensure_not_completed()

        try:
            self.gateway.cancel_payment_intent(record.purchase_id, idempotency_key=f"{record.purchase_id}:cancel")
        except GatewayError:
            self._record_failure(record, CANCEL_FAILED_MESSAGE)
            raise

        def change(current: PurchaseRecord) -> dict | None:
            if current.cancel:
                return None
            current.ensure_not_completed()
            return {"cancel": True, "nextAction": DELETE_FIELD, **_CLEAR_ERROR}

        self.repository.commit(record, change)
        logger.info("purchase_cancelled", order_id=order_id, purchase_id=record.purchase_id)
        return {"success": True}

    # -------------------------------------------------------------------
    # refund
    # -------------------------------------------------------------------
    def refund_purchase(self, user_id: str, order_id: str, amount: int | None = None) -> dict:
        record = self.repository.get(user_id, order_id)
        record.ensure_created()
        record.ensure_succeeded()

        remaining = record.refundable_amount
        if amount is not None and amount > remaining:
            raise InvalidArgumentError("The amount to be refunded exceeds the original amount.", field="amount")
        if remaining <= 0:
            raise AlreadyExistsError("The payment has already been refunded.")
        refund_amount = amount or remaining

        try:
            refund = self.gateway.create_refund(
                record.purchase_id,
                amount=refund_amount,
                idempotency_key=f"{record.purchase_id}:refund:{record.refunded_amount}:{refund_amount}",
            )
        except GatewayError:
            self._record_failure(record, REFUND_FAILED_MESSAGE)
            raise

        refunded = refund.amount or refund_amount

        def refunded_change(current: PurchaseRecord) -> dict | None:
            # an idempotent replay returns a refund that is already counted
            if refund.id in current.refund_ids:
                return None
            current.ensure_succeeded()
            if refunded > current.refundable_amount:
                raise InvalidArgumentError("The amount to be refunded exceeds the original amount.", field="amount")
            return {
                "refund": True,
                "cancel": True,
                "refundedAmount": current.refunded_amount + refunded,
                "refundIds": [*current.refund_ids, refund.id],
            }

        self.repository.commit(record, refunded_change)
        logger.info("purchase_refunded", order_id=order_id, purchase_id=record.purchase_id, amount=refunded)
        return {"success": True}

    # -------------------------------------------------------------------
    # authorization pre-check
    # -------------------------------------------------------------------
    def authorization(
        self,
        user_id: str,
        amount: int,
        return_url: str,
        currency: str | None = None,
        online: bool = True,
        email_from: str | None = None,
        email_title: str | None = None,
        email_content: str | None = None,
    ) -> dict:
        """Authorise the buyer's default card without creating a purchase record."""
        if amount <= 0:
            raise InvalidArgumentError("The amount must be positive.", field="amount")
        customer_id = self.directory.require_customer(user_id)
        method_id = self.registry.resolve_default(user_id, customer_id)
        email = self._buyer_email(user_id, method_id)

        intent = self.gateway.create_payment_intent(
            amount=amount,
            currency=(currency or self.settings.default_currency).lower(),
            customer_id=customer_id,
            payment_method_id=method_id,
            description="",
            receipt_email=email,
            metadata={"user_id": user_id, "authorization": "true"},
        )
        intent = self.gateway.confirm_payment_intent(
            intent.id,
            return_url=return_url,
            idempotency_key=f"{intent.id}:confirm:{method_id}",
        )

        if intent.requires_action and not online:
            self._send_link(email_from, email, email_title, email_content, intent.next_action_url)

        logger.info("authorization_created", user_id=user_id, authorized_id=intent.id, status=intent.status)
        if online and intent.requires_action:
            return {
                "url": intent.next_action_url,
                "returnUrl": intent.next_action_return_url or "",
                "authorizedId": intent.id,
            }
        return {"url": "", "returnUrl": "", "authorizedId": intent.id}

    def confirm_authorization(self, authorized_id: str) -> dict:
        """Release a held authorisation."""
        self.gateway.cancel_payment_intent(authorized_id, idempotency_key=f"{authorized_id}:cancel")
        logger.info("authorization_released", authorized_id=authorized_id)
        return {"success": True}
