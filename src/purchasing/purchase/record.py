"""Purchase Record: the authoritative local state of one order's payment.

Stored at ``{userPath}/{userId}/{purchasePath}/{orderId}``. The record
snapshots the purchase terms at creation and tracks progress through six
flags:

    confirm   the intent was confirmed with the gateway
    verify    strong customer authentication completed (or was not needed)
    capture   funds were captured
    success   the capture succeeded
    cancel    the purchase was cancelled (or refunded)
    refund    some amount was refunded

Flags only move forward. ``capture`` implies ``confirm`` and ``verify``;
``success`` implies ``capture``. ``cancel`` and ``capture`` are both set only
on a refunded record. ``error`` / ``errorMessage`` hold a persisted failure
that blocks confirm and capture until ``refresh`` swaps the payment method.
``refundIds`` lists the gateway refunds already counted in ``refundedAmount``.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from purchasing.errors import (
    AbortedError,
    AlreadyExistsError,
    CancelledError,
    FailedPreconditionError,
    NotFoundError,
)
from purchasing.store.port import Document

FLAGS = ("confirm", "verify", "capture", "success", "cancel", "refund")


class PurchaseRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    order_id: str
    user_id: str = ""
    purchase_id: str | None = None
    payment_method_id: str | None = None
    customer_id: str | None = None
    amount: int = 0
    currency: str = ""
    description: str | None = None
    application_fee_amount: int | None = None
    transfer_amount: int | None = None
    transfer_destination: str | None = None
    target_user_id: str | None = None
    client_secret: str | None = None
    email_from: str | None = None
    email_to: str | None = None
    email_title: str | None = None
    email_content: str | None = None
    locale: str | None = None
    confirm: bool = False
    verify: bool = False
    capture: bool = False
    success: bool = False
    cancel: bool = False
    refund: bool = False
    error: bool = False
    error_message: str | None = None
    next_action: dict | None = None
    captured_amount: int | None = None
    refunded_amount: int = 0
    refund_ids: list[str] = Field(default_factory=list)
    receipt_url: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    version: int = Field(default=0, exclude=True)

    @classmethod
    def from_document(cls, doc: Document) -> "PurchaseRecord":
        values = {key: value for key, value in doc.data.items() if value is not None}
        values.setdefault("orderId", doc.id)
        values["version"] = doc.version
        return cls.model_validate(values)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    # -------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------
    @property
    def is_verified(self) -> bool:
        return self.confirm and self.verify

    @property
    def refundable_amount(self) -> int:
        captured = self.captured_amount if self.captured_amount is not None else self.amount
        return max(captured - self.refunded_amount, 0)

    @property
    def has_email_settings(self) -> bool:
        return bool(self.email_from and self.email_to and self.email_title and self.email_content)

    # -------------------------------------------------------------------
    # Preconditions
    # -------------------------------------------------------------------
    def ensure_created(self) -> None:
        if not self.purchase_id:
            raise NotFoundError("The purchase data is invalid.", field="orderId")

    def ensure_no_error(self) -> None:
        if self.error:
            raise AbortedError(self.error_message or "The purchase data has some errors.")

    def ensure_not_cancelled(self) -> None:
        if self.cancel:
            raise CancelledError("The purchase data is already canceled.")

    def ensure_verified(self) -> None:
        if not self.is_verified:
            raise FailedPreconditionError("The purchase data is not confirmed.")

    def ensure_not_captured(self) -> None:
        if self.capture:
            raise AlreadyExistsError("The purchase data is already captured.")

    def ensure_not_completed(self) -> None:
        if self.capture or self.success:
            raise FailedPreconditionError("The payment has already been completed.")

    def ensure_succeeded(self) -> None:
        if not (self.capture and self.success):
            raise FailedPreconditionError("The payment has not been captured yet.")
