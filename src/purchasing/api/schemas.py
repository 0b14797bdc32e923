"""Pydantic request schemas for the purchasing API.

One model per ``mode``. Bodies use camelCase keys (``userId``,
``orderId``...), matching the documents the service writes. Every request is
validated here once, before it is fanned out to the configured databases.
"""

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from purchasing.errors import InvalidArgumentError, NotFoundError


class ModeRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    mode: str


class UserRequest(ModeRequest):
    user_id: str = Field(min_length=1)


class OrderRequest(UserRequest):
    order_id: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Accounts and payment methods
# ---------------------------------------------------------------------------
class CreateAccountRequest(UserRequest):
    locale: str = Field(min_length=1)
    refresh_url: str
    return_url: str


class CreateCustomerAndPaymentRequest(UserRequest):
    success_url: str
    cancel_url: str


class PaymentMethodRequest(UserRequest):
    payment_id: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Authorization pre-check
# ---------------------------------------------------------------------------
class AuthorizationRequest(UserRequest):
    amount: int = Field(gt=0)
    currency: str | None = None
    return_url: str
    online: bool = False
    email_from: str | None = Field(default=None, alias="from")
    email_title: str | None = Field(default=None, alias="title")
    email_content: str | None = Field(default=None, alias="content")


class ConfirmAuthorizationRequest(ModeRequest):
    authorized_id: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------
class CreatePurchaseRequest(OrderRequest):
    amount: int = Field(gt=0)
    currency: str | None = None
    description: str | None = None
    target_user_id: str | None = None
    revenue_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    email_from: str | None = None
    email_title: str | None = None
    email_content: str | None = None
    locale: str | None = None

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str | None) -> str | None:
        return value.lower() if value else value


class ConfirmPurchaseRequest(OrderRequest):
    return_url: str
    online: bool = False
    success_url: str | None = None
    failure_url: str | None = None


class AmountRequest(OrderRequest):
    amount: int | None = Field(default=None, gt=0)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
class CreateSubscriptionRequest(OrderRequest):
    product_id: str = Field(min_length=1)
    count: int = Field(default=1, ge=1)
    success_url: str
    cancel_url: str


class DeleteSubscriptionRequest(ModeRequest):
    order_id: str = Field(min_length=1)


REQUEST_MODELS: dict[str, type[ModeRequest]] = {
    "create_account": CreateAccountRequest,
    "delete_account": UserRequest,
    "get_account": UserRequest,
    "dashboard_account": UserRequest,
    "create_customer_and_payment": CreateCustomerAndPaymentRequest,
    "set_customer_default_payment": PaymentMethodRequest,
    "delete_payment": PaymentMethodRequest,
    "delete_customer": UserRequest,
    "authorization": AuthorizationRequest,
    "confirm_authorization": ConfirmAuthorizationRequest,
    "create_purchase": CreatePurchaseRequest,
    "confirm_purchase": ConfirmPurchaseRequest,
    "capture_purchase": AmountRequest,
    "refresh_purchase": OrderRequest,
    "cancel_purchase": OrderRequest,
    "refund_purchase": AmountRequest,
    "create_subscription": CreateSubscriptionRequest,
    "delete_subscription": DeleteSubscriptionRequest,
}


def parse_request(body: dict) -> ModeRequest:
    """Validate a request body against the model for its mode."""
    mode = body.get("mode")
    model = REQUEST_MODELS.get(mode)
    if model is None:
        raise NotFoundError(f"There is no mode: {mode}", field="mode")
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        error = exc.errors()[0]
        location = ".".join(str(part) for part in error.get("loc", ())) or None
        raise InvalidArgumentError(f"{location}: {error['msg']}" if location else error["msg"], field=location) from exc
