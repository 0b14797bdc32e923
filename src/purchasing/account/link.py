"""Account Link: the per-user document binding a user to gateway identities."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from purchasing.store.port import Document


class AccountLink(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    user_id: str
    customer_id: str | None = Field(default=None, alias="gatewayCustomerId")
    payable_account_id: str | None = Field(default=None, alias="gatewayPayableAccountId")
    default_payment_method_id: str | None = None
    payable_capability_active: bool = False
    card_payments_active: bool = False
    email: str | None = None
    setup_intent_id: str | None = None
    exists: bool = Field(default=False, exclude=True)

    @classmethod
    def from_document(cls, user_id: str, doc: Document | None) -> "AccountLink":
        if doc is None:
            return cls(user_id=user_id)
        values = {key: value for key, value in doc.data.items() if value is not None}
        values["userId"] = values.get("userId") or user_id
        return cls.model_validate({**values, "exists": True})
