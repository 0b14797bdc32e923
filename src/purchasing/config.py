"""Service configuration.

Values come from ``PURCHASE_STRIPE_*`` environment variables (or a local
``.env`` file). Use get_settings() / set_settings() to swap the active
settings, the same way the gateway and store factories are swapped in tests.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PURCHASE_STRIPE_",
        env_file=".env",
        extra="ignore",
    )

    secret_key: str = ""
    webhook_secret: str = ""
    webhook_connect_secret: str = ""

    # Document layout
    user_path: str = "plugins/stripe/user"
    purchase_path: str = "purchase"
    payment_path: str = "payment"
    subscription_path: str = "plugins/stripe/subscription"
    identity_path: str = "plugins/user"

    # Out-of-band email
    email_provider: str = "gmail"
    gmail_user: str = ""
    gmail_password: str = ""
    sendgrid_api_key: str = ""

    default_currency: str = "jpy"
    databases: list[str] = Field(default_factory=lambda: ["memory://default"])
    cas_max_attempts: int = Field(default=3, ge=1)

    continuation_secret: str = ""
    continuation_max_age: int = 7 * 24 * 60 * 60
    reconcile_grace_minutes: int = 30

    @field_validator("email_provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        value = value.lower()
        if value not in ("gmail", "sendgrid"):
            raise ValueError(f"Unknown email provider: {value}")
        return value

    @property
    def signing_secret(self) -> str:
        return self.continuation_secret or self.secret_key or "purchase-continuation"

    def user_doc(self, user_id: str) -> str:
        return f"{self.user_path}/{user_id}"

    def purchase_collection(self, user_id: str) -> str:
        return f"{self.user_doc(user_id)}/{self.purchase_path}"

    def purchase_doc(self, user_id: str, order_id: str) -> str:
        return f"{self.purchase_collection(user_id)}/{order_id}"

    def payment_collection(self, user_id: str) -> str:
        return f"{self.user_doc(user_id)}/{self.payment_path}"

    def payment_doc(self, user_id: str, method_id: str) -> str:
        return f"{self.payment_collection(user_id)}/{method_id}"

    def identity_doc(self, user_id: str) -> str:
        return f"{self.identity_path}/{user_id}"

    def subscription_doc(self, order_id: str) -> str:
        return f"{self.subscription_path}/{order_id}"


_current_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the active settings, loading them from the environment on first use."""
    global _current_settings
    if _current_settings is None:
        _current_settings = Settings()
    return _current_settings


def set_settings(settings: Settings) -> None:
    """Override the active settings (useful for tests)."""
    global _current_settings
    _current_settings = settings


def reset_settings() -> None:
    """Reset to environment-derived settings."""
    global _current_settings
    _current_settings = None
