"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- StripeGateway when a secret key is configured
- FakeGateway for development and testing otherwise
"""

from purchasing.config import get_settings
from purchasing.gateway.fake_adapter import FakeGateway
from purchasing.gateway.port import PaymentGateway
from purchasing.gateway.stripe_adapter import StripeGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway."""
    global _current_gateway
    if _current_gateway is None:
        secret_key = get_settings().secret_key
        _current_gateway = StripeGateway(api_key=secret_key) if secret_key else FakeGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
