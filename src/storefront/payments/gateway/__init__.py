"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing (default)
- StripeGateway when PAYMENT_GATEWAY=stripe
"""

from storefront.config import get_settings
from storefront.payments.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway."""
    global _current_gateway
    if _current_gateway is None:
        settings = get_settings()
        if settings.payment_gateway == "fake":
            from storefront.payments.gateway.fake_adapter import FakeGateway

            _current_gateway = FakeGateway()
        elif settings.payment_gateway == "stripe":
            from storefront.payments.gateway.stripe_adapter import StripeGateway

            _current_gateway = StripeGateway(
                api_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
                timeout=settings.processor_timeout_seconds,
            )
        else:
            raise ValueError(f"Unknown payment gateway: {settings.payment_gateway}")
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the configured default."""
    global _current_gateway
    _current_gateway = None
