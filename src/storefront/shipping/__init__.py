"""Rate provider factory.

Provides get_rate_provider() / set_rate_provider() to swap implementations:
- FakeRateProvider for development and testing (default)
- ShippoRateProvider when RATE_PROVIDER=shippo
"""

from storefront.config import get_settings
from storefront.shipping.port import RateProvider

_current_provider: RateProvider | None = None


def get_rate_provider() -> RateProvider:
    """Return the configured rate provider (singleton)."""
    global _current_provider
    if _current_provider is None:
        settings = get_settings()
        if settings.rate_provider == "fake":
            from storefront.shipping.fake_adapter import FakeRateProvider

            _current_provider = FakeRateProvider()
        elif settings.rate_provider == "shippo":
            from storefront.shipping.shippo_adapter import ShippoRateProvider

            _current_provider = ShippoRateProvider(
                api_key=settings.shippo_api_key,
                base_url=settings.shippo_base_url,
                timeout=settings.rate_timeout_seconds,
            )
        else:
            raise ValueError(f"Unknown rate provider: {settings.rate_provider}")
    return _current_provider


def set_rate_provider(provider: RateProvider) -> None:
    """Override the active rate provider (useful for tests)."""
    global _current_provider
    _current_provider = provider


def reset_rate_provider() -> None:
    """Reset to the configured default."""
    global _current_provider
    _current_provider = None
