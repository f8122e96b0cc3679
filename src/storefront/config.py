"""Business and integration settings, read from environment variables.

Infrastructure (databases, brokers, event store) is configured in
domain.toml. Everything the checkout pipeline decides with (thresholds,
rates, TTLs, processor credentials, timeouts) lives here.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


@dataclass(frozen=True)
class ShipFrom:
    """Operator-configured origin address for rate shopping."""

    name: str = "Storefront Warehouse"
    street1: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = "US"
    phone: str = ""
    email: str = ""

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "street1": self.street1,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "country": self.country,
            "phone": self.phone,
            "email": self.email,
        }


@dataclass(frozen=True)
class Settings:
    # Pricing (amounts in minor currency units)
    free_shipping_threshold: int = 10000
    tax_rate: Decimal = Decimal("0.0825")
    currency: str = "usd"
    require_address: bool = True
    flat_rate_fallback: bool = False
    flat_rate_amount: int = 1695

    # Reservations
    reservation_ttl_minutes: int = 15
    sweep_interval_seconds: int = 60

    # Payment processor
    payment_gateway: str = "fake"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    processor_timeout_seconds: float = 5.0

    # Rate provider
    rate_provider: str = "fake"
    shippo_api_key: str = ""
    shippo_base_url: str = "https://api.goshippo.com"
    rate_timeout_seconds: float = 5.0
    ship_from: ShipFrom = field(default_factory=ShipFrom)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            free_shipping_threshold=_env_int("FREE_SHIPPING_THRESHOLD", 10000),
            tax_rate=Decimal(os.environ.get("TAX_RATE", "0.0825")),
            currency=os.environ.get("CURRENCY", "usd").lower(),
            require_address=_env_bool("REQUIRE_ADDRESS", True),
            flat_rate_fallback=_env_bool("FLAT_RATE_FALLBACK", False),
            flat_rate_amount=_env_int("FLAT_RATE_AMOUNT", 1695),
            reservation_ttl_minutes=_env_int("RESERVATION_TTL_MINUTES", 15),
            sweep_interval_seconds=_env_int("SWEEP_INTERVAL_SECONDS", 60),
            payment_gateway=os.environ.get("PAYMENT_GATEWAY", "fake"),
            stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
            processor_timeout_seconds=_env_float("PROCESSOR_TIMEOUT_SECONDS", 5.0),
            rate_provider=os.environ.get("RATE_PROVIDER", "fake"),
            shippo_api_key=os.environ.get("SHIPPO_API_KEY", ""),
            shippo_base_url=os.environ.get("SHIPPO_BASE_URL", "https://api.goshippo.com"),
            rate_timeout_seconds=_env_float("RATE_TIMEOUT_SECONDS", 5.0),
            ship_from=ShipFrom(
                name=os.environ.get("SHIP_FROM_NAME", "Storefront Warehouse"),
                street1=os.environ.get("SHIP_FROM_STREET1", ""),
                city=os.environ.get("SHIP_FROM_CITY", ""),
                state=os.environ.get("SHIP_FROM_STATE", ""),
                zip=os.environ.get("SHIP_FROM_ZIP", ""),
                country=os.environ.get("SHIP_FROM_COUNTRY", "US"),
                phone=os.environ.get("SHIP_FROM_PHONE", ""),
                email=os.environ.get("SHIP_FROM_EMAIL", ""),
            ),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the active settings, loading them from the environment once."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override the active settings (useful for tests)."""
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
