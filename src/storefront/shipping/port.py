"""Rate provider port (abstract interface).

The Rate Quoter programs against this port; the Shippo adapter talks to the
real rate-shopping API and the fake adapter returns canned rates.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

FREE_SHIPPING_RATE_ID = "free_shipping"
FLAT_RATE_ID = "flat_rate_shipping"


@dataclass(frozen=True)
class Address:
    """A postal destination or origin."""

    name: str
    street1: str
    city: str
    state: str
    zip: str
    country: str = "US"
    street2: str | None = None
    phone: str | None = None
    email: str | None = None

    def as_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class Parcel:
    """Parcel dimensions in inches, weight in ounces."""

    weight_oz: float
    length: float = 8.0
    width: float = 6.0
    height: float = 4.0

    def as_dict(self) -> dict:
        return {
            "length": str(self.length),
            "width": str(self.width),
            "height": str(self.height),
            "distance_unit": "in",
            "weight": str(self.weight_oz),
            "mass_unit": "oz",
        }


@dataclass(frozen=True)
class Rate:
    """One candidate rate returned by the provider. ``amount`` is in minor units."""

    rate_id: str
    provider: str
    service_level: str
    amount: int
    currency: str


@dataclass(frozen=True)
class ShippingQuote:
    """The rate chosen for a checkout attempt."""

    rate_id: str
    label: str
    amount: int
    currency: str

    @property
    def is_free(self) -> bool:
        return self.rate_id == FREE_SHIPPING_RATE_ID

    def to_dict(self) -> dict:
        return asdict(self)


class RateProvider(ABC):
    """Abstract rate-shopping provider."""

    @abstractmethod
    def get_rates(self, origin: Address, destination: Address, parcel: Parcel) -> list[Rate]:
        """Return every candidate rate for shipping ``parcel``.

        Raises RateProviderError when the request fails or times out.
        """
        ...
