"""Configurable fake rate provider for development and testing."""

from storefront.errors import RateProviderError
from storefront.shipping.port import Address, Parcel, Rate, RateProvider

DEFAULT_RATES = (
    Rate(rate_id="fake_rate_ground", provider="USPS", service_level="Ground Advantage", amount=795, currency="usd"),
    Rate(rate_id="fake_rate_priority", provider="USPS", service_level="Priority Mail", amount=1150, currency="usd"),
    Rate(rate_id="fake_rate_express", provider="UPS", service_level="Next Day Air", amount=3895, currency="usd"),
)


class FakeRateProvider(RateProvider):
    """Returns canned rates, or fails when configured to."""

    def __init__(self, rates=DEFAULT_RATES) -> None:
        self.rates: list[Rate] = list(rates)
        self.should_succeed: bool = True
        self.failure_reason: str = "Rate provider unavailable"
        self.calls: list[dict] = []

    def configure(self, should_succeed=True, failure_reason="Rate provider unavailable", rates=None) -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        if rates is not None:
            self.rates = list(rates)

    def get_rates(self, origin: Address, destination: Address, parcel: Parcel) -> list[Rate]:
        self.calls.append({"origin": origin, "destination": destination, "parcel": parcel})
        if not self.should_succeed:
            raise RateProviderError(self.failure_reason)
        return list(self.rates)
