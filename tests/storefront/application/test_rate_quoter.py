"""Application tests for the rate quoter."""

import pytest
from storefront.config import Settings
from storefront.errors import ShippingUnavailable
from storefront.shipping.fake_adapter import FakeRateProvider
from storefront.shipping.port import FLAT_RATE_ID, FREE_SHIPPING_RATE_ID, Rate
from storefront.shipping.quoter import RateQuoter


def _rate(rate_id, amount):
    return Rate(rate_id=rate_id, provider="USPS", service_level=rate_id.title(), amount=amount, currency="usd")


class TestQuote:
    def test_cheapest_rate_wins(self, destination):
        provider = FakeRateProvider(rates=[_rate("express", 3895), _rate("ground", 610), _rate("priority", 1150)])
        quote = RateQuoter(provider=provider).quote(24.0, destination)
        assert quote.rate_id == "ground"
        assert quote.amount == 610
        assert quote.label == "USPS Ground"

    def test_parcel_carries_total_weight(self, destination, rate_provider):
        RateQuoter().quote(36.5, destination)
        parcel = rate_provider.calls[0]["parcel"]
        assert parcel.weight_oz == 36.5
        assert rate_provider.calls[0]["destination"] == destination

    def test_weightless_cart_ships_minimum_parcel(self, destination, rate_provider):
        RateQuoter().quote(0.0, destination)
        assert rate_provider.calls[0]["parcel"].weight_oz == 1.0

    def test_zero_rates_is_unavailable(self, destination):
        with pytest.raises(ShippingUnavailable):
            RateQuoter(provider=FakeRateProvider(rates=[])).quote(10.0, destination)

    def test_provider_failure_is_unavailable(self, destination, rate_provider):
        rate_provider.configure(should_succeed=False, failure_reason="timeout")
        with pytest.raises(ShippingUnavailable) as exc:
            RateQuoter().quote(10.0, destination)
        assert exc.value.retryable is True

    def test_destination_required(self):
        with pytest.raises(ShippingUnavailable):
            RateQuoter().quote(10.0, None)


class TestQuoteForCart:
    def test_threshold_is_inclusive(self, destination, rate_provider):
        quote = RateQuoter().quote_for_cart(10000, 40.0, destination)
        assert quote.rate_id == FREE_SHIPPING_RATE_ID
        assert quote.amount == 0
        assert quote.is_free
        assert rate_provider.calls == []

    def test_just_below_threshold_pays_shipping(self, destination):
        quote = RateQuoter().quote_for_cart(9999, 40.0, destination)
        assert quote.rate_id == "fake_rate_ground"
        assert quote.amount == 795

    def test_free_shipping_needs_no_address(self):
        assert RateQuoter().quote_for_cart(15000, 40.0, None).amount == 0

    def test_failure_blocks_checkout_by_default(self, destination, rate_provider):
        rate_provider.configure(should_succeed=False)
        with pytest.raises(ShippingUnavailable):
            RateQuoter().quote_for_cart(5000, 10.0, destination)

    def test_flat_rate_fallback(self, destination, rate_provider):
        rate_provider.configure(should_succeed=False)
        quoter = RateQuoter(settings=Settings(flat_rate_fallback=True))
        quote = quoter.quote_for_cart(5000, 10.0, destination)
        assert quote.rate_id == FLAT_RATE_ID
        assert quote.amount == 1695

    def test_custom_threshold(self, destination):
        quoter = RateQuoter(settings=Settings(free_shipping_threshold=5000))
        assert quoter.quote_for_cart(5000, 10.0, destination).is_free
