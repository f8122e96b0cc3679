"""Rate quoter: the cheapest shipping rate for a cart, or free shipping.

"Provider returned zero rates" and "provider request failed" surface as
the same ShippingUnavailable error; callers only decide whether to block
checkout or fall back to the flat estimate.
"""

import structlog

from storefront.config import Settings, get_settings
from storefront.errors import RateProviderError, ShippingUnavailable
from storefront.shipping import get_rate_provider
from storefront.shipping.port import (
    FLAT_RATE_ID,
    FREE_SHIPPING_RATE_ID,
    Address,
    Parcel,
    RateProvider,
    ShippingQuote,
)

logger = structlog.get_logger(__name__)

MIN_PARCEL_WEIGHT_OZ = 1.0


class RateQuoter:
    def __init__(self, provider: RateProvider | None = None, settings: Settings | None = None) -> None:
        self._provider = provider
        self.settings = settings or get_settings()

    @property
    def provider(self) -> RateProvider:
        return self._provider or get_rate_provider()

    def quote(self, total_weight: float, destination: Address | None) -> ShippingQuote:
        """Quote the lowest-cost rate for ``total_weight`` ounces to ``destination``."""
        if destination is None:
            raise ShippingUnavailable("a destination address is required to quote shipping")

        origin = Address(**self.settings.ship_from.as_dict())
        parcel = Parcel(weight_oz=round(max(total_weight, MIN_PARCEL_WEIGHT_OZ), 2))

        try:
            rates = self.provider.get_rates(origin, destination, parcel)
        except RateProviderError as exc:
            logger.warning("Rate request failed", error=str(exc), weight_oz=parcel.weight_oz)
            raise ShippingUnavailable(str(exc)) from exc

        if not rates:
            logger.warning("Rate provider returned no rates", weight_oz=parcel.weight_oz, zip=destination.zip)
            raise ShippingUnavailable("no shipping rates available for this address")

        cheapest = min(rates, key=lambda rate: rate.amount)
        return ShippingQuote(
            rate_id=cheapest.rate_id,
            label=f"{cheapest.provider} {cheapest.service_level}".strip(),
            amount=cheapest.amount,
            currency=cheapest.currency,
        )

    def quote_for_cart(self, product_total: int, total_weight: float, destination: Address | None) -> ShippingQuote:
        """Apply the free-shipping threshold, then quote (or fall back to the flat rate)."""
        settings = self.settings
        if product_total >= settings.free_shipping_threshold:
            return ShippingQuote(
                rate_id=FREE_SHIPPING_RATE_ID,
                label="Free Shipping",
                amount=0,
                currency=settings.currency,
            )

        try:
            return self.quote(total_weight, destination)
        except ShippingUnavailable:
            if not settings.flat_rate_fallback:
                raise
            logger.info("Using flat-rate shipping fallback", amount=settings.flat_rate_amount)
            return ShippingQuote(
                rate_id=FLAT_RATE_ID,
                label="Standard Shipping",
                amount=settings.flat_rate_amount,
                currency=settings.currency,
            )
