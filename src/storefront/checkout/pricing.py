"""Money arithmetic for checkout. All amounts are integer minor currency units."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from storefront.shipping.port import ShippingQuote


def compute_tax(taxable_amount: int, rate: Decimal) -> int:
    """Tax on ``taxable_amount``, rounded half-up to the nearest minor unit."""
    return int((Decimal(taxable_amount) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CheckoutTotals:
    product_total: int
    shipping: ShippingQuote
    tax_amount: int
    tax_deferred: bool

    @property
    def shipping_amount(self) -> int:
        return self.shipping.amount

    @property
    def total_amount(self) -> int:
        return self.product_total + self.shipping.amount + self.tax_amount
