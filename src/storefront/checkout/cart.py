"""Cart lines and checkout results."""

from dataclasses import dataclass, field
from datetime import datetime

from protean.exceptions import ValidationError

from storefront.shipping.port import ShippingQuote


@dataclass(frozen=True)
class CartLine:
    """A client-supplied request for ``quantity`` units of a product."""

    product_id: str
    quantity: int

    def __post_init__(self):
        if not self.product_id:
            raise ValidationError({"product_id": ["Product is required"]})
        if not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})


@dataclass(frozen=True)
class PricedLine:
    """A cart line priced from the current catalog snapshot."""

    product_id: str
    name: str
    unit_price: int
    unit_weight: float
    quantity: int

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity

    @property
    def line_weight(self) -> float:
        return self.unit_weight * self.quantity

    def to_metadata(self) -> dict:
        return {"id": self.product_id, "name": self.name, "quantity": self.quantity, "price": self.unit_price}


@dataclass(frozen=True)
class LineAdjustment:
    """A line whose quantity was reduced to what is in stock. ``granted == 0`` means dropped."""

    product_id: str
    requested: int
    granted: int

    @property
    def dropped(self) -> bool:
        return self.granted == 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "granted": self.granted,
            "dropped": self.dropped,
        }


@dataclass(frozen=True)
class CartAdjusted:
    """The cart had to change to fit current stock. Nothing was held or charged.

    The caller shows ``adjustments`` to the customer and checks out again
    with ``lines`` once they confirm.
    """

    lines: tuple[CartLine, ...]
    adjustments: tuple[LineAdjustment, ...]
    cart_modified: bool = True

    def to_dict(self) -> dict:
        return {
            "cart_modified": True,
            "lines": [{"product_id": line.product_id, "quantity": line.quantity} for line in self.lines],
            "adjustments": [adjustment.to_dict() for adjustment in self.adjustments],
        }


@dataclass(frozen=True)
class CheckoutSession:
    """An open payment intent backed by stock holds."""

    checkout_id: str
    payment_intent_id: str
    client_secret: str
    currency: str
    product_total: int
    shipping_amount: int
    tax_amount: int
    total_amount: int
    shipping: ShippingQuote
    lines: tuple[PricedLine, ...]
    expires_at: datetime
    tax_deferred: bool = False
    reservation_ids: tuple[str, ...] = field(default_factory=tuple)
    cart_modified: bool = False
