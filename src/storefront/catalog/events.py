"""Domain events for the Product aggregate.

Stock holds, releases and sales are recorded as facts so that stock
movements can be audited after the fact.
"""

from protean.fields import DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Product")
class ProductAdded:
    """A product became available to the checkout pipeline."""

    __version__ = 1

    product_id = Identifier(required=True)
    name = String(required=True)
    price = Integer(required=True)
    stock = Integer(required=True)
    added_at = DateTime(required=True)


@storefront.event(part_of="Product")
class ProductRestocked:
    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    new_stock = Integer(required=True)
    restocked_at = DateTime(required=True)


@storefront.event(part_of="Product")
class ProductRepriced:
    __version__ = 1

    product_id = Identifier(required=True)
    previous_price = Integer(required=True)
    new_price = Integer(required=True)
    repriced_at = DateTime(required=True)


@storefront.event(part_of="Product")
class StockHeld:
    """A short-lived hold was placed against the product's stock."""

    __version__ = 1

    product_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    checkout_id = Identifier(required=True)
    quantity = Integer(required=True)
    expires_at = DateTime(required=True)


@storefront.event(part_of="Product")
class HoldReleased:
    """A hold was removed. ``reason`` is a ReleaseReason value."""

    __version__ = 1

    product_id = Identifier(required=True)
    reservation_id = Identifier(required=True)
    checkout_id = Identifier(required=True)
    quantity = Integer(required=True)
    reason = String(required=True)
    released_at = DateTime(required=True)


@storefront.event(part_of="Product")
class StockSold:
    """Stock was permanently decremented for a paid checkout."""

    __version__ = 1

    product_id = Identifier(required=True)
    checkout_id = Identifier(required=True)
    quantity = Integer(required=True)
    new_stock = Integer(required=True)
    sold_at = DateTime(required=True)


@storefront.event(part_of="Product")
class StockShortfallDetected:
    """A paid sale asked for more units than were on hand. Stock was floored at zero."""

    __version__ = 1

    product_id = Identifier(required=True)
    checkout_id = Identifier(required=True)
    requested = Integer(required=True)
    shortfall = Integer(required=True)
    detected_at = DateTime(required=True)
