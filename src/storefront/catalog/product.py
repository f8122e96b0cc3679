"""Product aggregate with its Reservation entities.

The product row is the unit of serialization for stock. Committed stock
(``stock``) and the short-lived holds against it (``reservations``) change
together inside one aggregate, so a hold is written only when the version
read is still current. ``held`` is the denormalized sum of hold quantities,
kept for querying products with outstanding holds.

Stock Model:
    stock:      committed on-hand units (decremented only by a paid sale)
    held:       units under active or not-yet-swept holds
    available:  stock - active holds (what a new checkout can claim)
"""

from datetime import UTC, datetime, timedelta

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String

from storefront.domain import storefront
from storefront.errors import StockUnavailable

DEFAULT_RESERVATION_TTL = timedelta(minutes=15)


def as_utc(value: datetime) -> datetime:
    """Normalize a stored timestamp to an aware UTC datetime.

    SQL providers hand back naive datetimes; everything is written in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ReleaseReason:
    RELEASED = "released"
    EXPIRED = "expired"
    SOLD = "sold"
    PAYMENT_FAILED = "payment_failed"
    SUPERSEDED = "superseded"


@storefront.entity(part_of="Product")
class Reservation:
    """A time-bounded hold on product stock for one checkout attempt.

    ``checkout_id`` groups every hold made by one checkout and travels with
    the payment intent, so confirmation releases exactly these holds.
    """

    checkout_id = Identifier(required=True)
    holder = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    created_at = DateTime(required=True)
    expires_at = DateTime(required=True)

    def is_expired(self, as_of: datetime, ttl: timedelta | None = None) -> bool:
        """Expired once ``as_of`` reaches ``expires_at`` (or ``created_at + ttl`` when given)."""
        if ttl is not None:
            return as_utc(self.created_at) + ttl <= as_of
        return as_utc(self.expires_at) <= as_of


@storefront.aggregate
class Product:
    """A sellable product, as seen by the checkout pipeline."""

    name = String(required=True, max_length=255)
    price = Integer(required=True, min_value=0)  # Minor currency units
    weight_oz = Float(default=0.0, min_value=0.0)
    stock = Integer(default=0, min_value=0)
    held = Integer(default=0, min_value=0)
    published = Boolean(default=True)
    reservations = HasMany(Reservation)
    created_at = DateTime(default=lambda: datetime.now(UTC))
    updated_at = DateTime(default=lambda: datetime.now(UTC))

    @invariant.post
    def held_matches_reservations(self):
        total = sum(r.quantity for r in self.reservations or [])
        if self.held != total:
            raise ValidationError({"held": [f"Held quantity {self.held} does not match reservations ({total})"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def add(cls, name, price, weight_oz=0.0, stock=0, published=True, product_id=None):
        from storefront.catalog.events import ProductAdded

        now = datetime.now(UTC)
        kwargs = {"id": product_id} if product_id else {}
        product = cls(
            name=name,
            price=price,
            weight_oz=weight_oz,
            stock=stock,
            published=published,
            created_at=now,
            updated_at=now,
            **kwargs,
        )
        product.raise_(
            ProductAdded(
                product_id=str(product.id),
                name=name,
                price=price,
                stock=stock,
                added_at=now,
            )
        )
        return product

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def active_reservations(self, as_of=None, excluding_holder=None):
        as_of = as_of or datetime.now(UTC)
        return [
            r
            for r in self.reservations or []
            if not r.is_expired(as_of) and not (excluding_holder and r.holder == excluding_holder)
        ]

    def active_held(self, as_of=None, excluding_holder=None):
        return sum(r.quantity for r in self.active_reservations(as_of, excluding_holder))

    def available_stock(self, as_of=None, holder=None):
        """Units a new hold can claim. Never negative.

        With ``holder``, that holder's own holds count as available: a new
        checkout by the same holder replaces them.
        """
        return max(self.stock - self.active_held(as_of, excluding_holder=holder), 0)

    def reservations_for(self, checkout_id):
        return [r for r in self.reservations or [] if str(r.checkout_id) == str(checkout_id)]

    # -------------------------------------------------------------------
    # Holds
    # -------------------------------------------------------------------
    def hold(self, checkout_id, quantity, holder=None, ttl=DEFAULT_RESERVATION_TTL, as_of=None):
        """Place a hold if ``stock - active holds`` covers ``quantity``.

        Expired holds are pruned first so that their units count as available,
        and ``holder``'s holds from other checkouts are released (superseded).
        Raises StockUnavailable when the product cannot cover the request.
        """
        from storefront.catalog.events import StockHeld

        if quantity is None or quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        as_of = as_of or datetime.now(UTC)
        self.prune_expired(as_of)

        superseded = self._superseded_by(holder, checkout_id)
        available = max(self.stock - self.active_held(as_of) + sum(r.quantity for r in superseded), 0)
        if available < quantity:
            raise StockUnavailable(str(self.id), quantity, available)

        self._remove_holds(superseded, ReleaseReason.SUPERSEDED, as_of)

        reservation = Reservation(
            checkout_id=checkout_id,
            holder=holder,
            quantity=quantity,
            created_at=as_of,
            expires_at=as_of + ttl,
        )
        with atomic_change(self):
            self.add_reservations(reservation)
            self.held = self.held + quantity
            self.updated_at = as_of

        self.raise_(
            StockHeld(
                product_id=str(self.id),
                reservation_id=str(reservation.id),
                checkout_id=str(checkout_id),
                quantity=quantity,
                expires_at=reservation.expires_at,
            )
        )
        return reservation

    def _remove_holds(self, reservations, reason, as_of):
        from storefront.catalog.events import HoldReleased

        if not reservations:
            return 0

        freed = sum(r.quantity for r in reservations)
        with atomic_change(self):
            for reservation in reservations:
                self.remove_reservations(reservation)
            self.held = self.held - freed
            self.updated_at = as_of

        for reservation in reservations:
            self.raise_(
                HoldReleased(
                    product_id=str(self.id),
                    reservation_id=str(reservation.id),
                    checkout_id=str(reservation.checkout_id),
                    quantity=reservation.quantity,
                    reason=reason,
                    released_at=as_of,
                )
            )
        return freed

    def prune_expired(self, as_of=None, ttl=None):
        """Drop holds whose TTL has elapsed. Returns the quantity freed."""
        as_of = as_of or datetime.now(UTC)
        expired = [r for r in self.reservations or [] if r.is_expired(as_of, ttl)]
        return self._remove_holds(expired, ReleaseReason.EXPIRED, as_of)

    def _superseded_by(self, holder, checkout_id):
        """``holder``'s holds from checkouts other than ``checkout_id``."""
        if not holder:
            return []
        return [
            r
            for r in self.reservations or []
            if r.holder == holder and str(r.checkout_id) != str(checkout_id)
        ]

    def release_reservation(self, reservation_id):
        """Release a single hold. Releasing an unknown hold is a no-op."""
        reservation = next((r for r in self.reservations or [] if str(r.id) == str(reservation_id)), None)
        if reservation is None:
            return 0
        return self._remove_holds([reservation], ReleaseReason.RELEASED, datetime.now(UTC))

    def release_checkout(self, checkout_id, reason=ReleaseReason.RELEASED):
        """Release every hold belonging to ``checkout_id``. Idempotent."""
        return self._remove_holds(self.reservations_for(checkout_id), reason, datetime.now(UTC))

    # -------------------------------------------------------------------
    # Sales
    # -------------------------------------------------------------------
    def commit_sale(self, checkout_id, quantity):
        """Convert a paid checkout's holds on this product into a permanent decrement.

        Stock is floored at zero. Returns the shortfall (units sold beyond
        what was on hand); a non-zero shortfall is an integrity anomaly the
        caller reports, never a reason to reject the paid order.
        """
        from storefront.catalog.events import StockShortfallDetected, StockSold

        now = datetime.now(UTC)
        self._remove_holds(self.reservations_for(checkout_id), ReleaseReason.SOLD, now)

        shortfall = max(quantity - self.stock, 0)
        self.stock = max(self.stock - quantity, 0)
        self.updated_at = now

        self.raise_(
            StockSold(
                product_id=str(self.id),
                checkout_id=str(checkout_id),
                quantity=quantity,
                new_stock=self.stock,
                sold_at=now,
            )
        )
        if shortfall:
            self.raise_(
                StockShortfallDetected(
                    product_id=str(self.id),
                    checkout_id=str(checkout_id),
                    requested=quantity,
                    shortfall=shortfall,
                    detected_at=now,
                )
            )
        return shortfall

    # -------------------------------------------------------------------
    # Catalog edits
    # -------------------------------------------------------------------
    def restock(self, quantity):
        from storefront.catalog.events import ProductRestocked

        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        now = datetime.now(UTC)
        self.stock = self.stock + quantity
        self.updated_at = now
        self.raise_(
            ProductRestocked(
                product_id=str(self.id),
                quantity=quantity,
                new_stock=self.stock,
                restocked_at=now,
            )
        )

    def reprice(self, price):
        from storefront.catalog.events import ProductRepriced

        if price < 0:
            raise ValidationError({"price": ["Price cannot be negative"]})

        now = datetime.now(UTC)
        previous = self.price
        self.price = price
        self.updated_at = now
        self.raise_(
            ProductRepriced(
                product_id=str(self.id),
                previous_price=previous,
                new_price=price,
                repriced_at=now,
            )
        )

    def unpublish(self):
        self.published = False
        self.updated_at = datetime.now(UTC)
