"""Order aggregate with OrderLine entities and an OrderPricing value object.

Orders are created only by payment confirmation, one per payment intent.
The unique ``payment_intent_id`` column is the exactly-once guard: a second
insert for the same intent fails in the store, not just in application code.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String, Text, ValueObject

from storefront.domain import storefront


class OrderStatus(Enum):
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Completion is the pipeline's normal exit; failed/cancelled are administrative.
_VALID_TRANSITIONS = {
    OrderStatus.PAID: {OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),  # Terminal
    OrderStatus.FAILED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}


@storefront.value_object(part_of="Order")
class OrderPricing:
    """Amounts charged, in minor currency units."""

    product_total = Integer(required=True, min_value=0)
    shipping_amount = Integer(default=0, min_value=0)
    tax_amount = Integer(default=0, min_value=0)
    total_amount = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="usd")


@storefront.entity(part_of="Order")
class OrderLine:
    """A purchased product. Name and price are copied at the time of sale and never change."""

    product_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    unit_price = Integer(required=True, min_value=0)
    quantity = Integer(required=True, min_value=1)

    @property
    def line_total(self):
        return self.unit_price * self.quantity


@storefront.aggregate
class Order:
    payment_intent_id = String(required=True, max_length=255, unique=True)
    checkout_id = Identifier()
    customer_id = Identifier()
    customer_email = String(required=True, max_length=254)
    pricing = ValueObject(OrderPricing)
    shipping_rate_id = String(max_length=255)
    shipping_label = String(max_length=255)
    shipping_address = Text()  # JSON
    status = String(choices=OrderStatus, default=OrderStatus.PAID.value)
    lines = HasMany(OrderLine)
    created_at = DateTime(default=lambda: datetime.now(UTC))
    updated_at = DateTime(default=lambda: datetime.now(UTC))

    @classmethod
    def place(
        cls,
        payment_intent_id,
        customer_email,
        lines,
        product_total,
        shipping_amount,
        tax_amount,
        total_amount,
        currency="usd",
        checkout_id=None,
        customer_id=None,
        shipping_rate_id=None,
        shipping_label=None,
        shipping_address=None,
    ):
        """Create a paid order. ``lines`` is a list of dicts with product_id, name, unit_price, quantity."""
        from storefront.ordering.events import OrderPlaced

        if not lines:
            raise ValidationError({"lines": ["An order needs at least one line"]})

        now = datetime.now(UTC)
        order = cls(
            payment_intent_id=payment_intent_id,
            checkout_id=checkout_id,
            customer_id=customer_id,
            customer_email=customer_email,
            pricing=OrderPricing(
                product_total=product_total,
                shipping_amount=shipping_amount,
                tax_amount=tax_amount,
                total_amount=total_amount,
                currency=currency,
            ),
            shipping_rate_id=shipping_rate_id,
            shipping_label=shipping_label,
            shipping_address=shipping_address,
            status=OrderStatus.PAID.value,
            lines=[OrderLine(**line) for line in lines],
            created_at=now,
            updated_at=now,
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                payment_intent_id=payment_intent_id,
                checkout_id=str(checkout_id) if checkout_id else None,
                customer_email=customer_email,
                total_amount=total_amount,
                line_count=len(lines),
                placed_at=now,
            )
        )
        return order

    def _assert_can_transition(self, target_status):
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def change_status(self, new_status, reason=None):
        from storefront.ordering.events import OrderStatusChanged

        try:
            target = OrderStatus(new_status)
        except ValueError as exc:
            raise ValidationError({"status": [f"Unknown order status: {new_status}"]}) from exc
        self._assert_can_transition(target)

        previous = self.status
        now = datetime.now(UTC)
        self.status = target.value
        self.updated_at = now
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                previous_status=previous,
                new_status=target.value,
                reason=reason,
                changed_at=now,
            )
        )


@storefront.repository(part_of=Order)
class OrderRepository:
    def find_by_payment_intent(self, payment_intent_id: str) -> Order | None:
        return self._dao.query.filter(payment_intent_id=payment_intent_id).all().first
