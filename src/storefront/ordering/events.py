"""Domain events for orders, customers and payment failures."""

from protean.fields import DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderPlaced:
    """A paid order was recorded for a payment intent."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_intent_id = String(required=True)
    checkout_id = Identifier()
    customer_email = String(required=True)
    total_amount = Integer(required=True)
    line_count = Integer(required=True)
    placed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    reason = String()
    changed_at = DateTime(required=True)


@storefront.event(part_of="Customer")
class CustomerCreated:
    __version__ = 1

    customer_id = Identifier(required=True)
    email = String(required=True)
    created_at = DateTime(required=True)


@storefront.event(part_of="PaymentFailure")
class PaymentFailureRecorded:
    """The processor reported that a payment intent failed."""

    __version__ = 1

    payment_failure_id = Identifier(required=True)
    payment_intent_id = String(required=True)
    checkout_id = Identifier()
    customer_email = String()
    reason = String()
    recorded_at = DateTime(required=True)
