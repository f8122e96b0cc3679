"""Order placement: turns a paid checkout into an Order, exactly once.

Everything happens in one unit of work: the idempotency check, the
customer, the order with its lines, the permanent stock decrements and the
release of the checkout's holds. Either all of it is committed or none of
it is, so a failed attempt leaves nothing behind and can simply run again.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.catalog.product import Product
from storefront.domain import storefront
from storefront.ordering.customer import resolve_customer
from storefront.ordering.order import Order

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Order")
class PlaceOrder:
    payment_intent_id = String(required=True, max_length=255)
    checkout_id = Identifier()
    customer_email = String(required=True, max_length=254)
    lines = Text(required=True)  # JSON list of {product_id, name, unit_price, quantity}
    product_total = Integer(required=True)
    shipping_amount = Integer(default=0)
    tax_amount = Integer(default=0)
    total_amount = Integer(required=True)
    currency = String(max_length=3, default="usd")
    shipping_rate_id = String(max_length=255)
    shipping_label = String(max_length=255)
    shipping_address = Text()  # JSON


@storefront.command_handler(part_of=Order)
class OrderPlacementHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        orders = current_domain.repository_for(Order)

        existing = orders.find_by_payment_intent(command.payment_intent_id)
        if existing is not None:
            logger.info(
                "Order already recorded for payment",
                payment_intent_id=command.payment_intent_id,
                order_id=str(existing.id),
            )
            return {"order_id": str(existing.id), "created": False}

        lines = json.loads(command.lines)
        customer = resolve_customer(command.customer_email)

        order = Order.place(
            payment_intent_id=command.payment_intent_id,
            customer_email=customer.email,
            customer_id=str(customer.id),
            checkout_id=command.checkout_id,
            lines=lines,
            product_total=command.product_total,
            shipping_amount=command.shipping_amount,
            tax_amount=command.tax_amount,
            total_amount=command.total_amount,
            currency=command.currency,
            shipping_rate_id=command.shipping_rate_id,
            shipping_label=command.shipping_label,
            shipping_address=command.shipping_address,
        )
        orders.add(order)

        self._commit_stock(command.checkout_id, lines, command.payment_intent_id)

        logger.info(
            "Order placed",
            order_id=str(order.id),
            payment_intent_id=command.payment_intent_id,
            checkout_id=command.checkout_id,
            total_amount=command.total_amount,
        )
        return {"order_id": str(order.id), "created": True}

    def _commit_stock(self, checkout_id, lines, payment_intent_id):
        """Decrement stock per line and release the checkout's holds."""
        products = current_domain.repository_for(Product)

        quantities = {}
        for line in lines:
            product_id = str(line["product_id"])
            quantities[product_id] = quantities.get(product_id, 0) + int(line["quantity"])

        for product_id, quantity in quantities.items():
            try:
                product = products.get(product_id)
            except ObjectNotFoundError:
                logger.warning(
                    "inventory_integrity_warning",
                    reason="product_missing",
                    product_id=product_id,
                    payment_intent_id=payment_intent_id,
                )
                continue

            shortfall = product.commit_sale(checkout_id, quantity)
            if shortfall:
                logger.warning(
                    "inventory_integrity_warning",
                    reason="stock_floor",
                    product_id=product_id,
                    requested=quantity,
                    shortfall=shortfall,
                    payment_intent_id=payment_intent_id,
                )
            products.add(product)
