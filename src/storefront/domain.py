"""Storefront bounded context: Checkout, Stock Reservations and Order Fulfillment.

Takes a cart from checkout intent through payment confirmation to a durable,
stock-accurate order. Coordinates the payment processor, the shipping-rate
provider and the relational store through Protean aggregates and commands.
"""

import structlog
from protean.domain import Domain

from storefront.utils.logging import configure_logging

configure_logging()

storefront = Domain(name="storefront")

logger = structlog.get_logger(__name__)
