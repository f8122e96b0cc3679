from storefront.api.routes import (
    checkout_router,
    inventory_router,
    order_router,
    payment_router,
    shipping_router,
    webhook_router,
)

__all__ = [
    "checkout_router",
    "inventory_router",
    "order_router",
    "payment_router",
    "shipping_router",
    "webhook_router",
]
