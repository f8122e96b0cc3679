"""Checkout and payment-pipeline errors.

Every CheckoutError carries a stable ``code`` for clients, a displayable
message, and a ``retryable`` flag. Retryable errors mean "try again later";
the rest mean "fix your input".
"""


class CheckoutError(Exception):
    """Base exception for user-actionable checkout failures."""

    code = "checkout_error"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class ProductNotFound(CheckoutError):
    """Raised when a cart references a product that does not exist or is unpublished."""

    code = "product_not_found"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "product_id": self.product_id}


class EmptyCart(CheckoutError):
    """Raised when there is nothing left to buy.

    ``adjustments`` lists the lines dropped for lack of stock, when that is
    why the cart emptied.
    """

    code = "empty_cart"

    def __init__(self, adjustments=()):
        self.adjustments = tuple(adjustments)
        if self.adjustments:
            super().__init__("None of the requested products are in stock")
        else:
            super().__init__("Cart is empty")

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.adjustments:
            data["adjustments"] = [adjustment.to_dict() for adjustment in self.adjustments]
        return data


class CartTooLarge(CheckoutError):
    """Raised when a cart has too many lines to travel with the payment intent."""

    code = "cart_too_large"

    def __init__(self, line_count: int):
        self.line_count = line_count
        super().__init__(f"A cart of {line_count} lines is too large to check out at once")


class AddressRequired(CheckoutError):
    """Raised when checkout needs a destination address and none was given."""

    code = "address_required"

    def __init__(self):
        super().__init__("Shipping address is required")


class StockUnavailable(CheckoutError):
    """Raised when a hold cannot be placed because stock is insufficient.

    This is an authoritative answer from the ledger, not a transient failure.
    """

    code = "stock_unavailable"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f"Only {available} of {requested} requested units available for product {product_id}")

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }


class ReservationConflict(CheckoutError):
    """Raised when a hold kept losing concurrent writes on the same product."""

    code = "reservation_conflict"
    retryable = True

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} is busy, please try again")


class ShippingUnavailable(CheckoutError):
    """Raised when no shipping rate could be obtained."""

    code = "shipping_unavailable"
    retryable = True

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Shipping rates are unavailable: {reason}")


class PaymentInitFailed(CheckoutError):
    """Raised when the payment processor could not open a payment intent."""

    code = "payment_init_failed"
    retryable = True

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Could not start payment: {reason}")


# ---------------------------------------------------------------------------
# External dependency errors
# ---------------------------------------------------------------------------
class GatewayError(Exception):
    """Raised by payment gateway adapters when the processor call fails."""


class RateProviderError(Exception):
    """Raised by rate provider adapters when the rate request fails."""


class WebhookSignatureError(Exception):
    """Raised when a webhook payload cannot be authenticated."""


class MalformedPaymentEvent(Exception):
    """Raised when an authenticated payment event lacks usable metadata."""

    def __init__(self, payment_intent_id: str | None, reason: str):
        self.payment_intent_id = payment_intent_id
        self.reason = reason
        super().__init__(f"Malformed payment event {payment_intent_id}: {reason}")
