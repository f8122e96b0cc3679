"""Pydantic request/response schemas for the storefront API.

These are external contracts (anti-corruption layer), separate from the
internal Protean commands and checkout dataclasses. Amounts are integer
minor currency units.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from storefront.shipping.port import Address


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    name: str = Field(min_length=1)
    street1: str = Field(min_length=1)
    street2: str | None = None
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip: str = Field(min_length=1)
    country: str = "US"
    phone: str | None = None
    email: str | None = None

    def to_address(self) -> Address:
        return Address(**self.model_dump())


class CartLineSchema(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(ge=1)


class ShippingQuoteSchema(BaseModel):
    rate_id: str
    label: str
    amount: int
    currency: str


class CheckoutLineSchema(BaseModel):
    product_id: str
    name: str
    unit_price: int
    quantity: int


class LineAdjustmentSchema(BaseModel):
    product_id: str
    requested: int
    granted: int
    dropped: bool


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    customer_email: str
    lines: list[CartLineSchema]
    address: AddressSchema | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_email": "shopper@example.com",
                    "lines": [{"product_id": "prod-001", "quantity": 2}],
                    "address": {
                        "name": "Ada Lovelace",
                        "street1": "12 Analytical Way",
                        "city": "Austin",
                        "state": "TX",
                        "zip": "78701",
                        "country": "US",
                    },
                }
            ]
        }
    }


class CheckoutResponse(BaseModel):
    checkout_id: str
    payment_intent_id: str
    client_secret: str
    currency: str
    product_total: int
    shipping_amount: int
    tax_amount: int
    total_amount: int
    tax_deferred: bool
    shipping: ShippingQuoteSchema
    lines: list[CheckoutLineSchema]
    expires_at: datetime
    cart_modified: bool = False


class CartAdjustedResponse(BaseModel):
    cart_modified: bool = True
    lines: list[CartLineSchema]
    adjustments: list[LineAdjustmentSchema]


class ErrorDetail(BaseModel):
    code: str
    message: str
    retryable: bool
    adjustments: list[LineAdjustmentSchema] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# ---------------------------------------------------------------------------
# Shipping
# ---------------------------------------------------------------------------
class ShippingQuoteRequest(BaseModel):
    lines: list[CartLineSchema]
    address: AddressSchema | None = None


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class WebhookResponse(BaseModel):
    status: str
    event_type: str
    payment_intent_id: str | None = None
    order_id: str | None = None


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Processor unavailable"


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
class SweepRequest(BaseModel):
    ttl_minutes: int | None = Field(default=None, ge=0)


class SweepResponse(BaseModel):
    success: bool
    cleaned_reservations: int
    freed_inventory: dict[str, int]


class ReservationSchema(BaseModel):
    reservation_id: str
    checkout_id: str
    holder: str | None = None
    quantity: int
    created_at: datetime
    expires_at: datetime
    expired: bool


class ProductReservationsSchema(BaseModel):
    product_name: str
    stock: int
    total_reserved: int
    active_reserved: int
    reservations: list[ReservationSchema]


class ReservationStatusResponse(BaseModel):
    products: dict[str, ProductReservationsSchema]


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderLineSchema(BaseModel):
    product_id: str
    name: str
    unit_price: int
    quantity: int


class OrderResponse(BaseModel):
    order_id: str
    payment_intent_id: str
    checkout_id: str | None = None
    customer_email: str
    status: str
    currency: str
    product_total: int
    shipping_amount: int
    tax_amount: int
    total_amount: int
    shipping_rate_id: str | None = None
    lines: list[OrderLineSchema]
    created_at: datetime


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]


class ChangeOrderStatusRequest(BaseModel):
    status: str
    reason: str | None = None


class StatusResponse(BaseModel):
    status: str
