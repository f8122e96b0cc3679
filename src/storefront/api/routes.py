"""FastAPI routes for the storefront: checkout, shipping, payments, inventory and orders."""

import os

import structlog
from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from protean.utils.globals import current_domain

from storefront.api.schemas import (
    CartAdjustedResponse,
    ChangeOrderStatusRequest,
    CheckoutRequest,
    CheckoutResponse,
    ConfigureGatewayRequest,
    ErrorResponse,
    GatewayConfigResponse,
    OrderListResponse,
    OrderResponse,
    ReservationStatusResponse,
    ShippingQuoteRequest,
    ShippingQuoteSchema,
    StatusResponse,
    SweepRequest,
    SweepResponse,
    WebhookResponse,
)
from storefront.checkout.cart import CartAdjusted, CartLine
from storefront.checkout.orchestrator import CheckoutOrchestrator
from storefront.errors import (
    CheckoutError,
    GatewayError,
    MalformedPaymentEvent,
    ProductNotFound,
    StockUnavailable,
    WebhookSignatureError,
)
from storefront.inventory.sweeper import ReservationSweeper
from storefront.ordering.order import Order
from storefront.ordering.status import ChangeOrderStatus
from storefront.payments.confirmation import PaymentConfirmationHandler
from storefront.payments.gateway import get_gateway
from storefront.payments.gateway.fake_adapter import FakeGateway

logger = structlog.get_logger(__name__)


def _status_for(exc: CheckoutError) -> int:
    if isinstance(exc, ProductNotFound):
        return 404
    if isinstance(exc, StockUnavailable):
        return 409
    if exc.retryable:
        return 503
    return 400


def _error_response(exc: CheckoutError) -> JSONResponse:
    return JSONResponse(status_code=_status_for(exc), content={"error": exc.to_dict()})


def _cart_lines(lines) -> list[CartLine]:
    return [CartLine(product_id=line.product_id, quantity=line.quantity) for line in lines]


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])

_CHECKOUT_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": CartAdjustedResponse},
    503: {"model": ErrorResponse},
}


@checkout_router.post("", response_model=CheckoutResponse, responses=_CHECKOUT_RESPONSES)
async def start_checkout(body: CheckoutRequest):
    """Validate the cart, hold stock and open a payment intent.

    Answers 409 with the adjusted cart when stock could not cover it; the
    client confirms the adjustment and checks out again.
    """
    orchestrator = CheckoutOrchestrator()
    try:
        result = orchestrator.start_checkout(
            _cart_lines(body.lines),
            customer_email=body.customer_email,
            destination=body.address.to_address() if body.address else None,
        )
    except CheckoutError as exc:
        logger.info("Checkout rejected", code=exc.code, customer_email=body.customer_email)
        return _error_response(exc)

    if isinstance(result, CartAdjusted):
        return JSONResponse(status_code=409, content=result.to_dict())

    return CheckoutResponse(
        checkout_id=result.checkout_id,
        payment_intent_id=result.payment_intent_id,
        client_secret=result.client_secret,
        currency=result.currency,
        product_total=result.product_total,
        shipping_amount=result.shipping_amount,
        tax_amount=result.tax_amount,
        total_amount=result.total_amount,
        tax_deferred=result.tax_deferred,
        shipping=ShippingQuoteSchema(**result.shipping.to_dict()),
        lines=[
            {"product_id": line.product_id, "name": line.name, "unit_price": line.unit_price, "quantity": line.quantity}
            for line in result.lines
        ],
        expires_at=result.expires_at,
    )


# ---------------------------------------------------------------------------
# Shipping Router
# ---------------------------------------------------------------------------
shipping_router = APIRouter(prefix="/shipping", tags=["shipping"])


@shipping_router.post("/quote", response_model=ShippingQuoteSchema, responses={404: {"model": ErrorResponse}})
async def quote_shipping(body: ShippingQuoteRequest):
    """Quote shipping for a cart without holding stock."""
    try:
        quote = CheckoutOrchestrator().quote_shipping(
            _cart_lines(body.lines),
            destination=body.address.to_address() if body.address else None,
        )
    except CheckoutError as exc:
        return _error_response(exc)
    return ShippingQuoteSchema(**quote.to_dict())


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/payments", response_model=WebhookResponse)
async def payment_webhook(request: Request, stripe_signature: str = Header(default="")) -> WebhookResponse:
    """Consume a payment processor event.

    Any non-2xx answer makes the processor redeliver the event later.
    """
    payload = await request.body()
    try:
        outcome = PaymentConfirmationHandler().handle(payload, stripe_signature)
    except WebhookSignatureError as exc:
        logger.warning("Rejected payment webhook", error=str(exc))
        raise HTTPException(status_code=400, detail="Invalid webhook signature") from exc
    except MalformedPaymentEvent as exc:
        logger.error("Malformed payment event", payment_intent_id=exc.payment_intent_id, reason=exc.reason)
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Payment webhook processing failed")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from exc

    return WebhookResponse(**outcome.to_dict())


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/{payment_intent_id}/reconcile", response_model=WebhookResponse)
async def reconcile_payment(payment_intent_id: str) -> WebhookResponse:
    """Create the order for a succeeded payment whose webhook never arrived."""
    try:
        outcome = PaymentConfirmationHandler().reconcile(payment_intent_id)
    except GatewayError as exc:
        raise HTTPException(status_code=503, detail=f"Payment processor unavailable: {exc}") from exc
    except MalformedPaymentEvent as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return WebhookResponse(**outcome.to_dict())


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(should_succeed=body.should_succeed, failure_reason=body.failure_reason)
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
    )


# ---------------------------------------------------------------------------
# Inventory Maintenance Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("/reservations/cleanup", response_model=SweepResponse)
async def cleanup_reservations(body: SweepRequest | None = None) -> SweepResponse:
    """Sweep expired reservations now and report what was freed."""
    report = ReservationSweeper().sweep(ttl_minutes=body.ttl_minutes if body else None)
    return SweepResponse(**report.to_dict())


@inventory_router.get("/reservations", response_model=ReservationStatusResponse)
async def reservation_status() -> ReservationStatusResponse:
    """Outstanding holds grouped by product."""
    return ReservationStatusResponse(products=ReservationSweeper().status())


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


def _order_response(order: Order) -> OrderResponse:
    pricing = order.pricing
    return OrderResponse(
        order_id=str(order.id),
        payment_intent_id=order.payment_intent_id,
        checkout_id=str(order.checkout_id) if order.checkout_id else None,
        customer_email=order.customer_email,
        status=order.status,
        currency=pricing.currency,
        product_total=pricing.product_total,
        shipping_amount=pricing.shipping_amount,
        tax_amount=pricing.tax_amount,
        total_amount=pricing.total_amount,
        shipping_rate_id=order.shipping_rate_id,
        lines=[
            {
                "product_id": str(line.product_id),
                "name": line.name,
                "unit_price": line.unit_price,
                "quantity": line.quantity,
            }
            for line in order.lines
        ],
        created_at=order.created_at,
    )


@order_router.get("", response_model=OrderListResponse)
async def list_orders(
    payment_intent_id: str | None = Query(default=None),
    customer_email: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> OrderListResponse:
    filters = {}
    if payment_intent_id:
        filters["payment_intent_id"] = payment_intent_id
    if customer_email:
        filters["customer_email"] = customer_email.strip().lower()
    if status:
        filters["status"] = status

    query = current_domain.repository_for(Order)._dao.query
    if filters:
        query = query.filter(**filters)
    orders = query.order_by("-created_at").offset(offset).limit(limit).all().items
    return OrderListResponse(orders=[_order_response(order) for order in orders])


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(current_domain.repository_for(Order).get(order_id))


@order_router.patch("/{order_id}/status", response_model=StatusResponse)
async def change_order_status(order_id: str, body: ChangeOrderStatusRequest) -> StatusResponse:
    """Administrative status change (paid → completed, failed or cancelled)."""
    new_status = current_domain.process(
        ChangeOrderStatus(order_id=order_id, status=body.status, reason=body.reason),
        asynchronous=False,
    )
    return StatusResponse(status=new_status)
