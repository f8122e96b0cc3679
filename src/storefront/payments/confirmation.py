"""Payment confirmation: the signature-verified, idempotent webhook consumer.

A payment-succeeded event becomes exactly one Order no matter how often the
processor delivers it. The unique ``payment_intent_id`` column settles races
between concurrent deliveries: the loser sees a uniqueness violation, finds
the winner's order and acknowledges. Anything that cannot be resolved
propagates so the processor redelivers the event later.
"""

import json
from dataclasses import dataclass

import structlog
from protean.exceptions import ExpectedVersionError, ValidationError
from protean.utils.globals import current_domain
from sqlalchemy.exc import IntegrityError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront.catalog.product import ReleaseReason
from storefront.errors import MalformedPaymentEvent
from storefront.inventory.ledger import StockLedger
from storefront.inventory.sweeper import products_with_holds
from storefront.ordering.order import Order
from storefront.ordering.placement import PlaceOrder
from storefront.payments.failure import RecordPaymentFailure
from storefront.payments.gateway import get_gateway
from storefront.payments.gateway.port import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    PaymentEvent,
    PaymentGateway,
    join_metadata_value,
)

logger = structlog.get_logger(__name__)

# Columns whose uniqueness constraint can be hit by a concurrent delivery
_UNIQUE_FIELDS = {"payment_intent_id", "email"}


class ConcurrentInsert(Exception):
    """A concurrent writer inserted a conflicting row first; the attempt can be re-run."""


def _is_unique_violation(exc: Exception) -> bool:
    if isinstance(exc, IntegrityError):
        return True
    return isinstance(exc, ValidationError) and bool(_UNIQUE_FIELDS & set(exc.messages or {}))


@dataclass(frozen=True)
class WebhookOutcome:
    status: str  # order_created | duplicate | failure_recorded | ignored | not_succeeded
    event_type: str
    payment_intent_id: str | None = None
    order_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "event_type": self.event_type,
            "payment_intent_id": self.payment_intent_id,
            "order_id": self.order_id,
        }


def _int(metadata: dict, key: str, default: int = 0) -> int:
    value = metadata.get(key)
    return int(value) if value not in (None, "") else default


def order_request_from_metadata(payment_intent_id, metadata, amount=None, currency=None) -> dict:
    """Rebuild the PlaceOrder arguments from payment-intent metadata."""
    if not payment_intent_id:
        raise MalformedPaymentEvent(None, "event carries no payment intent")

    email = (metadata or {}).get("customer_email")
    if not email:
        raise MalformedPaymentEvent(payment_intent_id, "missing customer_email")

    try:
        items = json.loads(join_metadata_value(metadata, "items") or "[]")
        lines = [
            {
                "product_id": str(item["id"]),
                "name": item["name"],
                "unit_price": int(item["price"]),
                "quantity": int(item["quantity"]),
            }
            for item in items
        ]
        product_total = _int(metadata, "product_total", sum(line["unit_price"] * line["quantity"] for line in lines))
        shipping_amount = _int(metadata, "shipping_amount")
        tax_amount = _int(metadata, "tax_amount")
    except (ValueError, KeyError, TypeError) as exc:
        raise MalformedPaymentEvent(payment_intent_id, f"unreadable metadata: {exc}") from exc

    if not lines:
        raise MalformedPaymentEvent(payment_intent_id, "no line items")

    return {
        "payment_intent_id": payment_intent_id,
        "checkout_id": metadata.get("checkout_id") or None,
        "customer_email": email,
        "lines": json.dumps(lines),
        "product_total": product_total,
        "shipping_amount": shipping_amount,
        "tax_amount": tax_amount,
        "total_amount": amount if amount is not None else product_total + shipping_amount + tax_amount,
        "currency": (currency or "usd").lower(),
        "shipping_rate_id": metadata.get("shipping_rate_id") or None,
        "shipping_label": metadata.get("shipping_label") or None,
        "shipping_address": join_metadata_value(metadata, "address_to") or None,
    }


def _product_ids_from_metadata(metadata: dict) -> list[str] | None:
    try:
        return [str(item["id"]) for item in json.loads(join_metadata_value(metadata, "items") or "[]")]
    except (ValueError, KeyError, TypeError):
        return None


class PaymentConfirmationHandler:
    def __init__(self, gateway: PaymentGateway | None = None, ledger: StockLedger | None = None) -> None:
        self._gateway = gateway
        self.ledger = ledger or StockLedger()

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway or get_gateway()

    def handle(self, payload: bytes, signature: str) -> WebhookOutcome:
        """Verify and process one webhook delivery.

        Raises WebhookSignatureError (reject, no side effects) or
        MalformedPaymentEvent; any other exception means "redeliver".
        """
        event = self.gateway.parse_webhook_event(payload, signature)
        log = logger.bind(event_id=event.event_id, event_type=event.event_type, payment_intent_id=event.intent_id)

        if event.event_type == PAYMENT_SUCCEEDED:
            return self.confirm(event.intent_id, event.metadata, event.amount, event.currency, event.event_type)
        if event.event_type == PAYMENT_FAILED:
            return self.record_failure(event)

        log.info("Ignoring unhandled payment event")
        return WebhookOutcome(status="ignored", event_type=event.event_type, payment_intent_id=event.intent_id)

    def confirm(self, payment_intent_id, metadata, amount=None, currency=None, event_type=PAYMENT_SUCCEEDED):
        """Materialize the order for a succeeded payment intent, at most once."""
        request = order_request_from_metadata(payment_intent_id, metadata, amount, currency)
        result = self._place(request)

        status = "order_created" if result["created"] else "duplicate"
        return WebhookOutcome(
            status=status,
            event_type=event_type,
            payment_intent_id=payment_intent_id,
            order_id=result["order_id"],
        )

    @retry(
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        retry=retry_if_exception_type((ExpectedVersionError, ConcurrentInsert)),
        reraise=True,
    )
    def _place(self, request: dict) -> dict:
        try:
            return current_domain.process(PlaceOrder(**request), asynchronous=False)
        except (ValidationError, IntegrityError) as exc:
            existing = current_domain.repository_for(Order).find_by_payment_intent(request["payment_intent_id"])
            if existing is not None:
                logger.info(
                    "Concurrent delivery already recorded the order",
                    payment_intent_id=request["payment_intent_id"],
                    order_id=str(existing.id),
                )
                return {"order_id": str(existing.id), "created": False}
            if _is_unique_violation(exc):
                raise ConcurrentInsert(str(exc)) from exc
            raise

    def record_failure(self, event: PaymentEvent) -> WebhookOutcome:
        """Record a failed payment and release its holds without waiting for the TTL."""
        metadata = event.metadata or {}
        checkout_id = metadata.get("checkout_id") or None

        current_domain.process(
            RecordPaymentFailure(
                payment_intent_id=event.intent_id or "unknown",
                event_id=event.event_id,
                checkout_id=checkout_id,
                customer_email=metadata.get("customer_email"),
                amount=event.amount,
                reason=event.failure_reason,
            ),
            asynchronous=False,
        )

        if checkout_id:
            product_ids = _product_ids_from_metadata(metadata)
            if product_ids is None:
                product_ids = products_with_holds()
            self.ledger.release_checkout(checkout_id, product_ids, reason=ReleaseReason.PAYMENT_FAILED)

        return WebhookOutcome(status="failure_recorded", event_type=event.event_type, payment_intent_id=event.intent_id)

    def reconcile(self, payment_intent_id: str) -> WebhookOutcome:
        """Recover an order whose success webhook never arrived.

        Raises GatewayError when the processor cannot be reached.
        """
        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        if intent.status != "succeeded":
            logger.info("Reconciliation skipped, intent not succeeded", payment_intent_id=payment_intent_id, status=intent.status)
            return WebhookOutcome(status="not_succeeded", event_type="reconcile", payment_intent_id=payment_intent_id)

        return self.confirm(intent.intent_id, intent.metadata, intent.amount, intent.currency, event_type="reconcile")
