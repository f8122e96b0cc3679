"""Checkout orchestrator: the single entry point for "proceed to checkout".

Validates the cart against current stock and prices, quotes shipping,
computes tax, holds stock for every line and opens a payment intent for the
total. Validation failures are typed and never retried. A lost stock race
or a payment-processor outage releases every hold made by the attempt.

The orchestrator keeps no state between calls; concurrent checkouts
coordinate only through the product rows they hold stock on.
"""

import json
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import structlog
from protean.exceptions import ExpectedVersionError, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront.catalog.product import ReleaseReason
from storefront.catalog.snapshot import CatalogSnapshotAccessor
from storefront.checkout.cart import CartAdjusted, CartLine, CheckoutSession, LineAdjustment, PricedLine
from storefront.checkout.pricing import CheckoutTotals, compute_tax
from storefront.config import Settings, get_settings
from storefront.errors import (
    AddressRequired,
    CartTooLarge,
    EmptyCart,
    GatewayError,
    PaymentInitFailed,
    ProductNotFound,
    ReservationConflict,
)
from storefront.inventory.ledger import StockLedger
from storefront.payments.gateway import get_gateway
from storefront.payments.gateway.port import (
    METADATA_MAX_KEYS,
    PaymentGateway,
    PaymentIntentHandle,
    split_metadata_value,
)
from storefront.shipping.port import Address, ShippingQuote
from storefront.shipping.quoter import RateQuoter

logger = structlog.get_logger(__name__)


def merge_lines(lines) -> list[CartLine]:
    """Collapse repeated products into one line, keeping first-seen order."""
    merged = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return [CartLine(product_id=product_id, quantity=quantity) for product_id, quantity in merged.items()]


class CheckoutOrchestrator:
    def __init__(
        self,
        catalog: CatalogSnapshotAccessor | None = None,
        quoter: RateQuoter | None = None,
        ledger: StockLedger | None = None,
        gateway: PaymentGateway | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.catalog = catalog or CatalogSnapshotAccessor()
        self.quoter = quoter or RateQuoter(settings=self.settings)
        self.ledger = ledger or StockLedger()
        self._gateway = gateway

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway or get_gateway()

    # -------------------------------------------------------------------
    # Validation and pricing
    # -------------------------------------------------------------------
    def validate_cart(self, lines, holder=None) -> tuple[list[PricedLine], list[LineAdjustment]]:
        """Price every line from the catalog, clamping or dropping what is out of stock.

        Stock held by ``holder`` for an earlier checkout counts as available,
        since the new checkout's holds replace those.
        """
        priced, adjustments = [], []
        as_of = datetime.now(UTC)
        for line in merge_lines(lines):
            snapshot = self.catalog.get(line.product_id, as_of, holder=holder)
            if snapshot is None or not snapshot.published:
                raise ProductNotFound(line.product_id)

            quantity = line.quantity
            if snapshot.available_stock < quantity:
                quantity = snapshot.available_stock
                adjustments.append(
                    LineAdjustment(product_id=line.product_id, requested=line.quantity, granted=quantity)
                )
                if quantity == 0:
                    continue

            priced.append(
                PricedLine(
                    product_id=snapshot.product_id,
                    name=snapshot.name,
                    unit_price=snapshot.unit_price,
                    unit_weight=snapshot.unit_weight,
                    quantity=quantity,
                )
            )
        return priced, adjustments

    def compute_totals(self, priced: list[PricedLine], destination: Address | None) -> CheckoutTotals:
        product_total = sum(line.line_total for line in priced)
        total_weight = sum(line.line_weight for line in priced)

        shipping = self.quoter.quote_for_cart(product_total, total_weight, destination)

        if destination is not None:
            tax_amount = compute_tax(product_total + shipping.amount, self.settings.tax_rate)
            tax_deferred = False
        else:
            tax_amount = 0
            tax_deferred = True

        return CheckoutTotals(
            product_total=product_total,
            shipping=shipping,
            tax_amount=tax_amount,
            tax_deferred=tax_deferred,
        )

    def quote_shipping(self, lines, destination: Address | None) -> ShippingQuote:
        """Quote shipping for a cart as requested, without holding any stock."""
        priced = []
        for line in merge_lines(lines):
            snapshot = self.catalog.get(line.product_id)
            if snapshot is None or not snapshot.published:
                raise ProductNotFound(line.product_id)
            priced.append(
                PricedLine(
                    product_id=snapshot.product_id,
                    name=snapshot.name,
                    unit_price=snapshot.unit_price,
                    unit_weight=snapshot.unit_weight,
                    quantity=line.quantity,
                )
            )
        if not priced:
            raise EmptyCart()

        product_total = sum(line.line_total for line in priced)
        total_weight = sum(line.line_weight for line in priced)
        return self.quoter.quote_for_cart(product_total, total_weight, destination)

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def start_checkout(self, lines, customer_email: str, destination: Address | None = None):
        """Hold stock and open a payment intent for the cart.

        Returns CheckoutSession on success, or CartAdjusted when the cart had
        to change to fit stock (nothing is held or charged in that case).
        """
        if not customer_email or "@" not in customer_email:
            raise ValidationError({"customer_email": ["A valid email address is required"]})

        holder = customer_email.strip().lower()
        priced, adjustments = self.validate_cart(lines, holder=holder)
        if not priced:
            raise EmptyCart(adjustments)
        if adjustments:
            logger.info(
                "Cart adjusted to available stock",
                customer_email=customer_email,
                adjustments=[a.to_dict() for a in adjustments],
            )
            return CartAdjusted(
                lines=tuple(CartLine(product_id=line.product_id, quantity=line.quantity) for line in priced),
                adjustments=tuple(adjustments),
            )

        if destination is None and self.settings.require_address:
            raise AddressRequired()

        totals = self.compute_totals(priced, destination)

        checkout_id = str(uuid4())
        log = logger.bind(checkout_id=checkout_id, customer_email=customer_email)

        metadata = self._intent_metadata(checkout_id, customer_email, priced, totals, destination)
        if len(metadata) > METADATA_MAX_KEYS:
            raise CartTooLarge(len(priced))

        reservation_ids = self._hold_all(checkout_id, priced, holder)

        try:
            intent = self._open_intent(totals.total_amount, metadata, checkout_id, customer_email)
        except GatewayError as exc:
            log.warning("Payment intent creation failed, releasing holds", error=str(exc))
            self._release_all(checkout_id, priced)
            raise PaymentInitFailed(str(exc)) from exc

        log.info(
            "Checkout started",
            payment_intent_id=intent.intent_id,
            total_amount=totals.total_amount,
            shipping_rate_id=totals.shipping.rate_id,
        )
        return CheckoutSession(
            checkout_id=checkout_id,
            payment_intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            currency=self.settings.currency,
            product_total=totals.product_total,
            shipping_amount=totals.shipping_amount,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            shipping=totals.shipping,
            lines=tuple(priced),
            expires_at=datetime.now(UTC) + timedelta(minutes=self.settings.reservation_ttl_minutes),
            tax_deferred=totals.tax_deferred,
            reservation_ids=tuple(reservation_ids),
        )

    def _hold_all(self, checkout_id, priced, holder) -> list[str]:
        """Hold every line, or none of them."""
        reservation_ids, held = [], []
        try:
            for line in priced:
                reservation_ids.append(
                    self.ledger.hold(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        holder=holder,
                        checkout_id=checkout_id,
                        ttl_minutes=self.settings.reservation_ttl_minutes,
                    )
                )
                held.append(line)
        except ExpectedVersionError as exc:
            self._release_all(checkout_id, held)
            raise ReservationConflict(line.product_id) from exc
        except Exception:
            self._release_all(checkout_id, held)
            raise
        return reservation_ids

    def _release_all(self, checkout_id, lines) -> None:
        if lines:
            self.ledger.release_checkout(
                checkout_id,
                [line.product_id for line in lines],
                reason=ReleaseReason.RELEASED,
            )

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=1),
        retry=retry_if_exception_type(GatewayError),
        reraise=True,
    )
    def _open_intent(self, amount, metadata, checkout_id, customer_email) -> PaymentIntentHandle:
        # The checkout id doubles as idempotency key, so a retry never opens a second intent.
        return self.gateway.create_payment_intent(
            amount=amount,
            currency=self.settings.currency,
            metadata=metadata,
            idempotency_key=checkout_id,
            receipt_email=customer_email,
        )

    def _intent_metadata(self, checkout_id, customer_email, priced, totals, destination) -> dict[str, str]:
        """Everything confirmation needs to rebuild the order, as processor metadata strings.

        The cart and the address can outgrow a single metadata value, so they
        are split over numbered keys (``items_0``, ``items_1``, ...).
        """
        metadata = {
            "checkout_id": checkout_id,
            "customer_email": customer_email,
            "product_total": str(totals.product_total),
            "shipping_amount": str(totals.shipping_amount),
            "tax_amount": str(totals.tax_amount),
            "shipping_rate_id": totals.shipping.rate_id,
            "shipping_label": totals.shipping.label,
            "tax_deferred": "true" if totals.tax_deferred else "false",
        }
        items = json.dumps([line.to_metadata() for line in priced], separators=(",", ":"))
        metadata.update(split_metadata_value("items", items))
        if destination is not None:
            address = json.dumps(destination.as_dict(), separators=(",", ":"))
            metadata.update(split_metadata_value("address_to", address))
        return metadata
