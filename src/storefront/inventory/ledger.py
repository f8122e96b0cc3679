"""Stock reservation ledger: commands, handler and the ledger facade.

Each command touches exactly one Product and runs in its own unit of work,
so holds for different products never contend. For the same product, the
aggregate version acts as the compare-and-set: a writer that read a stale
version fails with ExpectedVersionError and the whole read-check-write is
retried. An insufficient-stock answer is authoritative and is not retried.
"""

from datetime import timedelta

import structlog
from protean import handle
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront.catalog.product import Product, ReleaseReason
from storefront.config import get_settings
from storefront.domain import storefront
from storefront.errors import ProductNotFound

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Product")
class HoldStock:
    """Hold stock for a checkout attempt."""

    product_id = Identifier(required=True)
    checkout_id = Identifier(required=True)
    quantity = Integer(required=True)
    holder = String(max_length=255)
    ttl_minutes = Integer()  # Optional; defaults to RESERVATION_TTL_MINUTES


@storefront.command(part_of="Product")
class ReleaseHold:
    """Release a single hold by its reservation identifier."""

    product_id = Identifier(required=True)
    reservation_id = Identifier(required=True)


@storefront.command(part_of="Product")
class ReleaseCheckoutHolds:
    """Release every hold a checkout placed on one product."""

    product_id = Identifier(required=True)
    checkout_id = Identifier(required=True)
    reason = String(default=ReleaseReason.RELEASED)


@storefront.command_handler(part_of=Product)
class LedgerHandler:
    @handle(HoldStock)
    def hold_stock(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)

        ttl_minutes = command.ttl_minutes or get_settings().reservation_ttl_minutes
        reservation = product.hold(
            checkout_id=command.checkout_id,
            quantity=command.quantity,
            holder=command.holder,
            ttl=timedelta(minutes=ttl_minutes),
        )
        repo.add(product)
        return str(reservation.id)

    @handle(ReleaseHold)
    def release_hold(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        freed = product.release_reservation(command.reservation_id)
        if freed:
            repo.add(product)
        return freed

    @handle(ReleaseCheckoutHolds)
    def release_checkout_holds(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        freed = product.release_checkout(command.checkout_id, reason=command.reason)
        if freed:
            repo.add(product)
        return freed


_retry_on_conflict = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.02, min=0.01, max=0.2),
    retry=retry_if_exception_type(ExpectedVersionError),
    reraise=True,
)


class StockLedger:
    """Entry point for holding and releasing stock."""

    @_retry_on_conflict
    def hold(self, product_id, quantity, holder, checkout_id, ttl_minutes=None):
        """Hold ``quantity`` units. Returns the reservation id or raises StockUnavailable."""
        try:
            reservation_id = current_domain.process(
                HoldStock(
                    product_id=product_id,
                    checkout_id=checkout_id,
                    quantity=quantity,
                    holder=holder,
                    ttl_minutes=ttl_minutes,
                ),
                asynchronous=False,
            )
        except ObjectNotFoundError as exc:
            raise ProductNotFound(product_id) from exc

        logger.info(
            "Stock held",
            product_id=product_id,
            checkout_id=checkout_id,
            reservation_id=reservation_id,
            quantity=quantity,
        )
        return reservation_id

    @_retry_on_conflict
    def release(self, product_id, reservation_id):
        """Release one hold. Returns the quantity freed (0 if it was already gone)."""
        try:
            return current_domain.process(
                ReleaseHold(product_id=product_id, reservation_id=reservation_id),
                asynchronous=False,
            )
        except ObjectNotFoundError:
            return 0

    @_retry_on_conflict
    def _release_checkout_on(self, product_id, checkout_id, reason):
        try:
            return current_domain.process(
                ReleaseCheckoutHolds(product_id=product_id, checkout_id=checkout_id, reason=reason),
                asynchronous=False,
            )
        except ObjectNotFoundError:
            return 0

    def release_checkout(self, checkout_id, product_ids, reason=ReleaseReason.RELEASED):
        """Release every hold ``checkout_id`` placed on ``product_ids``.

        Returns ``{product_id: quantity_freed}`` for the products that had holds.
        """
        freed = {}
        for product_id in dict.fromkeys(product_ids):
            quantity = self._release_checkout_on(product_id, checkout_id, reason)
            if quantity:
                freed[product_id] = quantity

        if freed:
            logger.info("Checkout holds released", checkout_id=checkout_id, reason=reason, freed=freed)
        return freed
