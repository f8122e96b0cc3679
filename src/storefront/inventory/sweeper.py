"""Reservation sweeper: frees stock held by abandoned checkouts.

Runs on a fixed interval (``manage.py sweep --every``) and on demand through
the maintenance endpoint. The report it returns is for observability only:
the deletion itself is what makes the quantity claimable again, and ``hold``
prunes expired reservations on its own before checking availability.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.fields import DateTime, Identifier, Integer
from protean.utils.globals import current_domain

from storefront.catalog.product import Product, as_utc
from storefront.config import get_settings
from storefront.domain import storefront

logger = structlog.get_logger(__name__)

_PAGE_SIZE = 100


@storefront.command(part_of="Product")
class ExpireHolds:
    """Drop one product's holds that are older than the TTL."""

    product_id = Identifier(required=True)
    ttl_minutes = Integer(required=True)
    as_of = DateTime()  # Optional: defaults to now


@storefront.command_handler(part_of=Product)
class ExpiryHandler:
    @handle(ExpireHolds)
    def expire_holds(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)

        as_of = as_utc(command.as_of) if command.as_of else datetime.now(UTC)
        before = {str(r.id) for r in product.reservations or []}
        freed = product.prune_expired(as_of=as_of, ttl=timedelta(minutes=command.ttl_minutes))
        if freed:
            repo.add(product)

        released = len(before) - len(product.reservations or [])
        return {"released": released, "freed": freed}


@dataclass
class SweepReport:
    cleaned_reservations: int = 0
    freed_inventory: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "cleaned_reservations": self.cleaned_reservations,
            "freed_inventory": dict(self.freed_inventory),
        }


def products_with_holds() -> list[str]:
    """Identifiers of every product that currently carries holds."""
    dao = current_domain.repository_for(Product)._dao
    product_ids, offset = [], 0
    while True:
        page = dao.query.filter(held__gt=0).order_by("id").offset(offset).limit(_PAGE_SIZE).all()
        product_ids.extend(str(product.id) for product in page.items)
        if len(page.items) < _PAGE_SIZE:
            return product_ids
        offset += _PAGE_SIZE


class ReservationSweeper:
    def sweep(self, ttl_minutes=None, as_of=None) -> SweepReport:
        """Delete every reservation older than the TTL and report what was freed.

        Products are swept one at a time; a product that is concurrently
        modified is skipped and picked up by the next run.
        """
        ttl_minutes = ttl_minutes if ttl_minutes is not None else get_settings().reservation_ttl_minutes
        as_of = as_of or datetime.now(UTC)

        logger.info("Sweeping expired reservations", ttl_minutes=ttl_minutes, as_of=as_of.isoformat())

        report = SweepReport()
        for product_id in products_with_holds():
            try:
                result = current_domain.process(
                    ExpireHolds(product_id=product_id, ttl_minutes=ttl_minutes, as_of=as_of),
                    asynchronous=False,
                )
            except (ExpectedVersionError, ObjectNotFoundError) as exc:
                logger.warning("Skipped product during sweep", product_id=product_id, error=str(exc))
                continue

            if result["released"]:
                report.cleaned_reservations += result["released"]
                report.freed_inventory[product_id] = result["freed"]

        logger.info(
            "Reservation sweep complete",
            cleaned_reservations=report.cleaned_reservations,
            freed_inventory=report.freed_inventory,
        )
        return report

    def status(self, as_of=None) -> dict:
        """Outstanding holds grouped by product."""
        as_of = as_of or datetime.now(UTC)
        repo = current_domain.repository_for(Product)

        grouped = {}
        for product_id in products_with_holds():
            product = repo.get(product_id)
            grouped[product_id] = {
                "product_name": product.name,
                "stock": product.stock,
                "total_reserved": product.held,
                "active_reserved": product.active_held(as_of),
                "reservations": [
                    {
                        "reservation_id": str(r.id),
                        "checkout_id": str(r.checkout_id),
                        "holder": r.holder,
                        "quantity": r.quantity,
                        "created_at": as_utc(r.created_at).isoformat(),
                        "expires_at": as_utc(r.expires_at).isoformat(),
                        "expired": r.is_expired(as_of),
                    }
                    for r in product.reservations or []
                ],
            }
        return grouped
