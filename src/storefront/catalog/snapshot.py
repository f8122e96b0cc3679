"""Catalog snapshot accessor: read-only product lookups for checkout."""

from dataclasses import dataclass
from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.catalog.product import Product


@dataclass(frozen=True)
class ProductSnapshot:
    """Point-in-time view of a product's price, weight and claimable stock."""

    product_id: str
    name: str
    unit_price: int  # Minor currency units
    unit_weight: float  # Ounces
    available_stock: int
    published: bool

    @classmethod
    def of(cls, product: Product, as_of: datetime | None = None, holder: str | None = None) -> "ProductSnapshot":
        return cls(
            product_id=str(product.id),
            name=product.name,
            unit_price=product.price,
            unit_weight=product.weight_oz or 0.0,
            available_stock=product.available_stock(as_of, holder=holder),
            published=bool(product.published),
        )


class CatalogSnapshotAccessor:
    """Looks up products by identifier without mutating them."""

    def get(self, product_id: str, as_of: datetime | None = None, holder: str | None = None) -> ProductSnapshot | None:
        """Return the snapshot, or None when the product does not exist.

        ``holder``'s own holds are counted as available stock.
        """
        try:
            product = current_domain.repository_for(Product).get(product_id)
        except ObjectNotFoundError:
            return None
        return ProductSnapshot.of(product, as_of or datetime.now(UTC), holder)

    def get_many(self, product_ids, as_of: datetime | None = None) -> dict[str, ProductSnapshot | None]:
        as_of = as_of or datetime.now(UTC)
        return {product_id: self.get(product_id, as_of) for product_id in product_ids}
