"""Product management: commands and handler.

Catalog administration happens elsewhere; these commands are the narrow
surface the pipeline needs for seeding products and adjusting stock or
price.
"""

from protean import handle
from protean.fields import Boolean, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.catalog.product import Product
from storefront.domain import storefront


@storefront.command(part_of="Product")
class AddProduct:
    product_id = Identifier()  # Optional; generated when omitted
    name = String(required=True, max_length=255)
    price = Integer(required=True, min_value=0)
    weight_oz = Float(default=0.0)
    stock = Integer(default=0, min_value=0)
    published = Boolean(default=True)


@storefront.command(part_of="Product")
class RestockProduct:
    product_id = Identifier(required=True)
    quantity = Integer(required=True)


@storefront.command(part_of="Product")
class RepriceProduct:
    product_id = Identifier(required=True)
    price = Integer(required=True)


@storefront.command(part_of="Product")
class UnpublishProduct:
    product_id = Identifier(required=True)


@storefront.command_handler(part_of=Product)
class ProductManagementHandler:
    @handle(AddProduct)
    def add_product(self, command):
        product = Product.add(
            name=command.name,
            price=command.price,
            weight_oz=command.weight_oz,
            stock=command.stock,
            published=command.published,
            product_id=command.product_id,
        )
        current_domain.repository_for(Product).add(product)
        return str(product.id)

    @handle(RestockProduct)
    def restock_product(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        product.restock(command.quantity)
        repo.add(product)

    @handle(RepriceProduct)
    def reprice_product(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        product.reprice(command.price)
        repo.add(product)

    @handle(UnpublishProduct)
    def unpublish_product(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        product.unpublish()
        repo.add(product)
