"""Customer aggregate: the buyer an order is attributed to, keyed by email."""

from datetime import UTC, datetime

from protean.fields import DateTime, String
from protean.utils.globals import current_domain

from storefront.domain import storefront


def normalize_email(email: str) -> str:
    return email.strip().lower()


@storefront.aggregate
class Customer:
    email = String(required=True, max_length=254, unique=True)
    created_at = DateTime(default=lambda: datetime.now(UTC))

    @classmethod
    def create(cls, email):
        from storefront.ordering.events import CustomerCreated

        now = datetime.now(UTC)
        customer = cls(email=normalize_email(email), created_at=now)
        customer.raise_(CustomerCreated(customer_id=str(customer.id), email=customer.email, created_at=now))
        return customer


@storefront.repository(part_of=Customer)
class CustomerRepository:
    def find_by_email(self, email: str) -> Customer | None:
        return self._dao.query.filter(email=normalize_email(email)).all().first


def resolve_customer(email: str) -> Customer:
    """Return the customer for ``email``, creating one on first purchase."""
    repo = current_domain.repository_for(Customer)
    customer = repo.find_by_email(email)
    if customer is None:
        customer = Customer.create(email)
        repo.add(customer)
    return customer
