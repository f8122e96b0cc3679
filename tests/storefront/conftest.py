import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture
from storefront.catalog.management import AddProduct
from storefront.config import Settings, reset_settings, set_settings
from storefront.payments.gateway import get_gateway, reset_gateway, set_gateway
from storefront.payments.gateway.fake_adapter import FakeGateway
from storefront.shipping import get_rate_provider, reset_rate_provider, set_rate_provider
from storefront.shipping.fake_adapter import FakeRateProvider


@pytest.fixture(scope="session")
def storefront_bed():
    from storefront.domain import storefront
    from storefront.utils.db import drop_db, setup_db

    bed = DomainFixture(storefront)
    bed.setup()
    setup_db(storefront)
    yield bed
    drop_db(storefront)
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(storefront_bed):
    with storefront_bed.domain_context():
        yield

        # Clear all databases and drain the event store
        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


@pytest.fixture(autouse=True)
def _adapters():
    """Default settings and in-memory fakes for every test, independent of the environment."""
    set_settings(Settings())
    set_gateway(FakeGateway())
    set_rate_provider(FakeRateProvider())
    yield
    reset_gateway()
    reset_rate_provider()
    reset_settings()


@pytest.fixture()
def gateway() -> FakeGateway:
    return get_gateway()


@pytest.fixture()
def rate_provider() -> FakeRateProvider:
    return get_rate_provider()


@pytest.fixture()
def destination():
    from storefront.shipping.port import Address

    return Address(
        name="Ada Lovelace",
        street1="12 Analytical Way",
        city="Austin",
        state="TX",
        zip="78701",
        country="US",
    )


@pytest.fixture()
def make_product():
    """Seed a product through the AddProduct command. Returns its id."""

    def _make(**overrides):
        defaults = {
            "name": "Field Notebook",
            "price": 2000,
            "weight_oz": 8.0,
            "stock": 10,
        }
        defaults.update(overrides)
        return current_domain.process(AddProduct(**defaults), asynchronous=False)

    return _make
