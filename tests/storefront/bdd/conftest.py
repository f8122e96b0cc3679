"""Shared BDD fixtures and step definitions for the storefront pipeline."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then, when
from storefront.catalog.product import Product
from storefront.checkout.cart import CartAdjusted, CartLine, CheckoutSession
from storefront.checkout.orchestrator import CheckoutOrchestrator
from storefront.errors import CheckoutError, StockUnavailable
from storefront.inventory.ledger import StockLedger
from storefront.inventory.sweeper import ReservationSweeper
from storefront.ordering.order import Order


@pytest.fixture()
def products():
    """Product ids by name."""
    return {}


@pytest.fixture()
def context():
    return {}


def _product(products, name):
    return current_domain.repository_for(Product).get(products[name])


def _checkout(products, destination, name, quantity, email="shopper@example.com"):
    return CheckoutOrchestrator().start_checkout(
        [CartLine(product_id=products[name], quantity=quantity)], email, destination
    )


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a product "{name}" priced at {price:d} with {stock:d} in stock'))
def _product_in_stock(products, make_product, name, price, stock):
    products[name] = make_product(name=name, price=price, stock=stock)


@given("the payment processor is down")
def _processor_down(gateway):
    gateway.configure(should_succeed=False)


@given(parsers.cfparse('the shopper checked out {quantity:d} of "{name}"'), target_fixture="session")
def _checked_out(products, destination, quantity, name):
    session = _checkout(products, destination, name, quantity)
    assert isinstance(session, CheckoutSession)
    return session


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('the shopper checks out {quantity:d} of "{name}"'))
def _checks_out(context, products, destination, quantity, name):
    try:
        context["result"] = _checkout(products, destination, name, quantity)
    except CheckoutError as exc:
        context["error"] = exc


@when(parsers.cfparse('the sweeper runs {minutes:d} minutes later'))
def _sweeper_runs(context, minutes):
    as_of = datetime.now(UTC) + timedelta(minutes=minutes, seconds=1)
    context["report"] = ReservationSweeper().sweep(as_of=as_of)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('{quantity:d} units of "{name}" are held'))
def _units_held(products, quantity, name):
    assert _product(products, name).held == quantity


@then(parsers.cfparse('no stock is held for "{name}"'))
def _nothing_held(products, name):
    assert _product(products, name).held == 0


@then(parsers.cfparse('"{name}" has {stock:d} in stock'))
def _in_stock(products, name, stock):
    assert _product(products, name).stock == stock


@then(parsers.cfparse('the checkout fails with "{code}"'))
def _fails_with(context, code):
    assert context["error"].code == code


@then(parsers.cfparse('another shopper can hold {quantity:d} of "{name}"'))
def _another_shopper_holds(products, quantity, name):
    StockLedger().hold(products[name], quantity, "other@example.com", "chk-other")
    assert _product(products, name).held == quantity


@then("the other shopper is told the stock is unavailable")
def _other_told_unavailable(context):
    assert any(isinstance(outcome, StockUnavailable) for outcome in context["outcomes"])


@then(parsers.cfparse('the cart is adjusted to {quantity:d} of "{name}"'))
def _cart_adjusted(context, products, quantity, name):
    result = context["result"]
    assert isinstance(result, CartAdjusted)
    assert result.lines == (CartLine(product_id=products[name], quantity=quantity),)


@then("exactly one order exists for the payment")
def _one_order(session):
    orders = current_domain.repository_for(Order)._dao.query.filter(payment_intent_id=session.payment_intent_id)
    assert len(orders.all().items) == 1


@then("no order exists for the payment")
def _no_order(session):
    assert current_domain.repository_for(Order).find_by_payment_intent(session.payment_intent_id) is None
