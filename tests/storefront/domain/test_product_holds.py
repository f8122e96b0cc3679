"""Tests for holds, expiry and sales on the Product aggregate."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError
from storefront.catalog.events import HoldReleased, StockHeld, StockShortfallDetected, StockSold
from storefront.catalog.product import Product, ReleaseReason
from storefront.errors import StockUnavailable

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _product(stock=5):
    product = Product.add(name="Trail Mug", price=1800, weight_oz=12.0, stock=stock)
    product._events.clear()
    return product


class TestHold:
    def test_hold_reduces_available_stock(self):
        product = _product(stock=5)
        product.hold("chk-1", 2, holder="a@example.com", as_of=T0)
        assert product.available_stock(T0) == 3
        assert product.stock == 5
        assert product.held == 2

    def test_hold_raises_stock_held_event(self):
        product = _product()
        reservation = product.hold("chk-1", 1, as_of=T0)
        event = product._events[-1]
        assert isinstance(event, StockHeld)
        assert event.reservation_id == str(reservation.id)
        assert event.quantity == 1

    def test_reservation_expires_after_ttl(self):
        product = _product()
        reservation = product.hold("chk-1", 1, as_of=T0)
        assert reservation.expires_at == T0 + timedelta(minutes=15)

    def test_hold_beyond_available_is_rejected(self):
        product = _product(stock=3)
        product.hold("chk-1", 2, as_of=T0)
        with pytest.raises(StockUnavailable) as exc:
            product.hold("chk-2", 2, as_of=T0)
        assert exc.value.requested == 2
        assert exc.value.available == 1
        assert product.held == 2

    def test_last_unit_goes_to_one_checkout_only(self):
        product = _product(stock=1)
        product.hold("chk-1", 1, as_of=T0)
        with pytest.raises(StockUnavailable):
            product.hold("chk-2", 1, as_of=T0)

    def test_zero_quantity_rejected(self):
        product = _product()
        with pytest.raises(ValidationError):
            product.hold("chk-1", 0, as_of=T0)

    def test_sequence_of_holds_never_oversells(self):
        product = _product(stock=7)
        granted = 0
        for index, quantity in enumerate([3, 2, 4, 1, 1, 5, 1]):
            try:
                product.hold(f"chk-{index}", quantity, as_of=T0)
                granted += quantity
            except StockUnavailable:
                pass
            assert product.active_held(T0) <= product.stock
        assert granted == 7
        assert product.available_stock(T0) == 0

    def test_expired_holds_do_not_count_against_new_holds(self):
        product = _product(stock=2)
        product.hold("chk-1", 2, as_of=T0)
        later = T0 + timedelta(minutes=15)
        product.hold("chk-2", 2, as_of=later)
        assert [str(r.checkout_id) for r in product.reservations] == ["chk-2"]
        assert product.held == 2


class TestExpiry:
    def test_hold_is_active_until_ttl_elapses(self):
        product = _product()
        reservation = product.hold("chk-1", 1, as_of=T0)
        assert not reservation.is_expired(T0 + timedelta(minutes=14, seconds=59))
        assert reservation.is_expired(T0 + timedelta(minutes=15))

    def test_prune_expired_frees_quantity(self):
        product = _product(stock=5)
        product.hold("chk-1", 2, as_of=T0)
        product.hold("chk-2", 1, as_of=T0 + timedelta(minutes=10))
        product._events.clear()

        freed = product.prune_expired(T0 + timedelta(minutes=15))

        assert freed == 2
        assert product.held == 1
        assert isinstance(product._events[0], HoldReleased)
        assert product._events[0].reason == ReleaseReason.EXPIRED

    def test_prune_with_explicit_ttl(self):
        product = _product()
        product.hold("chk-1", 1, as_of=T0)
        assert product.prune_expired(T0 + timedelta(minutes=5), ttl=timedelta(minutes=5)) == 1

    def test_available_stock_never_negative(self):
        product = _product(stock=2)
        product.hold("chk-1", 2, as_of=T0)
        product.stock = 1
        assert product.available_stock(T0) == 0


class TestRelease:
    def test_release_checkout_is_idempotent(self):
        product = _product()
        product.hold("chk-1", 2, as_of=T0)
        assert product.release_checkout("chk-1") == 2
        assert product.release_checkout("chk-1") == 0
        assert product.held == 0

    def test_release_checkout_leaves_other_checkouts(self):
        product = _product()
        product.hold("chk-1", 2, as_of=T0)
        product.hold("chk-2", 1, as_of=T0)
        product.release_checkout("chk-1")
        assert [str(r.checkout_id) for r in product.reservations] == ["chk-2"]
        assert product.held == 1

    def test_release_unknown_reservation_is_noop(self):
        product = _product()
        assert product.release_reservation("missing") == 0


class TestCommitSale:
    def test_sale_decrements_stock_and_drops_holds(self):
        product = _product(stock=5)
        product.hold("chk-1", 2, as_of=T0)
        product._events.clear()

        shortfall = product.commit_sale("chk-1", 2)

        assert shortfall == 0
        assert product.stock == 3
        assert product.held == 0
        assert any(isinstance(e, StockSold) for e in product._events)

    def test_sale_without_hold_still_decrements(self):
        product = _product(stock=5)
        product.commit_sale("chk-gone", 1)
        assert product.stock == 4

    def test_stock_floors_at_zero(self):
        product = _product(stock=1)
        product._events.clear()

        shortfall = product.commit_sale("chk-1", 3)

        assert shortfall == 2
        assert product.stock == 0
        assert any(isinstance(e, StockShortfallDetected) for e in product._events)


class TestCatalogEdits:
    def test_restock(self):
        product = _product(stock=1)
        product.restock(4)
        assert product.stock == 5

    def test_restock_requires_positive_quantity(self):
        with pytest.raises(ValidationError):
            _product().restock(0)

    def test_reprice(self):
        product = _product()
        product.reprice(2500)
        assert product.price == 2500

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            _product().reprice(-1)

    def test_unpublish(self):
        product = _product()
        product.unpublish()
        assert product.published is False


class TestSupersede:
    def test_same_holder_new_checkout_replaces_earlier_hold(self):
        product = _product(stock=1)
        product.hold("chk-1", 1, holder="ada@example.com", as_of=T0)
        product._events.clear()

        product.hold("chk-2", 1, holder="ada@example.com", as_of=T0 + timedelta(minutes=1))

        assert [str(r.checkout_id) for r in product.reservations] == ["chk-2"]
        assert product.held == 1
        released = [e for e in product._events if isinstance(e, HoldReleased)]
        assert len(released) == 1
        assert str(released[0].checkout_id) == "chk-1"
        assert released[0].reason == ReleaseReason.SUPERSEDED

    def test_holds_of_the_same_checkout_are_kept(self):
        product = _product(stock=5)
        product.hold("chk-1", 1, holder="ada@example.com", as_of=T0)
        product.hold("chk-1", 2, holder="ada@example.com", as_of=T0)
        assert product.held == 3

    def test_other_holders_are_untouched(self):
        product = _product(stock=2)
        product.hold("chk-1", 1, holder="ada@example.com", as_of=T0)
        product.hold("chk-2", 1, holder="bob@example.com", as_of=T0)
        with pytest.raises(StockUnavailable):
            product.hold("chk-3", 1, holder="cy@example.com", as_of=T0)
        assert product.held == 2

    def test_anonymous_holds_never_supersede(self):
        product = _product(stock=2)
        product.hold("chk-1", 1, as_of=T0)
        product.hold("chk-2", 1, as_of=T0)
        assert product.held == 2

    def test_available_stock_for_holder(self):
        product = _product(stock=3)
        product.hold("chk-1", 2, holder="ada@example.com", as_of=T0)
        assert product.available_stock(T0) == 1
        assert product.available_stock(T0, holder="ada@example.com") == 3

    def test_failed_hold_keeps_earlier_hold(self):
        product = _product(stock=1)
        product.hold("chk-1", 1, holder="ada@example.com", as_of=T0)
        product._events.clear()

        with pytest.raises(StockUnavailable) as exc:
            product.hold("chk-2", 2, holder="ada@example.com", as_of=T0)

        assert exc.value.available == 1
        assert [str(r.checkout_id) for r in product.reservations] == ["chk-1"]
        assert product._events == []

    def test_same_checkout_cannot_exceed_stock(self):
        product = _product(stock=3)
        product.hold("chk-1", 2, holder="ada@example.com", as_of=T0)
        with pytest.raises(StockUnavailable):
            product.hold("chk-1", 2, holder="ada@example.com", as_of=T0)
        assert product.held == 2
