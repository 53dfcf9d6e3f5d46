import pytest

from storefront import diff
from storefront.diff import diff_cart_prices
from storefront.models import CartEntry


@pytest.fixture
def entries():
    return [
        CartEntry(product_id=1, quantity=1, captured_price=10000),
        CartEntry(product_id=2, quantity=1, captured_price="COP 20.000"),
        CartEntry(product_id=3, quantity=1, captured_price=0),
    ]


def test_reports_changed_prices_only(entries):
    changes = diff_cart_prices(entries, {1: 9000, 2: "20.000", 3: "5.000"})
    assert [(e.product_id, before, after) for e, before, after in changes] == [
        (1, 10000, 9000),
        (3, 0, 5000),
    ]


def test_missing_or_unparseable_current_price_is_ignored(entries):
    assert diff_cart_prices(entries, {1: "consultar"}) == []


def test_threshold_filters_small_moves(entries, monkeypatch):
    monkeypatch.setattr(diff, "PRICE_NOTIFY_THRESHOLD", 15.0)
    changes = diff_cart_prices(entries, {1: 9000, 2: 30000})
    assert [e.product_id for e, _, _ in changes] == [2]
