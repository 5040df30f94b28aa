"""
Tests for trigger predicates.
"""
from decimal import Decimal

import pytest

from kizuna_bot.core.triggers import (
    AlertCondition,
    crosses_threshold,
    find_purchase_trigger,
    same_unit,
)


class TestFindPurchaseTrigger:
    """Tests for find_purchase_trigger()."""

    def test_price_equal_to_max_triggers(self, listing_factory):
        trigger = find_purchase_trigger([listing_factory("0.3")], Decimal("0.3"))

        assert trigger is not None
        assert trigger.price == Decimal("0.3")

    def test_first_qualifying_listing_in_order_wins(self, listing_factory):
        listings = [
            listing_factory("0.5", listing_id="a"),
            listing_factory("0.25", listing_id="b"),
            listing_factory("0.1", listing_id="c"),
        ]

        trigger = find_purchase_trigger(listings, Decimal("0.3"))

        assert trigger.listing_id == "b"

    def test_nothing_under_max(self, listing_factory):
        assert find_purchase_trigger([listing_factory("0.31")], Decimal("0.3")) is None
        assert find_purchase_trigger([], Decimal("0.3")) is None

    def test_other_currency_is_skipped(self, listing_factory):
        listings = [
            listing_factory("0.1", listing_id="usdc", token="USDC"),
            listing_factory("0.2", listing_id="weth", token="WETH"),
        ]

        trigger = find_purchase_trigger(listings, Decimal("0.3"), payment_token="eth")

        assert trigger.listing_id == "weth"

    def test_carries_listing_details(self, listing_factory):
        listing = listing_factory("0.2", listing_id="x", token_id="9", seller="0xs")

        trigger = find_purchase_trigger([listing], Decimal("1"))

        assert (trigger.listing_id, trigger.token_id, trigger.seller) == ("x", "9", "0xs")

    def test_non_finite_price_is_skipped(self, listing_factory):
        listings = [
            listing_factory("NaN", listing_id="nan"),
            listing_factory("0.1", listing_id="ok"),
        ]

        trigger = find_purchase_trigger(listings, Decimal("0.3"))

        assert trigger.listing_id == "ok"

    def test_same_unit(self):
        assert same_unit("WETH", "eth")
        assert same_unit("ETH", "eth")
        assert not same_unit("USDC", "eth")


class TestCrossesThreshold:
    """Both conditions are inclusive at the target."""

    @pytest.mark.parametrize(
        "price,condition,expected",
        [
            ("2.1", AlertCondition.ABOVE, True),
            ("2.0", AlertCondition.ABOVE, True),
            ("1.9", AlertCondition.ABOVE, False),
            ("1.9", AlertCondition.BELOW, True),
            ("2.0", AlertCondition.BELOW, True),
            ("2.1", AlertCondition.BELOW, False),
        ],
    )
    def test_conditions(self, price, condition, expected):
        assert crosses_threshold(Decimal(price), Decimal("2.0"), condition) is expected
