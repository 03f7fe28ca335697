"""
Unit tests for bundle pricing.

Covers the free/paid decision, per-strategy prices, minor-unit conversion
and price table refetching.
"""

import itertools
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from core.exceptions import APIError
from models.bundle import SelectionStrategy
from models.entitlement import PriceTable
from modules.pricing import PriceQuoter, calculate_amount, is_free_bundle, to_minor_units


# Fixtures

@pytest.fixture
def price_table():
    return PriceTable(
        free_tier_size=50,
        allowed_sizes=(50, 100, 200),
        first_n_unit_price=Decimal("1.00"),
        specific_unit_price=Decimal("2.50"),
    )


# Tests for calculate_amount

class TestCalculateAmount:

    def test_free_first_n_at_free_tier(self, price_table):
        amount = calculate_amount(SelectionStrategy.FIRST_N, 50, True, False, price_table)
        assert amount == Decimal("0")

    def test_subscription_allowance_alone_makes_it_free(self, price_table):
        amount = calculate_amount(SelectionStrategy.FIRST_N, 50, False, True, price_table)
        assert amount == Decimal("0")

    def test_specific_is_never_free(self, price_table):
        amount = calculate_amount(SelectionStrategy.SPECIFIC, 50, True, True, price_table)
        assert amount == Decimal("125.00")

    def test_other_size_is_never_free(self, price_table):
        amount = calculate_amount(SelectionStrategy.FIRST_N, 100, True, True, price_table)
        assert amount == Decimal("100.00")

    def test_paid_specific_bundle(self, price_table):
        amount = calculate_amount(SelectionStrategy.SPECIFIC, 100, False, False, price_table)
        assert amount == 100 * price_table.specific_unit_price

    def test_specific_costs_more_than_first_n(self, price_table):
        first_n = calculate_amount(SelectionStrategy.FIRST_N, 200, False, False, price_table)
        specific = calculate_amount(SelectionStrategy.SPECIFIC, 200, False, False, price_table)
        assert specific > first_n

    def test_rejects_non_positive_count(self, price_table):
        with pytest.raises(ValueError):
            calculate_amount(SelectionStrategy.FIRST_N, 0, False, False, price_table)

    def test_free_iff_entitled_first_n_at_free_tier(self, price_table):
        """amount == 0 exactly for the entitled FIRST_N free-tier combination."""
        combos = itertools.product(
            SelectionStrategy,
            (1, 49, 50, 51, 100, 200),
            (False, True),
            (False, True),
        )
        for strategy, count, eligible, allowance in combos:
            amount = calculate_amount(strategy, count, eligible, allowance, price_table)
            expected_free = (
                (eligible or allowance)
                and strategy is SelectionStrategy.FIRST_N
                and count == 50
            )
            assert (amount == 0) == expected_free, (strategy, count, eligible, allowance)
            assert is_free_bundle(strategy, count, eligible, allowance, price_table) == expected_free
            if not expected_free:
                assert amount > 0


class TestMinorUnits:

    def test_rupees_to_paise(self):
        assert to_minor_units(Decimal("250.00")) == 25000

    def test_rounds_half_up(self):
        assert to_minor_units(Decimal("1.005")) == 101


# Tests for PriceTable parsing

class TestPriceTable:

    def test_free_tier_from_first_paid_option(self):
        table = PriceTable.from_api({
            "free_pdf_designs_count": 40,
            "paid_pdf_designs_options": [60, 120],
            "pricing": {"first_n_per_design": "1", "selected_per_design": "2"},
        })
        assert table.free_tier_size == 60
        assert table.allowed_sizes == (60, 120)

    def test_free_tier_falls_back_to_count_then_default(self):
        pricing = {"pricing": {"first_n_per_design": "1", "selected_per_design": "2"}}
        assert PriceTable.from_api({**pricing, "free_pdf_designs_count": 40}).free_tier_size == 40
        assert PriceTable.from_api(pricing).free_tier_size == 50

    def test_specific_must_cost_more(self):
        with pytest.raises(ValueError):
            PriceTable(50, (50,), Decimal("2"), Decimal("2"))

    def test_missing_prices_rejected(self):
        with pytest.raises(APIError) as exc:
            PriceTable.from_api({"paid_pdf_designs_options": [50]})
        assert exc.value.message == "Invalid response from server"

    def test_equal_prices_from_server_rejected(self):
        with pytest.raises(APIError):
            PriceTable.from_api({
                "paid_pdf_designs_options": [50, 100],
                "pricing": {"first_n_per_design": "2", "selected_per_design": "2"},
            })

    def test_allowed_sizes(self, price_table):
        assert price_table.is_allowed_size(50)
        assert price_table.is_allowed_size(200)
        assert not price_table.is_allowed_size(75)


# Tests for PriceQuoter

class TestPriceQuoter:

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.get_pdf_config.return_value = {
            "paid_pdf_designs_options": [50, 100],
            "pricing": {"first_n_per_design": "1.00", "selected_per_design": "2.00"},
        }
        return client

    def test_quote_contents(self, client):
        quote = PriceQuoter(client).quote(SelectionStrategy.SPECIFIC, 100, False, False)
        assert quote.amount == Decimal("200.00")
        assert quote.amount_minor == 20000
        assert quote.unit_price == Decimal("2.00")
        assert quote.is_free is False

    def test_refetches_when_inputs_change(self, client):
        quoter = PriceQuoter(client)
        quoter.quote(SelectionStrategy.FIRST_N, 50, True, False)
        quoter.quote(SelectionStrategy.FIRST_N, 50, True, False)
        assert client.get_pdf_config.call_count == 1

        quoter.quote(SelectionStrategy.FIRST_N, 100, True, False)
        assert client.get_pdf_config.call_count == 2

        quoter.quote(SelectionStrategy.SPECIFIC, 100, True, False)
        assert client.get_pdf_config.call_count == 3

    def test_uses_new_prices_after_refetch(self, client):
        quoter = PriceQuoter(client)
        assert quoter.quote(SelectionStrategy.FIRST_N, 100, False, False).amount == Decimal("100.00")

        client.get_pdf_config.return_value = {
            "paid_pdf_designs_options": [50, 100],
            "pricing": {"first_n_per_design": "1.50", "selected_per_design": "3.00"},
        }
        quote = quoter.quote(SelectionStrategy.SPECIFIC, 100, False, False)
        assert quote.amount == Decimal("300.00")
