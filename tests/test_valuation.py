"""Tests for collateral valuation and LTV computation."""

from datetime import timedelta
from decimal import Decimal

import pytest

from lendmatch.matching_engine.valuation import (
    ValuationCalculator,
    ValuationUnavailableError,
    compute_ltv,
    to_decimal_units,
    to_smallest_units,
)
from tests.fakes import ETH, ETH_WEI, NOW, USDC, FakeLoanRepository


class TestUnitConversion:

    def test_to_decimal_units(self):
        assert to_decimal_units(Decimal("2500000000000000000"), 18) == Decimal("2.5")
        assert to_decimal_units("3000000000", 6) == Decimal("3000")

    def test_large_amounts_keep_precision(self):
        amount = Decimal("123456789012345678901234567890123456789012345678901234567890")
        assert to_decimal_units(amount, 18) == Decimal(
            "123456789012345678901234567890123456789012.345678901234567890"
        )

    def test_to_smallest_units_truncates(self):
        assert to_smallest_units(Decimal("1.239"), 2) == Decimal("123")


class TestComputeLtv:

    def test_ratio(self):
        assert compute_ltv(Decimal("3000"), Decimal("5000")) == Decimal("0.6")

    def test_quantised_to_18_places(self):
        ltv = compute_ltv(Decimal("1"), Decimal("3"))
        assert ltv == Decimal("0.333333333333333333")

    @pytest.mark.parametrize("value", [Decimal("0"), Decimal("-1")])
    def test_non_positive_value_is_zero(self, value):
        assert compute_ltv(Decimal("3000"), value) == Decimal("0")


class TestValuationCalculator:

    @pytest.mark.asyncio
    async def test_worked_example(self, fake_repo, make_application):
        """2.5 ETH at a 2000 USDC bid backs 3000 USDC at LTV 0.6."""
        app = make_application()
        valuation = await ValuationCalculator(fake_repo).evaluate(app, NOW)

        assert valuation.collateral_value == Decimal("5000")
        assert valuation.valuation_amount == Decimal("5000") * ETH_WEI
        assert valuation.ltv_ratio == Decimal("0.6")
        assert valuation.exchange_rate.bid_price == 2000 * ETH_WEI

    @pytest.mark.asyncio
    async def test_latest_snapshot_at_or_before_as_of(self, fake_repo, make_application):
        fake_repo.add_rate(ETH, USDC, 2500 * ETH_WEI, source_date=NOW - timedelta(minutes=1))
        fake_repo.add_rate(ETH, USDC, 9999 * ETH_WEI, source_date=NOW + timedelta(hours=1))

        valuation = await ValuationCalculator(fake_repo).evaluate(make_application(), NOW)
        assert valuation.collateral_value == Decimal("6250")

    @pytest.mark.asyncio
    async def test_missing_rate_values_at_zero(self, make_application):
        repo = FakeLoanRepository()
        valuation = await ValuationCalculator(repo).evaluate(make_application(), NOW)

        assert valuation.collateral_value == Decimal("0")
        assert valuation.ltv_ratio == Decimal("0")
        assert valuation.exchange_rate is None

    @pytest.mark.asyncio
    async def test_unknown_collateral_currency_values_at_zero(self, fake_repo, make_application):
        del fake_repo.decimals[ETH]
        value, snapshot = await ValuationCalculator(fake_repo).collateral_value(
            ETH, Decimal(ETH_WEI), USDC, NOW,
        )
        assert value == Decimal("0")
        assert snapshot is None

    @pytest.mark.asyncio
    async def test_require_raises_without_value(self, make_application):
        with pytest.raises(ValuationUnavailableError):
            await ValuationCalculator(FakeLoanRepository()).require(make_application(), NOW)

    @pytest.mark.asyncio
    async def test_require_passes_with_value(self, fake_repo, make_application):
        valuation = await ValuationCalculator(fake_repo).require(make_application(), NOW)
        assert valuation.ltv_ratio == Decimal("0.6")
