"""
Collateral valuation and loan-to-value (LTV) computation.

Amounts arrive in smallest units of their currency and are normalised
to decimal form with the currency's decimal count.  Exchange-rate bid
prices are stored in quote smallest units at ``QUOTE_DECIMALS`` (18).

    collateral_value = (collateral_amount / 10**collateral_decimals)
                       × (bid_price / 10**QUOTE_DECIMALS)
    ltv              = principal_decimal / collateral_value   (0 if value <= 0)

All arithmetic uses ``Decimal`` in a high-precision local context so
78-digit smallest-unit amounts are never rounded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, localcontext

from lendmatch.matching_engine.config import DECIMAL_PRECISION, LTV_QUANTUM, QUOTE_DECIMALS
from lendmatch.matching_engine.entities import (
    CurrencyRef,
    ExchangeRateSnapshot,
    MatchableApplication,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ValuationUnavailableError(Exception):
    """Collateral could not be valued above zero; the match must not be recorded."""


@dataclass(frozen=True)
class CollateralValuation:
    collateral_value: Decimal          # in quote currency, decimal form
    valuation_amount: Decimal          # collateral_value in quote smallest units
    ltv_ratio: Decimal
    exchange_rate: ExchangeRateSnapshot | None = None


# ── Unit conversion ──────────────────────────────────────────────────────


def to_decimal_units(amount: Decimal | int | str, decimals: int) -> Decimal:
    """Convert a smallest-unit amount to decimal form (``2500000000000000000``, 18 → ``2.5``)."""
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return Decimal(str(amount)).scaleb(-decimals)


def to_smallest_units(value: Decimal, decimals: int) -> Decimal:
    """Convert a decimal value to smallest units, truncating toward zero."""
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN)


def compute_ltv(principal_decimal: Decimal, collateral_value: Decimal) -> Decimal:
    """LTV ratio quantised to 18 places; defined as 0 when collateral value is not positive."""
    if collateral_value <= 0:
        return ZERO
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return (principal_decimal / collateral_value).quantize(LTV_QUANTUM, rounding=ROUND_DOWN)


# ── Calculator ───────────────────────────────────────────────────────────


class ValuationCalculator:
    """Values collateral from the latest exchange-rate snapshot."""

    def __init__(self, repository, quote_decimals: int = QUOTE_DECIMALS):
        self.repository = repository
        self.quote_decimals = quote_decimals

    async def collateral_value(
        self,
        collateral_currency: CurrencyRef,
        collateral_amount: Decimal,
        quote_currency: CurrencyRef,
        as_of: datetime | None = None,
    ) -> tuple[Decimal, ExchangeRateSnapshot | None]:
        """
        Market value of *collateral_amount* in the quote currency.

        A missing currency or a missing snapshot yields a zero value;
        this is logged and left to the caller to reject.
        """
        decimals = await self.repository.get_currency_decimals(collateral_currency)
        if decimals is None:
            logger.warning("Unknown collateral currency %s, valuing at zero", collateral_currency)
            return ZERO, None

        snapshot = await self.repository.get_latest_exchange_rate(
            collateral_currency, quote_currency, as_of,
        )
        if snapshot is None:
            logger.warning(
                "No exchange rate for %s/%s at or before %s, valuing at zero",
                collateral_currency, quote_currency, as_of,
            )
            return ZERO, None

        amount = to_decimal_units(collateral_amount, decimals)
        bid = to_decimal_units(snapshot.bid_price, self.quote_decimals)
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            value = amount * bid

        logger.debug(
            "Collateral %s %s valued at %s (bid %s, source %s)",
            amount, collateral_currency, value, bid, snapshot.source_date,
        )
        return value, snapshot

    async def evaluate(
        self, application: MatchableApplication, as_of: datetime | None = None,
    ) -> CollateralValuation:
        """Value an application's collateral against its principal currency and compute LTV."""
        value, snapshot = await self.collateral_value(
            application.collateral_currency,
            application.collateral_deposit_amount,
            application.principal_currency,
            as_of,
        )
        principal = to_decimal_units(application.principal_amount, application.principal_decimals)
        ltv = compute_ltv(principal, value)

        return CollateralValuation(
            collateral_value=value,
            valuation_amount=to_smallest_units(value, self.quote_decimals) if value > 0 else ZERO,
            ltv_ratio=ltv,
            exchange_rate=snapshot,
        )

    async def require(
        self, application: MatchableApplication, as_of: datetime | None = None,
    ) -> CollateralValuation:
        """Like :meth:`evaluate`, but raise when the collateral has no positive value."""
        valuation = await self.evaluate(application, as_of)
        if valuation.collateral_value <= 0:
            raise ValuationUnavailableError(
                f"Collateral for application {application.id} has no positive valuation"
            )
        return valuation
