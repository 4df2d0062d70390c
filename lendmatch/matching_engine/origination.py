"""
Loan origination and disbursement after a recorded match.

Economics are computed in smallest units of the principal currency and
truncated toward zero:

    interest            = principal × rate/100 × term/12
    provision           = principal × provision_rate
    repayment           = principal + provision + interest
    redelivery_fee      = interest × redelivery_fee_rate
                          (institution rate for institutional lenders)
    redelivery_amount   = principal + interest − redelivery_fee
    premi               = principal × liquidation_premi_rate
    liquidation_fee     = principal × liquidation_fee_rate
    min_collateral      = repayment + premi + liquidation_fee
    mc_ltv_ratio        = principal / min_collateral          (4 dp)
    maturity_date       = origination_date + term months

Failures here never undo the match: an origination failure leaves the
pair without a loan, a disbursement failure leaves the loan Originated.
Both are logged and reported on the pair for out-of-band reconciliation.
"""

from __future__ import annotations

import calendar
import dataclasses
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, localcontext

from lendmatch.matching_engine.config import DECIMAL_PRECISION, MC_LTV_QUANTUM
from lendmatch.matching_engine.entities import (
    LoanEconomics,
    LoanOriginationParams,
    MatchableApplication,
    MatchedLoanPair,
    PlatformFeeConfig,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
TWELVE = Decimal("12")


# ── Pure helpers ─────────────────────────────────────────────────────────


def _truncate(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_DOWN)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month addition; the day is clamped to the target month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_loan_economics(
    principal: Decimal,
    interest_rate: Decimal,
    term_in_months: int,
    fees: PlatformFeeConfig,
    institutional_lender: bool = False,
) -> LoanEconomics:
    redelivery_rate = (
        fees.institution_redelivery_fee_rate
        if institutional_lender
        else fees.individual_redelivery_fee_rate
    )

    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION

        interest = _truncate(principal * interest_rate / HUNDRED * Decimal(term_in_months) / TWELVE)
        provision = _truncate(principal * fees.provision_rate)
        repayment = principal + provision + interest
        redelivery_fee = _truncate(interest * redelivery_rate)
        redelivery_amount = principal + interest - redelivery_fee
        premi = _truncate(principal * fees.liquidation_premi_rate)
        liquidation_fee = _truncate(principal * fees.liquidation_fee_rate)
        min_collateral = repayment + premi + liquidation_fee

        if min_collateral > 0:
            mc_ltv = (principal / min_collateral).quantize(MC_LTV_QUANTUM, rounding=ROUND_DOWN)
        else:
            mc_ltv = ZERO

    return LoanEconomics(
        principal_amount=principal,
        interest_amount=interest,
        provision_amount=provision,
        repayment_amount=repayment,
        redelivery_fee_amount=redelivery_fee,
        redelivery_amount=redelivery_amount,
        premi_amount=premi,
        liquidation_fee_amount=liquidation_fee,
        min_collateral_valuation=min_collateral,
        mc_ltv_ratio=mc_ltv,
    )


# ── Orchestrator ─────────────────────────────────────────────────────────


class OriginationOrchestrator:
    """Originates and disburses a loan for a recorded match."""

    def __init__(self, repository, ranker=None):
        """
        Args:
            repository: LoanMatchingRepository for fee config, origination and disbursement.
            ranker: PreferenceRanker whose lender classification (and cache)
                    picks the redelivery fee rate; without one every lender
                    pays the individual rate.
        """
        self.repository = repository
        self.ranker = ranker

    async def build_params(
        self,
        pair: MatchedLoanPair,
        application: MatchableApplication,
        origination_date: datetime,
    ) -> LoanOriginationParams:
        fees = await self.repository.get_platform_fee_config(origination_date)
        institutional = (
            await self.ranker.is_institutional(pair.lender_user_id)
            if self.ranker is not None
            else False
        )
        economics = compute_loan_economics(
            pair.principal_amount,
            pair.interest_rate,
            pair.term_in_months,
            fees,
            institutional_lender=institutional,
        )
        return LoanOriginationParams(
            loan_application_id=pair.loan_application_id,
            loan_offer_id=pair.loan_offer_id,
            borrower_user_id=pair.borrower_user_id,
            lender_user_id=pair.lender_user_id,
            interest_rate=pair.interest_rate,
            term_in_months=pair.term_in_months,
            collateral_amount=application.collateral_deposit_amount,
            economics=economics,
            origination_date=origination_date,
            maturity_date=add_months(origination_date, pair.term_in_months),
        )

    async def originate_and_disburse(
        self,
        pair: MatchedLoanPair,
        application: MatchableApplication,
        origination_date: datetime,
    ) -> MatchedLoanPair:
        """
        Originate then disburse; returns *pair* annotated with the outcome.

        Never raises: the match stands whatever happens here.
        """
        try:
            params = await self.build_params(pair, application, origination_date)
            loan = await self.repository.originate_loan(params)
        except Exception as exc:
            logger.error(
                "Failed to originate loan for match %s and %s: %s",
                pair.loan_application_id, pair.loan_offer_id, exc,
            )
            return dataclasses.replace(pair, origination_error=str(exc))

        logger.info(
            "Loan originated successfully: %s for application %s and offer %s",
            loan.id, pair.loan_application_id, pair.loan_offer_id,
        )

        disbursed = False
        try:
            await self.repository.disburse_loan(loan.id, datetime.now(timezone.utc))
            disbursed = True
            logger.info("Loan disbursed successfully: %s", loan.id)
        except Exception as exc:
            logger.error("Failed to disburse loan %s: %s", loan.id, exc)

        return dataclasses.replace(pair, loan_id=loan.id, disbursed=disbursed)
