"""
Value types passed between the matching engine components.

Amounts are ``Decimal`` in smallest units of their currency; interest
rates are ``Decimal`` percents (``12.5`` means 12.5% p.a.).  Everything
read from the repository is frozen so a component cannot mutate what
another component is still looking at.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


class RunState(str, enum.Enum):
    IDLE = "Idle"
    FETCHING = "Fetching"
    PROCESSING_PAGE = "ProcessingPage"
    DONE = "Done"


@dataclass(frozen=True)
class CurrencyRef:
    blockchain_key: str
    token_id: str

    def __str__(self) -> str:
        return f"{self.blockchain_key}:{self.token_id}"


@dataclass(frozen=True)
class MatchableApplication:
    id: uuid.UUID
    borrower_user_id: uuid.UUID
    principal_currency: CurrencyRef
    principal_decimals: int
    principal_amount: Decimal
    term_in_months: int
    collateral_currency: CurrencyRef
    collateral_deposit_amount: Decimal
    max_interest_rate: Decimal | None = None
    min_ltv_ratio: Decimal | None = None
    liquidation_mode: str = "Partial"
    applied_date: datetime | None = None
    expiration_date: datetime | None = None


@dataclass(frozen=True)
class AvailableOffer:
    id: uuid.UUID
    lender_user_id: uuid.UUID
    principal_currency: CurrencyRef
    available_principal_amount: Decimal
    min_loan_principal_amount: Decimal
    max_loan_principal_amount: Decimal
    interest_rate: Decimal
    term_in_months_options: tuple = ()
    expiration_date: datetime | None = None
    published_date: datetime | None = None


@dataclass(frozen=True)
class ExchangeRateSnapshot:
    base_currency: CurrencyRef
    quote_currency: CurrencyRef
    bid_price: Decimal
    ask_price: Decimal
    source_date: datetime


@dataclass(frozen=True)
class LenderProfile:
    user_id: uuid.UUID
    institutional: bool = False


@dataclass(frozen=True)
class PlatformFeeConfig:
    """Platform fee rates, each a 0..1 fraction."""

    provision_rate: Decimal
    individual_redelivery_fee_rate: Decimal
    institution_redelivery_fee_rate: Decimal
    liquidation_premi_rate: Decimal
    liquidation_fee_rate: Decimal


@dataclass(frozen=True)
class MatchedLoanPair:
    loan_application_id: uuid.UUID
    loan_offer_id: uuid.UUID
    borrower_user_id: uuid.UUID
    lender_user_id: uuid.UUID
    principal_amount: Decimal
    interest_rate: Decimal
    term_in_months: int
    collateral_valuation_amount: Decimal
    ltv_ratio: Decimal
    matched_date: datetime
    # Origination outcome, filled in after the match is recorded
    loan_id: uuid.UUID | None = None
    origination_error: str | None = None
    disbursed: bool = False


@dataclass(frozen=True)
class LoanEconomics:
    principal_amount: Decimal
    interest_amount: Decimal
    provision_amount: Decimal
    repayment_amount: Decimal
    redelivery_fee_amount: Decimal
    redelivery_amount: Decimal
    premi_amount: Decimal
    liquidation_fee_amount: Decimal
    min_collateral_valuation: Decimal
    mc_ltv_ratio: Decimal


@dataclass(frozen=True)
class LoanOriginationParams:
    loan_application_id: uuid.UUID
    loan_offer_id: uuid.UUID
    borrower_user_id: uuid.UUID
    lender_user_id: uuid.UUID
    interest_rate: Decimal
    term_in_months: int
    collateral_amount: Decimal
    economics: LoanEconomics
    origination_date: datetime
    maturity_date: datetime


@dataclass(frozen=True)
class OriginatedLoan:
    id: uuid.UUID
    loan_application_id: uuid.UUID
    loan_offer_id: uuid.UUID
    principal_amount: Decimal
    origination_date: datetime
    maturity_date: datetime
    status: str = "Originated"


@dataclass
class MatchingReport:
    processed_applications: int = 0
    processed_offers: int = 0
    matched_pairs: int = 0
    matched_loans: list[MatchedLoanPair] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    has_more: bool = False
    run_id: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None
