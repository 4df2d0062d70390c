"""SQLAlchemy ORM models for LendMatch."""

from lendmatch.models.currency import Currency, ExchangeRate
from lendmatch.models.user import User, UserType
from lendmatch.models.platform_config import PlatformConfig
from lendmatch.models.loan_application import (
    LoanApplication,
    LoanApplicationStatus,
    LiquidationMode,
)
from lendmatch.models.loan_offer import LoanOffer, LoanOfferStatus
from lendmatch.models.matched_loan_pair import MatchedLoanPair
from lendmatch.models.loan import Loan, LoanStatus

__all__ = [
    "Currency",
    "ExchangeRate",
    "User",
    "UserType",
    "PlatformConfig",
    "LoanApplication",
    "LoanApplicationStatus",
    "LiquidationMode",
    "LoanOffer",
    "LoanOfferStatus",
    "MatchedLoanPair",
    "Loan",
    "LoanStatus",
]
