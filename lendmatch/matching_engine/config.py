"""
Loan matching engine configuration constants.

Run sizing comes from settings; the numeric scales and tolerances are
fixed properties of how amounts and rates are stored.
"""

from decimal import Decimal

from lendmatch.config import settings

# Run sizing
DEFAULT_BATCH_SIZE = settings.LOAN_MATCHER_BATCH_SIZE
MAX_PROCESSED_APPLICATIONS = settings.LOAN_MATCHER_MAX_PROCESSED_APPLICATIONS
OFFER_CANDIDATE_LIMIT = settings.LOAN_MATCHER_OFFER_CANDIDATE_LIMIT

# Targeted runs look the target up within the first page of this size
TARGETED_LOOKUP_LIMIT = 100

# Exchange-rate prices are stored in quote smallest units at this scale
QUOTE_DECIMALS = 18

# Working precision for smallest-unit arithmetic (78-digit amounts × 18-digit prices)
DECIMAL_PRECISION = 120

# Rates may carry rounding artifacts
RATE_EPSILON = Decimal("0.001")

# Quantization
LTV_QUANTUM = Decimal("1E-18")
MC_LTV_QUANTUM = Decimal("0.0001")

# Lender classification cache
LENDER_TYPE_CACHE_PREFIX = "lender_type:"
LENDER_TYPE_CACHE_TTL = settings.LENDER_PROFILE_CACHE_TTL_SECONDS

# Notification event types
EVENT_APPLICATION_MATCHED = "LoanApplicationMatched"
EVENT_OFFER_MATCHED = "LoanOfferMatched"
