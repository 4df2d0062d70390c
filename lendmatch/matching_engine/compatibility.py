"""
Hard compatibility rules between one application and one offer.

Rules are evaluated in a fixed order and short-circuit on the first
failure, so the reported reason is deterministic:

1. requested amount within ``[offer.min, offer.max]``
2. requested amount ``<=`` offer availability
3. offer term options non-empty and containing the application term
4. offer rate is a positive finite decimal
5. offer rate ``<=`` application max rate, when one is set
6. offer expiration absent or ``>= now``

Pure: depends only on its arguments.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from lendmatch.matching_engine.entities import AvailableOffer, MatchableApplication


class RejectionReason(str, enum.Enum):
    AMOUNT_OUT_OF_RANGE = "amount_out_of_range"
    INSUFFICIENT_AVAILABILITY = "insufficient_availability"
    TERM_NOT_OFFERED = "term_not_offered"
    INVALID_RATE = "invalid_rate"
    RATE_ABOVE_MAXIMUM = "rate_above_maximum"
    OFFER_EXPIRED = "offer_expired"


@dataclass(frozen=True)
class CompatibilityResult:
    passed: bool
    reason: RejectionReason | None = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.passed


COMPATIBLE = CompatibilityResult(passed=True)


def _as_decimal(value) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


def term_offered(term, options) -> bool:
    """Numeric membership test; ``12``, ``12.0`` and ``"12"`` are the same term."""
    wanted = _as_decimal(term)
    if wanted is None:
        return False
    return any(_as_decimal(option) == wanted for option in options)


def evaluate_compatibility(
    application: MatchableApplication,
    offer: AvailableOffer,
    now: datetime,
) -> CompatibilityResult:
    """Return the first failing rule for *application* against *offer*, or COMPATIBLE."""
    requested = application.principal_amount

    if not (offer.min_loan_principal_amount <= requested <= offer.max_loan_principal_amount):
        return CompatibilityResult(
            False,
            RejectionReason.AMOUNT_OUT_OF_RANGE,
            f"requested {requested} outside "
            f"[{offer.min_loan_principal_amount}, {offer.max_loan_principal_amount}]",
        )

    if requested > offer.available_principal_amount:
        return CompatibilityResult(
            False,
            RejectionReason.INSUFFICIENT_AVAILABILITY,
            f"requested {requested} exceeds available {offer.available_principal_amount}",
        )

    if not offer.term_in_months_options or not term_offered(
        application.term_in_months, offer.term_in_months_options,
    ):
        return CompatibilityResult(
            False,
            RejectionReason.TERM_NOT_OFFERED,
            f"term {application.term_in_months} not in {list(offer.term_in_months_options)}",
        )

    rate = _as_decimal(offer.interest_rate)
    if rate is None or not rate.is_finite() or rate <= 0:
        return CompatibilityResult(
            False,
            RejectionReason.INVALID_RATE,
            f"offer rate {offer.interest_rate!r} is not a positive finite decimal",
        )

    if application.max_interest_rate is not None and rate > application.max_interest_rate:
        return CompatibilityResult(
            False,
            RejectionReason.RATE_ABOVE_MAXIMUM,
            f"offer rate {rate}% above maximum {application.max_interest_rate}%",
        )

    if offer.expiration_date is not None and offer.expiration_date < now:
        return CompatibilityResult(
            False,
            RejectionReason.OFFER_EXPIRED,
            f"offer expired at {offer.expiration_date.isoformat()}",
        )

    return COMPATIBLE
