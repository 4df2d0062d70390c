"""
Soft pre-filters applied to candidate offers before the hard rules.

Both criteria objects are optional and every field on them is optional;
an absent object or field filters nothing.  Rejections are logged at
DEBUG with the offer id and the failing criterion.
"""

from __future__ import annotations

import logging

from lendmatch.matching_engine.compatibility import term_offered
from lendmatch.matching_engine.config import RATE_EPSILON
from lendmatch.matching_engine.entities import AvailableOffer
from lendmatch.schemas.matching import BorrowerCriteria, LenderCriteria

logger = logging.getLogger(__name__)


# ── Lender criteria ──────────────────────────────────────────────────────


def offer_meets_lender_criteria(offer: AvailableOffer, criteria: LenderCriteria) -> bool:
    if criteria.duration_options:
        if not any(term_offered(d, offer.term_in_months_options) for d in criteria.duration_options):
            logger.debug("Offer %s rejected: duration options don't overlap", offer.id)
            return False

    if criteria.fixed_interest_rate is not None:
        if abs(offer.interest_rate - criteria.fixed_interest_rate) > RATE_EPSILON:
            logger.debug(
                "Offer %s rejected: interest rate mismatch (%s vs %s)",
                offer.id, offer.interest_rate, criteria.fixed_interest_rate,
            )
            return False

    if criteria.min_principal_amount is not None:
        if offer.max_loan_principal_amount < criteria.min_principal_amount:
            logger.debug(
                "Offer %s rejected: max amount %s below criteria min %s",
                offer.id, offer.max_loan_principal_amount, criteria.min_principal_amount,
            )
            return False

    if criteria.max_principal_amount is not None:
        if offer.min_loan_principal_amount > criteria.max_principal_amount:
            logger.debug(
                "Offer %s rejected: min amount %s above criteria max %s",
                offer.id, offer.min_loan_principal_amount, criteria.max_principal_amount,
            )
            return False

    return True


# ── Borrower criteria ────────────────────────────────────────────────────


def offer_meets_borrower_criteria(offer: AvailableOffer, criteria: BorrowerCriteria) -> bool:
    if criteria.fixed_duration is not None:
        if not term_offered(criteria.fixed_duration, offer.term_in_months_options):
            logger.debug(
                "Offer %s rejected: fixed duration %s not in options %s",
                offer.id, criteria.fixed_duration, list(offer.term_in_months_options),
            )
            return False

    if criteria.fixed_principal_amount is not None:
        amount = criteria.fixed_principal_amount
        if not (offer.min_loan_principal_amount <= amount <= offer.max_loan_principal_amount):
            logger.debug(
                "Offer %s rejected: fixed amount %s outside range %s-%s",
                offer.id, amount,
                offer.min_loan_principal_amount, offer.max_loan_principal_amount,
            )
            return False
        if amount > offer.available_principal_amount:
            logger.debug(
                "Offer %s rejected: fixed amount %s exceeds available %s",
                offer.id, amount, offer.available_principal_amount,
            )
            return False

    if criteria.max_interest_rate is not None:
        if offer.interest_rate > criteria.max_interest_rate:
            logger.debug(
                "Offer %s rejected: interest rate %s%% exceeds max %s%%",
                offer.id, offer.interest_rate, criteria.max_interest_rate,
            )
            return False

    return True


# ── Combined filter ──────────────────────────────────────────────────────


def apply_criteria(
    offers: list[AvailableOffer],
    lender_criteria: LenderCriteria | None = None,
    borrower_criteria: BorrowerCriteria | None = None,
) -> list[AvailableOffer]:
    """Drop offers failing either criteria object; order is preserved."""
    candidates = offers

    if lender_criteria is not None:
        candidates = [o for o in candidates if offer_meets_lender_criteria(o, lender_criteria)]
        logger.debug(
            "Lender criteria reduced candidates from %d to %d offers",
            len(offers), len(candidates),
        )

    if borrower_criteria is not None:
        before = len(candidates)
        candidates = [o for o in candidates if offer_meets_borrower_criteria(o, borrower_criteria)]
        logger.debug(
            "Borrower criteria reduced candidates from %d to %d offers",
            before, len(candidates),
        )

    return candidates
