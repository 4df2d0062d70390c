"""
Match recording — persists one (application, offer) pairing.

The repository performs the write atomically with guarded updates, so
a second attempt at the same application, or an attempt against an
offer that no longer has the principal available, fails with
``MatchConflictError`` and changes nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime

from lendmatch.matching_engine.entities import (
    AvailableOffer,
    MatchableApplication,
    MatchedLoanPair,
)
from lendmatch.matching_engine.repository import MatchConflictError
from lendmatch.matching_engine.valuation import CollateralValuation

logger = logging.getLogger(__name__)


class MatchRecorder:
    def __init__(self, repository):
        self.repository = repository

    async def record(
        self,
        application: MatchableApplication,
        offer: AvailableOffer,
        valuation: CollateralValuation,
        matched_at: datetime,
    ) -> MatchedLoanPair:
        if application.borrower_user_id == offer.lender_user_id:
            raise MatchConflictError(
                f"Borrower and lender must be different users (user {offer.lender_user_id})"
            )

        pair = await self.repository.record_match(
            application.id,
            offer.id,
            valuation.ltv_ratio,
            valuation.valuation_amount,
            matched_at,
        )
        logger.info(
            "Recorded match %s <-> %s: principal %s at %s%% for %dmo, LTV %s",
            pair.loan_application_id, pair.loan_offer_id,
            pair.principal_amount, pair.interest_rate,
            pair.term_in_months, pair.ltv_ratio,
        )
        return pair
