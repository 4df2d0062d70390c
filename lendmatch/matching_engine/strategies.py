"""
Matching strategies — how the candidate offers for one application are found.

Two strategies share the ``find_compatible_offers`` contract and differ
only in the pre-filter step:

  STANDARD  no criteria supplied; candidates go straight to the hard rules
  CRITERIA  lender and/or borrower criteria narrow candidates first

Both fetch candidates from the repository (cheapest first), drop offers
owned by the borrower, apply every hard compatibility rule and rank the
survivors.  In targeted-offer mode
the candidate set is reduced to the one target offer, looked up within
the first ``TARGETED_LOOKUP_LIMIT`` available offers.
"""

from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime

from lendmatch.matching_engine.compatibility import evaluate_compatibility
from lendmatch.matching_engine.config import OFFER_CANDIDATE_LIMIT, TARGETED_LOOKUP_LIMIT
from lendmatch.matching_engine.criteria import apply_criteria
from lendmatch.matching_engine.entities import AvailableOffer, MatchableApplication
from lendmatch.matching_engine.ranking import PreferenceRanker
from lendmatch.schemas.matching import BorrowerCriteria, LenderCriteria

logger = logging.getLogger(__name__)


class MatcherStrategyType(str, enum.Enum):
    STANDARD = "standard"
    CRITERIA = "criteria"


def select_strategy_type(
    lender_criteria: LenderCriteria | None,
    borrower_criteria: BorrowerCriteria | None,
) -> MatcherStrategyType:
    if lender_criteria is not None or borrower_criteria is not None:
        return MatcherStrategyType.CRITERIA
    return MatcherStrategyType.STANDARD


class MatcherStrategy:
    """Shared candidate lookup, hard-rule filtering and ranking."""

    strategy_type: MatcherStrategyType

    def __init__(
        self,
        repository,
        ranker: PreferenceRanker,
        candidate_limit: int = OFFER_CANDIDATE_LIMIT,
    ):
        self.repository = repository
        self.ranker = ranker
        self.candidate_limit = candidate_limit

    async def find_compatible_offers(
        self,
        application: MatchableApplication,
        now: datetime,
        target_offer_id: uuid.UUID | None = None,
        lender_criteria: LenderCriteria | None = None,
        borrower_criteria: BorrowerCriteria | None = None,
    ) -> list[AvailableOffer]:
        """Return offers passing every rule for *application*, best first."""
        candidates = await self._candidates(application, now, target_offer_id)
        candidates = self._exclude_own_offers(application, candidates)
        candidates = self.prefilter(candidates, lender_criteria, borrower_criteria)

        compatible: list[AvailableOffer] = []
        for offer in candidates:
            result = evaluate_compatibility(application, offer, now)
            if result:
                compatible.append(offer)
            else:
                logger.debug(
                    "Offer %s rejected for application %s: %s (%s)",
                    offer.id, application.id, result.reason.value, result.detail,
                )

        return await self.ranker.rank(compatible, borrower_criteria)

    def prefilter(
        self,
        offers: list[AvailableOffer],
        lender_criteria: LenderCriteria | None,
        borrower_criteria: BorrowerCriteria | None,
    ) -> list[AvailableOffer]:
        return offers

    @staticmethod
    def _exclude_own_offers(
        application: MatchableApplication,
        offers: list[AvailableOffer],
    ) -> list[AvailableOffer]:
        """A borrower can never take their own offer."""
        kept = [o for o in offers if o.lender_user_id != application.borrower_user_id]
        if len(kept) != len(offers):
            logger.debug(
                "Skipped %d offer(s) owned by borrower of application %s",
                len(offers) - len(kept), application.id,
            )
        return kept

    async def _candidates(
        self,
        application: MatchableApplication,
        now: datetime,
        target_offer_id: uuid.UUID | None,
    ) -> list[AvailableOffer]:
        if target_offer_id is not None:
            logger.debug(
                "Finding specific offer %s for application %s", target_offer_id, application.id,
            )
            offers = await self.repository.list_available_offers(
                application.principal_currency, TARGETED_LOOKUP_LIMIT, now,
            )
            return [o for o in offers if o.id == target_offer_id]

        return await self.repository.list_available_offers(
            application.principal_currency, self.candidate_limit, now,
        )


class StandardMatcherStrategy(MatcherStrategy):
    strategy_type = MatcherStrategyType.STANDARD


class CriteriaMatcherStrategy(MatcherStrategy):
    strategy_type = MatcherStrategyType.CRITERIA

    def prefilter(self, offers, lender_criteria, borrower_criteria):
        return apply_criteria(offers, lender_criteria, borrower_criteria)


STRATEGY_CLASSES: dict[MatcherStrategyType, type[MatcherStrategy]] = {
    MatcherStrategyType.STANDARD: StandardMatcherStrategy,
    MatcherStrategyType.CRITERIA: CriteriaMatcherStrategy,
}


def build_strategies(
    repository,
    ranker: PreferenceRanker,
    candidate_limit: int = OFFER_CANDIDATE_LIMIT,
) -> dict[MatcherStrategyType, MatcherStrategy]:
    return {
        kind: cls(repository, ranker, candidate_limit)
        for kind, cls in STRATEGY_CLASSES.items()
    }
