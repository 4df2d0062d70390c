"""
Preference ranking of compatible offers.

Each lender is classified Institution or Individual; classifications
are looked up concurrently, one per offer, and cached in Redis under
``lender_type:{user_id}``.  A failed lookup classifies the lender as
Individual and is not cached.

Sort order (stable, so ties keep repository order):
  1. institutional lenders before individual lenders
  2. ascending interest rate

Institutional-first applies whether or not the borrower asked for it;
``prefer_institutional_lenders`` is only logged.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from lendmatch.matching_engine.config import LENDER_TYPE_CACHE_PREFIX, LENDER_TYPE_CACHE_TTL
from lendmatch.matching_engine.entities import AvailableOffer
from lendmatch.models.user import UserType
from lendmatch.schemas.matching import BorrowerCriteria

logger = logging.getLogger(__name__)


def _cache_key(lender_user_id: uuid.UUID) -> str:
    return f"{LENDER_TYPE_CACHE_PREFIX}{lender_user_id}"


class PreferenceRanker:
    """Orders compatible offers best-first."""

    def __init__(self, repository, redis=None, cache_ttl: int = LENDER_TYPE_CACHE_TTL):
        """
        Args:
            repository: LoanMatchingRepository used for lender profile lookups.
            redis: Async Redis client for the classification cache
                   (defaults to ``lendmatch.redis_client.redis``).
            cache_ttl: Seconds a cached classification stays valid.
        """
        self.repository = repository
        self._redis = redis
        self.cache_ttl = cache_ttl

    @property
    def redis(self):
        if self._redis is not None:
            return self._redis
        from lendmatch.redis_client import redis
        return redis

    # ── Classification ───────────────────────────────────────────────────

    async def _cached_type(self, lender_user_id: uuid.UUID) -> str | None:
        try:
            return await self.redis.get(_cache_key(lender_user_id))
        except Exception:
            logger.warning("Lender type cache read failed for %s", lender_user_id, exc_info=True)
            return None

    async def _cache_type(self, lender_user_id: uuid.UUID, user_type: UserType) -> None:
        try:
            await self.redis.setex(_cache_key(lender_user_id), self.cache_ttl, user_type.value)
        except Exception:
            logger.warning("Lender type cache write failed for %s", lender_user_id, exc_info=True)

    async def is_institutional(self, lender_user_id: uuid.UUID) -> bool:
        """Classify a lender; any lookup failure means Individual."""
        cached = await self._cached_type(lender_user_id)
        if cached is not None:
            return cached == UserType.INSTITUTION.value

        try:
            profile = await self.repository.get_lender_profile(lender_user_id)
        except Exception as exc:
            logger.warning(
                "Failed to get user type for lender %s, treating as individual: %s",
                lender_user_id, exc,
            )
            return False

        user_type = UserType.INSTITUTION if profile.institutional else UserType.INDIVIDUAL
        logger.debug("Lender %s user type: %s", lender_user_id, user_type.value)
        await self._cache_type(lender_user_id, user_type)
        return profile.institutional

    # ── Ranking ──────────────────────────────────────────────────────────

    async def rank(
        self,
        offers: list[AvailableOffer],
        borrower_criteria: BorrowerCriteria | None = None,
    ) -> list[AvailableOffer]:
        if not offers:
            return []

        if borrower_criteria is not None and borrower_criteria.prefer_institutional_lenders:
            logger.debug("Borrower prefers institutional lenders")

        flags = await asyncio.gather(
            *(self.is_institutional(offer.lender_user_id) for offer in offers)
        )
        ranked = sorted(
            zip(offers, flags),
            key=lambda pair: (not pair[1], pair[0].interest_rate),
        )
        return [offer for offer, _ in ranked]
