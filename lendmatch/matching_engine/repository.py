"""
Persistence contract for the loan matching engine.

``LoanMatchingRepository`` is the narrow read/write surface the engine
depends on.  ``SqlAlchemyLoanRepository`` implements it on the async
SQLAlchemy session factory; each call opens its own session, so calls
may run concurrently (the ranker fans lender lookups out in parallel).

Connection-level failures are translated to ``RepositoryUnavailableError``
(run-fatal).  Guard misses while recording a match are raised as
``MatchConflictError`` (per-application).
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import aliased

from lendmatch.matching_engine.entities import (
    AvailableOffer,
    CurrencyRef,
    ExchangeRateSnapshot,
    LenderProfile,
    LoanOriginationParams,
    MatchableApplication,
    MatchedLoanPair,
    OriginatedLoan,
    PlatformFeeConfig,
)
from lendmatch.models.currency import Currency, ExchangeRate
from lendmatch.models.loan import Loan, LoanStatus
from lendmatch.models.loan_application import LoanApplication, LoanApplicationStatus
from lendmatch.models.loan_offer import LoanOffer, LoanOfferStatus
from lendmatch.models.matched_loan_pair import MatchedLoanPair as MatchedLoanPairRecord
from lendmatch.models.platform_config import PlatformConfig
from lendmatch.models.user import User, UserType

logger = logging.getLogger(__name__)


# ── Exceptions ───────────────────────────────────────────────────────────


class RepositoryUnavailableError(Exception):
    """The persistence layer cannot be reached."""


class MatchConflictError(Exception):
    """A guarded write found the application or offer no longer eligible."""


# ── Contract ─────────────────────────────────────────────────────────────


class LoanMatchingRepository(Protocol):
    async def list_matchable_applications(
        self, page: int, limit: int, as_of: datetime | None = None,
    ) -> tuple[list[MatchableApplication], bool]:
        """Published, unmatched, unexpired applications; ``page`` is 1-based."""
        ...

    async def list_available_offers(
        self, principal_currency: CurrencyRef, limit: int, as_of: datetime | None = None,
    ) -> list[AvailableOffer]:
        """Published offers with availability left, cheapest first."""
        ...

    async def get_latest_exchange_rate(
        self, base: CurrencyRef, quote: CurrencyRef, as_of: datetime | None = None,
    ) -> ExchangeRateSnapshot | None:
        ...

    async def get_currency_decimals(self, currency: CurrencyRef) -> int | None:
        ...

    async def get_lender_profile(self, lender_user_id: uuid.UUID) -> LenderProfile:
        ...

    async def record_match(
        self,
        application_id: uuid.UUID,
        offer_id: uuid.UUID,
        ltv_ratio: Decimal,
        collateral_valuation_amount: Decimal,
        matched_at: datetime,
    ) -> MatchedLoanPair:
        """Atomically pair an application with an offer; raises MatchConflictError."""
        ...

    async def originate_loan(self, params: LoanOriginationParams) -> OriginatedLoan:
        ...

    async def disburse_loan(self, loan_id: uuid.UUID, disbursement_date: datetime) -> None:
        ...

    async def get_platform_fee_config(self, as_of: datetime | None = None) -> PlatformFeeConfig:
        ...


# ── SQLAlchemy implementation ────────────────────────────────────────────


class SqlAlchemyLoanRepository:
    """LoanMatchingRepository backed by PostgreSQL through async SQLAlchemy."""

    def __init__(self, session_factory=None):
        """
        Args:
            session_factory: Async session factory for DB access
                             (defaults to ``lendmatch.database.async_session``).
        """
        self._session_factory = session_factory

    @property
    def session_factory(self):
        if self._session_factory is not None:
            return self._session_factory
        from lendmatch.database import async_session
        return async_session

    @asynccontextmanager
    async def _session(self, transactional: bool = False):
        """Open a session, translating connection failures."""
        try:
            async with self.session_factory() as session:
                if transactional:
                    async with session.begin():
                        yield session
                else:
                    yield session
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.error("Database unavailable: %s", exc)
            raise RepositoryUnavailableError(str(exc)) from exc

    # ── Reads ────────────────────────────────────────────────────────────

    async def list_matchable_applications(
        self, page: int, limit: int, as_of: datetime | None = None,
    ) -> tuple[list[MatchableApplication], bool]:
        page = max(1, page)
        limit = max(1, limit)
        now = as_of or datetime.now(timezone.utc)
        principal = aliased(Currency)

        stmt = (
            select(LoanApplication, principal.decimals)
            .join(
                principal,
                and_(
                    LoanApplication.principal_blockchain_key == principal.blockchain_key,
                    LoanApplication.principal_token_id == principal.token_id,
                ),
            )
            .where(
                LoanApplication.status == LoanApplicationStatus.PUBLISHED,
                LoanApplication.matched_loan_offer_id.is_(None),
                or_(
                    LoanApplication.expiration_date.is_(None),
                    LoanApplication.expiration_date > now,
                ),
            )
            .order_by(LoanApplication.applied_date.asc(), LoanApplication.id.asc())
            .offset((page - 1) * limit)
            .limit(limit + 1)
        )

        async with self._session() as session:
            rows = (await session.execute(stmt)).all()

        has_more = len(rows) > limit
        applications = [
            self._to_application(app, decimals) for app, decimals in rows[:limit]
        ]
        logger.debug(
            "Retrieved %d matchable applications (page %d, limit %d)",
            len(applications), page, limit,
        )
        return applications, has_more

    async def list_available_offers(
        self, principal_currency: CurrencyRef, limit: int, as_of: datetime | None = None,
    ) -> list[AvailableOffer]:
        now = as_of or datetime.now(timezone.utc)
        stmt = (
            select(LoanOffer)
            .where(
                LoanOffer.status == LoanOfferStatus.PUBLISHED,
                LoanOffer.available_principal_amount > 0,
                LoanOffer.principal_blockchain_key == principal_currency.blockchain_key,
                LoanOffer.principal_token_id == principal_currency.token_id,
                or_(
                    LoanOffer.expiration_date.is_(None),
                    LoanOffer.expiration_date >= now,
                ),
            )
            .order_by(LoanOffer.interest_rate.asc(), LoanOffer.published_date.desc())
            .limit(max(1, limit))
        )
        async with self._session() as session:
            offers = (await session.execute(stmt)).scalars().all()
        return [self._to_offer(o) for o in offers]

    async def get_latest_exchange_rate(
        self, base: CurrencyRef, quote: CurrencyRef, as_of: datetime | None = None,
    ) -> ExchangeRateSnapshot | None:
        stmt = select(ExchangeRate).where(
            ExchangeRate.base_blockchain_key == base.blockchain_key,
            ExchangeRate.base_token_id == base.token_id,
            ExchangeRate.quote_blockchain_key == quote.blockchain_key,
            ExchangeRate.quote_token_id == quote.token_id,
        )
        if as_of is not None:
            stmt = stmt.where(ExchangeRate.source_date <= as_of)
        stmt = stmt.order_by(ExchangeRate.source_date.desc(), ExchangeRate.id.desc()).limit(1)

        async with self._session() as session:
            rate = (await session.execute(stmt)).scalar_one_or_none()

        if rate is None:
            return None
        return ExchangeRateSnapshot(
            base_currency=base,
            quote_currency=quote,
            bid_price=Decimal(rate.bid_price),
            ask_price=Decimal(rate.ask_price),
            source_date=rate.source_date,
        )

    async def get_currency_decimals(self, currency: CurrencyRef) -> int | None:
        stmt = select(Currency.decimals).where(
            Currency.blockchain_key == currency.blockchain_key,
            Currency.token_id == currency.token_id,
        )
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_lender_profile(self, lender_user_id: uuid.UUID) -> LenderProfile:
        stmt = select(User.user_type).where(User.id == lender_user_id)
        async with self._session() as session:
            user_type = (await session.execute(stmt)).scalar_one_or_none()
        if user_type is None:
            raise LookupError(f"Lender {lender_user_id} not found")
        return LenderProfile(
            user_id=lender_user_id,
            institutional=user_type == UserType.INSTITUTION,
        )

    async def get_platform_fee_config(self, as_of: datetime | None = None) -> PlatformFeeConfig:
        stmt = select(PlatformConfig)
        if as_of is not None:
            stmt = stmt.where(PlatformConfig.effective_date <= as_of)
        stmt = stmt.order_by(PlatformConfig.effective_date.desc()).limit(1)

        async with self._session() as session:
            config = (await session.execute(stmt)).scalar_one_or_none()

        if config is None:
            raise LookupError(f"No platform fee configuration effective at {as_of}")
        return PlatformFeeConfig(
            provision_rate=config.loan_provision_rate,
            individual_redelivery_fee_rate=config.loan_individual_redelivery_fee_rate,
            institution_redelivery_fee_rate=config.loan_institution_redelivery_fee_rate,
            liquidation_premi_rate=config.loan_liquidation_premi_rate,
            liquidation_fee_rate=config.loan_liquidation_fee_rate,
        )

    # ── Writes ───────────────────────────────────────────────────────────

    async def record_match(
        self,
        application_id: uuid.UUID,
        offer_id: uuid.UUID,
        ltv_ratio: Decimal,
        collateral_valuation_amount: Decimal,
        matched_at: datetime,
    ) -> MatchedLoanPair:
        """
        Pair an application with an offer in one transaction.

        Both updates are conditional: the application must still be
        Published and unmatched, the offer must still be Published with
        at least the requested principal available.  A guard miss rolls
        the whole transaction back.
        """
        async with self._session(transactional=True) as session:
            app_row = (await session.execute(
                update(LoanApplication)
                .where(
                    LoanApplication.id == application_id,
                    LoanApplication.status == LoanApplicationStatus.PUBLISHED,
                    LoanApplication.matched_loan_offer_id.is_(None),
                )
                .values(
                    status=LoanApplicationStatus.MATCHED,
                    matched_loan_offer_id=offer_id,
                    matched_ltv_ratio=ltv_ratio,
                    matched_collateral_valuation_amount=collateral_valuation_amount,
                    matched_date=matched_at,
                )
                .returning(
                    LoanApplication.borrower_user_id,
                    LoanApplication.principal_amount,
                    LoanApplication.term_in_months,
                )
                .execution_options(synchronize_session=False)
            )).one_or_none()
            if app_row is None:
                raise MatchConflictError(
                    f"Loan application {application_id} is no longer available for matching"
                )
            borrower_user_id, principal_amount, term_in_months = app_row

            offer_row = (await session.execute(
                update(LoanOffer)
                .where(
                    LoanOffer.id == offer_id,
                    LoanOffer.status == LoanOfferStatus.PUBLISHED,
                    LoanOffer.available_principal_amount >= principal_amount,
                )
                .values(
                    available_principal_amount=(
                        LoanOffer.available_principal_amount - principal_amount
                    ),
                )
                .returning(LoanOffer.lender_user_id, LoanOffer.interest_rate)
                .execution_options(synchronize_session=False)
            )).one_or_none()
            if offer_row is None:
                raise MatchConflictError(
                    f"Loan offer {offer_id} cannot fund {principal_amount} "
                    f"for application {application_id}"
                )
            lender_user_id, interest_rate = offer_row

            if lender_user_id == borrower_user_id:
                raise MatchConflictError(
                    f"Borrower and lender must be different users (user {borrower_user_id})"
                )

            session.add(MatchedLoanPairRecord(
                loan_application_id=application_id,
                loan_offer_id=offer_id,
                ltv_ratio=ltv_ratio,
                collateral_valuation_amount=collateral_valuation_amount,
                matched_date=matched_at,
            ))
            try:
                await session.flush()
            except IntegrityError as exc:
                raise MatchConflictError(
                    f"Loan application {application_id} is already matched"
                ) from exc

        return MatchedLoanPair(
            loan_application_id=application_id,
            loan_offer_id=offer_id,
            borrower_user_id=borrower_user_id,
            lender_user_id=lender_user_id,
            principal_amount=Decimal(principal_amount),
            interest_rate=Decimal(interest_rate),
            term_in_months=int(term_in_months),
            collateral_valuation_amount=collateral_valuation_amount,
            ltv_ratio=ltv_ratio,
            matched_date=matched_at,
        )

    async def originate_loan(self, params: LoanOriginationParams) -> OriginatedLoan:
        econ = params.economics
        loan = Loan(
            loan_application_id=params.loan_application_id,
            loan_offer_id=params.loan_offer_id,
            borrower_user_id=params.borrower_user_id,
            lender_user_id=params.lender_user_id,
            interest_rate=params.interest_rate,
            term_in_months=params.term_in_months,
            principal_amount=econ.principal_amount,
            interest_amount=econ.interest_amount,
            provision_amount=econ.provision_amount,
            repayment_amount=econ.repayment_amount,
            redelivery_fee_amount=econ.redelivery_fee_amount,
            redelivery_amount=econ.redelivery_amount,
            premi_amount=econ.premi_amount,
            liquidation_fee_amount=econ.liquidation_fee_amount,
            min_collateral_valuation=econ.min_collateral_valuation,
            mc_ltv_ratio=econ.mc_ltv_ratio,
            collateral_amount=params.collateral_amount,
            origination_date=params.origination_date,
            maturity_date=params.maturity_date,
        )
        async with self._session(transactional=True) as session:
            session.add(loan)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise MatchConflictError(
                    f"Loan already originated for application {params.loan_application_id}"
                ) from exc

        return OriginatedLoan(
            id=loan.id,
            loan_application_id=loan.loan_application_id,
            loan_offer_id=loan.loan_offer_id,
            principal_amount=loan.principal_amount,
            origination_date=loan.origination_date,
            maturity_date=loan.maturity_date,
            status=loan.status.value,
        )

    async def disburse_loan(self, loan_id: uuid.UUID, disbursement_date: datetime) -> None:
        async with self._session(transactional=True) as session:
            loan = (await session.execute(
                select(Loan).where(Loan.id == loan_id).with_for_update()
            )).scalar_one_or_none()
            if loan is None:
                raise LookupError(f"Loan {loan_id} not found")
            loan.transition_to(LoanStatus.ACTIVE, at=disbursement_date)

    # ── Row mapping ──────────────────────────────────────────────────────

    @staticmethod
    def _to_application(app: LoanApplication, principal_decimals: int) -> MatchableApplication:
        return MatchableApplication(
            id=app.id,
            borrower_user_id=app.borrower_user_id,
            principal_currency=CurrencyRef(app.principal_blockchain_key, app.principal_token_id),
            principal_decimals=int(principal_decimals),
            principal_amount=Decimal(app.principal_amount),
            term_in_months=app.term_in_months,
            collateral_currency=CurrencyRef(app.collateral_blockchain_key, app.collateral_token_id),
            collateral_deposit_amount=Decimal(app.collateral_deposit_amount),
            max_interest_rate=app.max_interest_rate,
            min_ltv_ratio=app.min_ltv_ratio,
            liquidation_mode=app.liquidation_mode.value if app.liquidation_mode else "Partial",
            applied_date=app.applied_date,
            expiration_date=app.expiration_date,
        )

    @staticmethod
    def _to_offer(offer: LoanOffer) -> AvailableOffer:
        return AvailableOffer(
            id=offer.id,
            lender_user_id=offer.lender_user_id,
            principal_currency=CurrencyRef(offer.principal_blockchain_key, offer.principal_token_id),
            available_principal_amount=Decimal(offer.available_principal_amount),
            min_loan_principal_amount=Decimal(offer.min_loan_principal_amount),
            max_loan_principal_amount=Decimal(offer.max_loan_principal_amount),
            interest_rate=Decimal(offer.interest_rate),
            term_in_months_options=tuple(offer.term_in_months_options or ()),
            expiration_date=offer.expiration_date,
            published_date=offer.published_date,
        )


# Module-level singleton (uses the default session factory)
loan_repository = SqlAlchemyLoanRepository()
