"""
Main loan matching engine orchestrator.

Drives one run: pages through matchable applications, finds and ranks
compatible offers for each, values the collateral, records the best
match, originates and disburses the loan, and dispatches notifications.

Run state machine::

    Idle → Fetching → ProcessingPage → (Fetching | Done)

The run stops on an empty page, when the repository reports no further
pages, or when the processed-applications ceiling is reached (the only
case that reports ``has_more``).  Per-application failures are
collected in the report; a persistence outage aborts the run with the
partial report.  ``run_matching`` never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import ValidationError

from lendmatch.matching_engine.config import (
    DEFAULT_BATCH_SIZE,
    EVENT_APPLICATION_MATCHED,
    EVENT_OFFER_MATCHED,
    MAX_PROCESSED_APPLICATIONS,
    OFFER_CANDIDATE_LIMIT,
    TARGETED_LOOKUP_LIMIT,
)
from lendmatch.matching_engine.entities import (
    MatchableApplication,
    MatchedLoanPair,
    MatchingReport,
    RunState,
)
from lendmatch.matching_engine.origination import OriginationOrchestrator
from lendmatch.matching_engine.ranking import PreferenceRanker
from lendmatch.matching_engine.recorder import MatchRecorder
from lendmatch.matching_engine.reporter import finish_run_report, start_run_report, summarize
from lendmatch.matching_engine.repository import RepositoryUnavailableError
from lendmatch.matching_engine.strategies import (
    MatcherStrategy,
    build_strategies,
    select_strategy_type,
)
from lendmatch.matching_engine.valuation import ValuationCalculator
from lendmatch.schemas.matching import MatchingRequest

logger = logging.getLogger(__name__)


@dataclass
class _Run:
    """Everything scoped to a single invocation."""

    request: MatchingRequest
    as_of: datetime
    batch_size: int
    report: MatchingReport
    strategy: MatcherStrategy
    valuation: ValuationCalculator
    recorder: MatchRecorder
    originator: OriginationOrchestrator
    state: RunState = RunState.IDLE
    transitions: list[RunState] = field(default_factory=list)

    def transition(self, new_state: RunState) -> None:
        logger.debug("Run %s: %s -> %s", self.report.run_id, self.state.value, new_state.value)
        self.state = new_state
        self.transitions.append(new_state)


class MatchingEngine:
    """Orchestrates loan matching runs."""

    def __init__(
        self,
        repository=None,
        redis=None,
        notifier=None,
        max_processed_applications: int = MAX_PROCESSED_APPLICATIONS,
        offer_candidate_limit: int = OFFER_CANDIDATE_LIMIT,
    ):
        """
        Args:
            repository: LoanMatchingRepository (defaults to the module-level
                        SQLAlchemy repository).
            redis: Async Redis client for the lender classification cache
                   (defaults to ``lendmatch.redis_client.redis``).
            notifier: Object with a ``delay(event)`` method (defaults to the
                      ``send_match_notification`` Celery task).
            max_processed_applications: Ceiling that ends a run.
            offer_candidate_limit: Offers fetched per application.
        """
        self._repository = repository
        self._redis = redis
        self._notifier = notifier
        self.max_processed_applications = max_processed_applications
        self.offer_candidate_limit = offer_candidate_limit

    @property
    def repository(self):
        if self._repository is not None:
            return self._repository
        from lendmatch.matching_engine.repository import loan_repository
        return loan_repository

    @property
    def notifier(self):
        if self._notifier is not None:
            return self._notifier
        from lendmatch.tasks.notification_tasks import send_match_notification
        return send_match_notification

    # ── Public entry point ───────────────────────────────────────────────

    async def run_matching(self, request: MatchingRequest | dict | None = None) -> MatchingReport:
        """Execute one matching run and return its report."""
        started_at = datetime.now(timezone.utc)

        try:
            if request is None:
                request = MatchingRequest()
            elif isinstance(request, dict):
                request = MatchingRequest.model_validate(request)
        except ValidationError as exc:
            report = start_run_report(started_at)
            message = f"Loan matching process failed: invalid request: {exc}"
            logger.error(message)
            report.errors.append(message)
            return finish_run_report(report, datetime.now(timezone.utc))

        run = self._new_run(request, started_at)
        self._log_start(run)

        try:
            await self._execute_run(run)
        except Exception as exc:
            message = f"Loan matching process failed: {exc}"
            logger.error(message)
            run.report.errors.append(message)
            run.report.has_more = False
        finally:
            run.transition(RunState.DONE)

        report = finish_run_report(run.report, datetime.now(timezone.utc))
        logger.info("Loan matching completed: %s", summarize(report))
        return report

    # ── Run wiring ───────────────────────────────────────────────────────

    def _new_run(self, request: MatchingRequest, started_at: datetime) -> _Run:
        repository = self.repository
        ranker = PreferenceRanker(repository, self._redis)
        strategies = build_strategies(repository, ranker, self.offer_candidate_limit)
        strategy_type = select_strategy_type(request.lender_criteria, request.borrower_criteria)

        return _Run(
            request=request,
            as_of=request.as_of_date or started_at,
            batch_size=request.batch_size or DEFAULT_BATCH_SIZE,
            report=start_run_report(started_at),
            strategy=strategies[strategy_type],
            valuation=ValuationCalculator(repository),
            recorder=MatchRecorder(repository),
            originator=OriginationOrchestrator(repository, ranker),
        )

    @staticmethod
    def _log_start(run: _Run) -> None:
        req = run.request
        if req.borrower_criteria is not None:
            bc = req.borrower_criteria
            logger.info(
                "Starting borrower criteria matching: duration %s, amount %s, "
                "max rate %s, prefer institutions: %s",
                bc.fixed_duration or "flexible",
                bc.fixed_principal_amount or "flexible",
                bc.max_interest_rate if bc.max_interest_rate is not None else "any",
                bool(bc.prefer_institutional_lenders),
            )
        if req.lender_criteria is not None:
            lc = req.lender_criteria
            logger.info(
                "Starting lender criteria matching: duration options %s, fixed rate %s, "
                "amount %s-%s",
                lc.duration_options or "any",
                lc.fixed_interest_rate if lc.fixed_interest_rate is not None else "any",
                lc.min_principal_amount or "0",
                lc.max_principal_amount or "unbounded",
            )
        logger.info(
            "Starting loan matching run %s as of %s (strategy %s, batch size %d)",
            run.report.run_id, run.as_of.isoformat(),
            run.strategy.strategy_type.value, run.batch_size,
        )

    # ── Paging loop ──────────────────────────────────────────────────────

    async def _execute_run(self, run: _Run) -> None:
        req = run.request
        seen: set = set()
        # Processed applications that stayed matchable keep their place at
        # the head of the matchable set; matched ones drop out of it.
        still_matchable = 0

        while True:
            run.transition(RunState.FETCHING)
            if req.target_application_id is not None:
                applications = await self._fetch_target_application(run)
                repo_has_more = False
                page = 1
            else:
                page = still_matchable // run.batch_size + 1
                applications, repo_has_more = await self.repository.list_matchable_applications(
                    page, run.batch_size, run.as_of,
                )

            if not applications:
                return

            fresh = [a for a in applications if a.id not in seen]
            if not fresh:
                if not repo_has_more:
                    return
                still_matchable = page * run.batch_size
                continue

            allowed = self.max_processed_applications - run.report.processed_applications
            truncated = len(fresh) > allowed
            fresh = fresh[:allowed]

            run.transition(RunState.PROCESSING_PAGE)
            run.report.processed_applications += len(fresh)
            logger.debug(
                "Processing batch of %d loan applications (page: %d)",
                len(fresh), page,
            )

            for application in fresh:
                seen.add(application.id)
                if not await self._process_application(run, application):
                    still_matchable += 1

            if req.target_application_id is not None:
                return
            if run.report.processed_applications >= self.max_processed_applications:
                if repo_has_more or truncated:
                    logger.warning(
                        "Reached processing limit of %d applications, stopping to prevent runaway job",
                        self.max_processed_applications,
                    )
                    run.report.has_more = True
                return
            if not repo_has_more:
                return

    async def _fetch_target_application(self, run: _Run) -> list[MatchableApplication]:
        target = run.request.target_application_id
        applications, _ = await self.repository.list_matchable_applications(
            1, TARGETED_LOOKUP_LIMIT, run.as_of,
        )
        found = [a for a in applications if a.id == target]
        if not found:
            logger.info("Target application %s is not matchable", target)
        return found

    # ── Per-application pipeline ─────────────────────────────────────────

    async def _process_application(self, run: _Run, application: MatchableApplication) -> bool:
        """Run one application through the pipeline; True once its match is recorded."""
        req = run.request
        recorded = False
        try:
            offers = await run.strategy.find_compatible_offers(
                application,
                run.as_of,
                target_offer_id=req.target_offer_id,
                lender_criteria=req.lender_criteria,
                borrower_criteria=req.borrower_criteria,
            )
            run.report.processed_offers += len(offers)

            if not offers:
                logger.debug("No compatible offers for application %s", application.id)
                return False

            best = offers[0]
            valuation = await run.valuation.require(application, run.as_of)
            pair = await run.recorder.record(application, best, valuation, run.as_of)
            recorded = True
            pair = await run.originator.originate_and_disburse(pair, application, run.as_of)

            run.report.matched_loans.append(pair)
            run.report.matched_pairs += 1
            self._dispatch_notifications(pair)

            logger.info("Matched loan application %s with offer %s", application.id, best.id)
        except RepositoryUnavailableError:
            raise
        except Exception as exc:
            message = f"Failed to process application {application.id}: {exc}"
            logger.error(message)
            run.report.errors.append(message)
        return recorded

    # ── Notifications ────────────────────────────────────────────────────

    @staticmethod
    def build_match_events(pair: MatchedLoanPair) -> list[dict]:
        """One event for the borrower, one for the lender."""
        base = {
            "loan_application_id": str(pair.loan_application_id),
            "loan_offer_id": str(pair.loan_offer_id),
            "principal_amount": str(pair.principal_amount),
            "interest_rate": str(pair.interest_rate),
            "term_in_months": pair.term_in_months,
            "matched_date": pair.matched_date.isoformat(),
        }
        return [
            {"type": EVENT_APPLICATION_MATCHED, "user_id": str(pair.borrower_user_id), **base},
            {"type": EVENT_OFFER_MATCHED, "user_id": str(pair.lender_user_id), **base},
        ]

    def _dispatch_notifications(self, pair: MatchedLoanPair) -> None:
        """Fire notification tasks (fire-and-forget)."""
        try:
            notifier = self.notifier
        except Exception:
            logger.exception("Failed to import notification tasks")
            return

        for event in self.build_match_events(pair):
            try:
                notifier.delay(event)
            except Exception:
                logger.exception(
                    "Failed to dispatch %s notification for application %s",
                    event["type"], pair.loan_application_id,
                )


# Module-level singleton (uses the default repository, Redis client and notifier)
matching_engine = MatchingEngine()
