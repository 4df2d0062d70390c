"""Tests for the loan matching engine run loop."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from lendmatch.matching_engine.engine import MatchingEngine
from lendmatch.matching_engine.entities import MatchedLoanPair, RunState
from lendmatch.schemas.matching import BorrowerCriteria, LenderCriteria, MatchingRequest
from tests.fakes import ETH_WEI, IDR, NOW, USDC_UNIT


# ── Helpers ────────────────────────────────────────────────────────────────

def _engine(repo, redis, notifier, **kwargs) -> MatchingEngine:
    return MatchingEngine(repository=repo, redis=redis, notifier=notifier, **kwargs)


def _request(**kwargs) -> MatchingRequest:
    return MatchingRequest(as_of_date=NOW, **kwargs)


# ===========================================================================
# HAPPY PATH
# ===========================================================================


class TestSingleMatch:

    @pytest.mark.asyncio
    async def test_match_originate_disburse_notify(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        app = fake_repo.add_application(make_application())
        offer = fake_repo.add_offer(make_offer(interest_rate=Decimal("9")))

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request())

        assert report.processed_applications == 1
        assert report.processed_offers == 1
        assert report.matched_pairs == 1
        assert report.errors == []
        assert report.has_more is False

        pair = report.matched_loans[0]
        assert pair.loan_application_id == app.id
        assert pair.loan_offer_id == offer.id
        assert pair.ltv_ratio == Decimal("0.6")
        assert pair.collateral_valuation_amount == 5000 * ETH_WEI
        assert pair.matched_date == NOW
        assert pair.disbursed is True
        assert fake_repo.loans[pair.loan_id]["status"] == "Active"

        events = [c.args[0] for c in mock_notifier.delay.call_args_list]
        assert [e["type"] for e in events] == ["LoanApplicationMatched", "LoanOfferMatched"]
        assert events[0]["user_id"] == str(app.borrower_user_id)
        assert events[1]["user_id"] == str(offer.lender_user_id)
        assert events[0]["principal_amount"] == str(3000 * USDC_UNIT)

    @pytest.mark.asyncio
    async def test_no_applications(self, fake_repo, mock_redis, mock_notifier):
        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request())

        assert report.processed_applications == 0
        assert report.matched_pairs == 0
        assert report.errors == []
        assert report.run_id.startswith("LM-")

    @pytest.mark.asyncio
    async def test_dict_request_accepted(self, fake_repo, mock_redis, mock_notifier, make_application, make_offer):
        fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer())

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(
            {"as_of_date": NOW.isoformat(), "batch_size": 5},
        )
        assert report.matched_pairs == 1

    @pytest.mark.asyncio
    async def test_invalid_request_reported_not_raised(self, fake_repo, mock_redis, mock_notifier):
        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching({"batch_size": 0})

        assert report.matched_pairs == 0
        assert report.errors[0].startswith("Loan matching process failed: invalid request")
        assert fake_repo.page_calls == []

    @pytest.mark.asyncio
    async def test_processed_offers_counts_compatible_offers(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer(interest_rate=Decimal("8")))
        fake_repo.add_offer(make_offer(interest_rate=Decimal("9")))
        fake_repo.add_offer(make_offer(interest_rate=Decimal("20")))  # above max rate

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request())
        assert report.processed_offers == 2


# ===========================================================================
# AT-MOST-ONE MATCH AND AVAILABILITY
# ===========================================================================


class TestMatchingInvariants:

    @pytest.mark.asyncio
    async def test_application_matched_at_most_once(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer())
        engine = _engine(fake_repo, mock_redis, mock_notifier)

        first = await engine.run_matching(_request())
        second = await engine.run_matching(_request())

        assert first.matched_pairs == 1
        assert second.matched_pairs == 0
        assert second.processed_applications == 0
        assert len(fake_repo.pairs) == 1

    @pytest.mark.asyncio
    async def test_offer_availability_never_negative(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        amount = 3000 * USDC_UNIT
        offer = fake_repo.add_offer(make_offer(available_principal_amount=amount))
        fake_repo.add_application(make_application(principal_amount=amount))
        second = fake_repo.add_application(make_application(principal_amount=amount))

        engine = _engine(fake_repo, mock_redis, mock_notifier)
        report = await engine.run_matching(_request())

        assert report.matched_pairs == 1
        assert report.errors == []
        assert fake_repo.available(offer.id) == 0
        assert fake_repo.applications[second.id]["status"] == "Published"

        again = await engine.run_matching(_request())
        assert again.processed_applications == 1
        assert again.matched_pairs == 0
        assert fake_repo.available(offer.id) == 0

    @pytest.mark.asyncio
    async def test_institutional_offer_preferred(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer(interest_rate=Decimal("7")))
        institution = fake_repo.add_offer(make_offer(interest_rate=Decimal("9")))
        fake_repo.institutions.add(institution.lender_user_id)

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request())
        assert report.matched_loans[0].loan_offer_id == institution.id

    @pytest.mark.asyncio
    async def test_own_offer_skipped_for_next_best(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        app = fake_repo.add_application(make_application())
        own = fake_repo.add_offer(
            make_offer(lender_user_id=app.borrower_user_id, interest_rate=Decimal("5")),
        )
        other = fake_repo.add_offer(make_offer(interest_rate=Decimal("9")))

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request())

        assert report.errors == []
        assert report.processed_offers == 1
        assert [p.loan_offer_id for p in report.matched_loans] == [other.id]
        assert fake_repo.available(own.id) == own.available_principal_amount

    @pytest.mark.asyncio
    async def test_only_own_offer_leaves_application_unmatched(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        app = fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer(lender_user_id=app.borrower_user_id))

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request())

        assert report.matched_pairs == 0
        assert report.errors == []
        assert fake_repo.applications[app.id]["status"] == "Published"


# ===========================================================================
# FAILURE ISOLATION
# ===========================================================================


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_one_application_failure_does_not_stop_run(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        first = fake_repo.add_application(make_application())
        # No IDR/USDC rate: collateral cannot be valued
        broken = fake_repo.add_application(make_application(collateral_currency=IDR))
        third = fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer())

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request())

        assert report.processed_applications == 3
        assert [p.loan_application_id for p in report.matched_loans] == [first.id, third.id]
        assert len(report.errors) == 1
        assert report.errors[0].startswith(f"Failed to process application {broken.id}:")
        assert fake_repo.applications[broken.id]["status"] == "Published"

    @pytest.mark.asyncio
    async def test_origination_failure_keeps_match(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer())
        fake_repo.fail_origination = True

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request())

        assert report.matched_pairs == 1
        assert report.errors == []
        assert report.matched_loans[0].loan_id is None
        assert report.matched_loans[0].origination_error == "origination service down"

    @pytest.mark.asyncio
    async def test_notification_failure_swallowed(
        self, fake_repo, mock_redis, make_application, make_offer,
    ):
        fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer())
        notifier = MagicMock()
        notifier.delay.side_effect = ConnectionError("broker down")

        report = await _engine(fake_repo, mock_redis, notifier).run_matching(_request())

        assert report.matched_pairs == 1
        assert report.errors == []
        assert notifier.delay.call_count == 2

    @pytest.mark.asyncio
    async def test_repository_outage_aborts_with_partial_report(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        for _ in range(3):
            fake_repo.add_application(make_application())
        fake_repo.add_application(make_application(principal_amount=10 * USDC_UNIT))
        fake_repo.add_offer(make_offer(max_loan_principal_amount=50 * USDC_UNIT, min_loan_principal_amount=1))
        fake_repo.unavailable_after_pages = 1

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(
            _request(batch_size=2),
        )

        assert report.processed_applications == 2
        assert report.errors[-1] == "Loan matching process failed: connection refused"
        assert report.has_more is False


# ===========================================================================
# PAGING
# ===========================================================================


class TestPaging:

    @pytest.mark.asyncio
    async def test_ceiling_reports_has_more(self, fake_repo, mock_redis, mock_notifier, make_application):
        for _ in range(10):
            fake_repo.add_application(make_application())

        engine = _engine(fake_repo, mock_redis, mock_notifier, max_processed_applications=4)
        report = await engine.run_matching(_request(batch_size=2))

        assert report.processed_applications == 4
        assert report.has_more is True
        assert fake_repo.page_calls == [(1, 2), (2, 2)]

    @pytest.mark.asyncio
    async def test_exhausted_repository_has_no_more(self, fake_repo, mock_redis, mock_notifier, make_application):
        for _ in range(5):
            fake_repo.add_application(make_application())

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request(batch_size=2))

        assert report.processed_applications == 5
        assert report.has_more is False
        assert fake_repo.page_calls == [(1, 2), (2, 2), (3, 2)]

    @pytest.mark.asyncio
    async def test_matched_applications_do_not_hide_later_pages(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        apps = [fake_repo.add_application(make_application()) for _ in range(4)]
        fake_repo.add_offer(make_offer())

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request(batch_size=2))

        assert report.processed_applications == 4
        assert report.matched_pairs == 4
        assert report.has_more is False
        assert all(fake_repo.applications[a.id]["status"] == "Matched" for a in apps)

    @pytest.mark.asyncio
    async def test_mixed_pages_visit_every_application_once(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        apps = [
            fake_repo.add_application(make_application(term_in_months=24 if i % 2 == 0 else 6))
            for i in range(6)
        ]
        fake_repo.add_offer(make_offer())

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(_request(batch_size=2))

        assert report.processed_applications == 6
        assert [p.loan_application_id for p in report.matched_loans] == [a.id for a in apps[1::2]]
        assert report.has_more is False
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_ceiling_not_exceeded_by_partial_page(
        self, fake_repo, mock_redis, mock_notifier, make_application,
    ):
        for _ in range(7):
            fake_repo.add_application(make_application())

        engine = _engine(fake_repo, mock_redis, mock_notifier, max_processed_applications=5)
        report = await engine.run_matching(_request(batch_size=2))

        assert report.processed_applications == 5
        assert report.has_more is True
        assert fake_repo.page_calls == [(1, 2), (2, 2), (3, 2)]

    @pytest.mark.asyncio
    async def test_ceiling_reached_on_last_application(
        self, fake_repo, mock_redis, mock_notifier, make_application,
    ):
        for _ in range(5):
            fake_repo.add_application(make_application())

        engine = _engine(fake_repo, mock_redis, mock_notifier, max_processed_applications=5)
        report = await engine.run_matching(_request(batch_size=2))

        assert report.processed_applications == 5
        assert report.has_more is False

    @pytest.mark.asyncio
    async def test_run_state_transitions(self, fake_repo, mock_redis, mock_notifier, make_application):
        fake_repo.add_application(make_application())
        engine = _engine(fake_repo, mock_redis, mock_notifier)

        run = engine._new_run(_request(), NOW)
        assert run.state == RunState.IDLE
        await engine._execute_run(run)

        assert run.transitions == [RunState.FETCHING, RunState.PROCESSING_PAGE]


# ===========================================================================
# TARGETED AND CRITERIA RUNS
# ===========================================================================


class TestTargetedRuns:

    @pytest.mark.asyncio
    async def test_target_application_only(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        fake_repo.add_application(make_application())
        target = fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer())

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(
            _request(target_application_id=target.id),
        )

        assert report.processed_applications == 1
        assert [p.loan_application_id for p in report.matched_loans] == [target.id]
        assert fake_repo.page_calls == [(1, 100)]

    @pytest.mark.asyncio
    async def test_unmatchable_target_application(self, fake_repo, mock_redis, mock_notifier, make_application):
        target = fake_repo.add_application(make_application(), status="PendingCollateral")

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(
            _request(target_application_id=target.id),
        )
        assert report.processed_applications == 0
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_target_offer_wins_over_cheaper(
        self, fake_repo, mock_redis, mock_notifier, make_application, make_offer,
    ):
        fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer(interest_rate=Decimal("5")))
        target = fake_repo.add_offer(make_offer(interest_rate=Decimal("12")))

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(
            _request(target_offer_id=target.id),
        )
        assert report.matched_loans[0].loan_offer_id == target.id

    @pytest.mark.asyncio
    async def test_criteria_run(self, fake_repo, mock_redis, mock_notifier, make_application, make_offer):
        fake_repo.add_application(make_application())
        fake_repo.add_offer(make_offer(interest_rate=Decimal("8")))
        fixed = fake_repo.add_offer(make_offer(interest_rate=Decimal("11")))

        report = await _engine(fake_repo, mock_redis, mock_notifier).run_matching(
            _request(
                lender_criteria=LenderCriteria(fixed_interest_rate=Decimal("11")),
                borrower_criteria=BorrowerCriteria(prefer_institutional_lenders=True),
            ),
        )
        assert report.matched_loans[0].loan_offer_id == fixed.id


class TestMatchEvents:

    def test_build_match_events(self, make_application):
        app = make_application()
        pair = MatchedLoanPair(
            loan_application_id=app.id,
            loan_offer_id=app.id,
            borrower_user_id=app.borrower_user_id,
            lender_user_id=app.id,
            principal_amount=Decimal("100"),
            interest_rate=Decimal("9.5"),
            term_in_months=6,
            collateral_valuation_amount=Decimal("1"),
            ltv_ratio=Decimal("0.5"),
            matched_date=NOW,
        )
        events = MatchingEngine.build_match_events(pair)

        assert events[0]["interest_rate"] == "9.5"
        assert events[0]["matched_date"] == NOW.isoformat()
        assert events[1]["user_id"] == str(app.id)
