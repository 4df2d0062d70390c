"""Tests for run reports and the matching request schema."""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from lendmatch.matching_engine.entities import MatchedLoanPair
from lendmatch.matching_engine.reporter import (
    finish_run_report,
    report_to_dict,
    start_run_report,
    summarize,
)
from lendmatch.schemas.matching import MatchingRequest
from tests.fakes import NOW


def _pair(**overrides) -> MatchedLoanPair:
    defaults = {
        "loan_application_id": uuid.uuid4(),
        "loan_offer_id": uuid.uuid4(),
        "borrower_user_id": uuid.uuid4(),
        "lender_user_id": uuid.uuid4(),
        "principal_amount": Decimal("3000000000"),
        "interest_rate": Decimal("9.5"),
        "term_in_months": 6,
        "collateral_valuation_amount": Decimal("5000000000000000000000"),
        "ltv_ratio": Decimal("0.6"),
        "matched_date": NOW,
    }
    defaults.update(overrides)
    return MatchedLoanPair(**defaults)


class TestRunReport:

    def test_run_id_from_start_time(self):
        assert start_run_report(NOW).run_id == "LM-20260315-120000"

    def test_finish_counts_matches(self):
        report = start_run_report(NOW)
        report.matched_loans.extend([_pair(), _pair()])
        finish_run_report(report, NOW + timedelta(seconds=3))
        assert report.matched_pairs == 2

    def test_report_to_dict(self):
        report = start_run_report(NOW)
        report.processed_applications = 3
        report.matched_loans.extend([
            _pair(loan_id=uuid.uuid4(), disbursed=True),
            _pair(loan_id=uuid.uuid4()),
            _pair(origination_error="origination service down"),
        ])
        data = report_to_dict(finish_run_report(report, NOW + timedelta(seconds=2)))

        assert data["matched_pairs"] == 3
        assert data["duration_seconds"] == 2
        assert data["originated_loans"] == 2
        assert data["disbursed_loans"] == 1
        assert data["matched_loans"][0]["interest_rate"] == "9.5"
        assert data["matched_loans"][2]["origination_error"] == "origination service down"
        assert data["started_at"].startswith("2026-03-15T12:00:00")

    def test_summarize(self):
        report = start_run_report(NOW)
        report.processed_applications = 4
        report.processed_offers = 7
        assert summarize(finish_run_report(report, NOW)) == (
            "processed 4 applications, 7 offers, created 0 matches"
        )


class TestMatchingRequest:

    def test_defaults(self):
        request = MatchingRequest()
        assert request.as_of_date is None
        assert request.batch_size is None
        assert request.has_criteria is False

    def test_naive_as_of_date_is_utc(self):
        request = MatchingRequest(as_of_date=datetime(2026, 3, 15, 12, 0))
        assert request.as_of_date == NOW

    @pytest.mark.parametrize("batch_size", [0, 101])
    def test_batch_size_bounds(self, batch_size):
        with pytest.raises(ValidationError):
            MatchingRequest(batch_size=batch_size)

    def test_criteria_flag(self):
        assert MatchingRequest(lender_criteria={"duration_options": [6]}).has_criteria is True
