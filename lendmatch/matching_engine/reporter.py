"""
Run reporting — assembles and serialises ``MatchingReport`` for an engine run.

The report is what every trigger hands back: the API returns it, the
Celery task returns its JSON form, the CLI prints it.
"""

from datetime import datetime

from lendmatch.matching_engine.entities import MatchingReport
from lendmatch.schemas.matching import MatchingReportOut


def start_run_report(started_at: datetime) -> MatchingReport:
    return MatchingReport(
        run_id=f"LM-{started_at:%Y%m%d-%H%M%S}",
        started_at=started_at,
    )


def finish_run_report(report: MatchingReport, completed_at: datetime) -> MatchingReport:
    report.completed_at = completed_at
    report.matched_pairs = len(report.matched_loans)
    return report


def report_to_dict(report: MatchingReport) -> dict:
    """JSON-safe form: decimals and UUIDs as strings, datetimes as ISO 8601."""
    data = MatchingReportOut.model_validate(report).model_dump(mode="json")

    if report.started_at and report.completed_at:
        data["duration_seconds"] = (report.completed_at - report.started_at).total_seconds()
    else:
        data["duration_seconds"] = None

    data["originated_loans"] = len([m for m in report.matched_loans if m.loan_id])
    data["disbursed_loans"] = len([m for m in report.matched_loans if m.disbursed])
    return data


def summarize(report: MatchingReport) -> str:
    return (
        f"processed {report.processed_applications} applications, "
        f"{report.processed_offers} offers, created {report.matched_pairs} matches"
    )
