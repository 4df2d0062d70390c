"""
Loan matching admin endpoints.

Provides manual controls for the loan matcher: a synchronous run that
returns the report, and a queued run handed to the Celery worker.
"""

import logging

from fastapi import APIRouter, Depends, Query

from lendmatch.schemas.matching import MatchingReportOut, MatchingRequest, QueuedMatchingRun

logger = logging.getLogger(__name__)

router = APIRouter()


def get_matching_engine():
    """FastAPI dependency that provides the matching engine."""
    from lendmatch.matching_engine.engine import matching_engine
    return matching_engine


def get_queue_loan_matching():
    """FastAPI dependency that provides the task-queue helper."""
    from lendmatch.tasks.matching_tasks import queue_loan_matching
    return queue_loan_matching


@router.post("/run", response_model=MatchingReportOut)
async def run_matching(
    request: MatchingRequest | None = None,
    engine=Depends(get_matching_engine),
):
    """
    Run the loan matcher immediately and return its report.

    Failures inside the run are reported in ``errors``; the endpoint
    itself only fails on an invalid request body (422).
    """
    report = await engine.run_matching(request or MatchingRequest())
    logger.info(
        "Manual loan matching completed: %d matches from %d applications, %d errors",
        report.matched_pairs, report.processed_applications, len(report.errors),
    )
    return MatchingReportOut.model_validate(report)


@router.post("/queue", response_model=QueuedMatchingRun, status_code=202)
async def queue_matching(
    request: MatchingRequest | None = None,
    priority: int = Query(10, ge=0, le=10),
    countdown: int = Query(0, ge=0),
    queue=Depends(get_queue_loan_matching),
):
    """Queue a loan matching run on the background worker."""
    payload = (request or MatchingRequest()).model_dump(mode="json", exclude_none=True)
    result = queue(payload, priority=priority, countdown=countdown)
    return QueuedMatchingRun(
        task_id=str(result.id),
        priority=priority,
        countdown=countdown,
    )
