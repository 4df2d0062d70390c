"""
Loan matching Celery tasks.

Runs the loan matcher on the cron schedule defined by
LOAN_MATCHER_CRON_SCHEDULE.  Can also be queued on demand via the
admin API or ``queue_loan_matching``.
"""

import asyncio
import logging

from lendmatch.matching_engine.engine import matching_engine
from lendmatch.matching_engine.reporter import report_to_dict
from lendmatch.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 10
DEFAULT_ATTEMPTS = 3  # broker publish attempts


@celery_app.task(name="lendmatch.tasks.matching_tasks.run_loan_matching")
def run_loan_matching(request: dict | None = None):
    """
    Execute a loan matching run.

    Celery tasks are synchronous, so we run the async engine
    in an event loop.  The engine never raises; a run-fatal
    failure shows up in the report's ``errors``.
    """
    logger.info("Starting loan matching run: %s", request or "scheduled")
    loop = asyncio.new_event_loop()
    try:
        report = loop.run_until_complete(matching_engine.run_matching(request or {}))
        result = report_to_dict(report)
        logger.info(
            "Loan matching run %s completed: %d matches, %d errors",
            result["run_id"], result["matched_pairs"], len(result["errors"]),
        )
        return result
    finally:
        loop.close()


def queue_loan_matching(
    request: dict | None = None,
    priority: int = DEFAULT_PRIORITY,
    countdown: int = 0,
):
    """Queue a matching run; returns the Celery ``AsyncResult``."""
    result = run_loan_matching.apply_async(
        args=(request or {},),
        priority=priority,
        countdown=countdown,
        retry=True,
        retry_policy={"max_retries": DEFAULT_ATTEMPTS},
    )
    logger.info(
        "Queued loan matching run %s (priority %d, countdown %ds)",
        result.id, priority, countdown,
    )
    return result
