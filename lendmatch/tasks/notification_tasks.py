"""
Notification Celery tasks — async delivery of match events.

Offloads notification delivery to background workers so a slow or
failing gateway never holds up a matching run.
"""

import asyncio
import logging

from lendmatch.services.notification_service import notification_service
from lendmatch.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="lendmatch.tasks.notification_tasks.send_match_notification")
def send_match_notification(event: dict):
    """Notify a borrower or lender about a new match."""
    loop = asyncio.new_event_loop()
    try:
        result = loop.run_until_complete(notification_service.notify_match(event))
        logger.info(
            "%s notification for user %s: %s",
            event.get("type"), event.get("user_id"), result.get("status"),
        )
        return result
    finally:
        loop.close()
