"""
Notification service — delivers match events to the notification gateway.

Events are posted as JSON to ``NOTIFICATION_API_URL``.  With no URL
configured (local development) delivery is skipped and logged.
"""

import logging

import httpx

from lendmatch.config import settings

logger = logging.getLogger(__name__)


class NotificationService:
    """Posts borrower and lender match events over HTTP."""

    def __init__(self, api_url: str | None = None, api_key: str | None = None, timeout: float = 10):
        self.api_url = api_url if api_url is not None else settings.NOTIFICATION_API_URL
        self.api_key = api_key if api_key is not None else settings.NOTIFICATION_API_KEY
        self.timeout = timeout

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def send_event(self, event: dict) -> dict:
        """Deliver one event; raises ``httpx.HTTPError`` on transport or HTTP failure."""
        if not self.api_url:
            logger.info(
                "Notification API not configured, skipping %s for user %s",
                event.get("type"), event.get("user_id"),
            )
            return {"type": event.get("type"), "status": "skipped"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{self.api_url.rstrip('/')}/notifications",
                json=event,
                headers=self._headers(),
            )
            resp.raise_for_status()

        return {"type": event.get("type"), "status": "sent", "status_code": resp.status_code}

    async def notify_match(self, event: dict) -> dict:
        """Deliver a match event, logging and swallowing any failure."""
        try:
            return await self.send_event(event)
        except Exception:
            logger.exception(
                "Failed to send %s notification to user %s",
                event.get("type"), event.get("user_id"),
            )
            return {"type": event.get("type"), "status": "failed"}


notification_service = NotificationService()
