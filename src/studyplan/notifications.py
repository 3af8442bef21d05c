"""
Notification sinks — where fired reminders are delivered.

A sink raises NotificationFailure when delivery fails. The reminder scheduler
logs that and moves on; sinks are never retried.
"""

import logging
from collections import defaultdict
from typing import Optional

import httpx

from studyplan.clock import Clock, SystemClock
from studyplan.errors import NotificationFailure
from studyplan.models.notification import Notification, ReminderPayload

logger = logging.getLogger("studyplan.notifications")

DEFAULT_INBOX_LIMIT = 10


class NotificationSink:
    async def send(self, owner_id: str, payload: ReminderPayload) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class LoggingSink(NotificationSink):
    """Writes reminders to the log. Useful as a default and for local runs."""

    def __init__(self, level: int = logging.INFO):
        self._level = level

    async def send(self, owner_id: str, payload: ReminderPayload) -> None:
        logger.log(self._level, "Reminder for %s: %s", owner_id, payload.message)


class InboxSink(NotificationSink):
    """Keeps delivered reminders in a per-owner inbox, newest first."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock if clock is not None else SystemClock()
        self._inbox: dict[str, list[Notification]] = defaultdict(list)

    async def send(self, owner_id: str, payload: ReminderPayload) -> None:
        self._inbox[owner_id].insert(0, Notification(
            owner_id=owner_id,
            message=payload.message,
            type=payload.type,
            session_id=payload.session_id,
            created_at=self._clock.now(),
        ))

    def latest(self, owner_id: str, limit: int = DEFAULT_INBOX_LIMIT) -> list[Notification]:
        return [n.model_copy() for n in self._inbox.get(owner_id, [])[:limit]]

    def unread_count(self, owner_id: str) -> int:
        return sum(1 for n in self._inbox.get(owner_id, []) if not n.read)

    def mark_all_read(self, owner_id: str) -> int:
        marked = 0
        for n in self._inbox.get(owner_id, []):
            if not n.read:
                n.read = True
                marked += 1
        return marked


class WebhookSink(NotificationSink):
    """POSTs each reminder as JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        headers = {"User-Agent": "studyplan/0.1.0", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, owner_id: str, payload: ReminderPayload) -> None:
        body = {**payload.model_dump(mode="json"), "owner_id": owner_id, "message": payload.message}
        try:
            resp = await self._client.post(self._url, json=body, headers=self._headers)
        except httpx.HTTPError as e:
            raise NotificationFailure(f"Webhook request failed: {e}", {"url": self._url}) from e
        if resp.status_code >= 400:
            raise NotificationFailure(
                f"Webhook returned HTTP {resp.status_code}: {resp.text[:200]}",
                {"url": self._url, "status": resp.status_code},
            )

    async def close(self) -> None:
        await self._client.aclose()
