"""
Reminder scheduler — one deferred asyncio task per armed reminder.

Each task waits on the clock until an absolute deadline (start_time - lead time),
so cancelling the task pre-empts the wait. Per-session locks serialize
arm/cancel/fire, and every handle carries the session's version number at
arm time; a task whose version is no longer current never fires.

Delivery is at-most-once: a handle is marked fired under the lock before the
sink is called, and a failed delivery is logged, not retried.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from studyplan.clock import Clock, SystemClock
from studyplan.errors import NotFound, StoreFailure
from studyplan.models.notification import ReminderPayload
from studyplan.models.session import TERMINAL_STATUSES, SessionInstance
from studyplan.notifications import LoggingSink, NotificationSink
from studyplan.store import SessionStore

logger = logging.getLogger("studyplan.reminders")


def fire_at_for(session: SessionInstance) -> Optional[datetime]:
    """When the session's reminder is due, or None when it has no reminder."""
    if session.reminder is None:
        return None
    return session.start_time - timedelta(minutes=session.reminder.lead_minutes)


class HandleState(str, Enum):
    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"


class ReminderHandle:
    """Opaque reference to one armed reminder."""

    __slots__ = ("session_id", "fire_at", "version", "state", "_task")

    def __init__(self, session_id: str, fire_at: datetime, version: int):
        self.session_id = session_id
        self.fire_at = fire_at
        self.version = version
        self.state = HandleState.PENDING
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def pending(self) -> bool:
        return self.state is HandleState.PENDING

    def __repr__(self) -> str:
        return (f"ReminderHandle(session_id={self.session_id!r}, fire_at={self.fire_at.isoformat()!r}, "
                f"version={self.version}, state={self.state.value!r})")


class ReminderScheduler:
    def __init__(
        self,
        store: SessionStore,
        sink: Optional[NotificationSink] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._sink = sink if sink is not None else LoggingSink()
        self._clock = clock if clock is not None else SystemClock()
        self._handles: dict[str, ReminderHandle] = {}
        self._versions: dict[str, int] = defaultdict(int)
        self._locks: dict[str, asyncio.Lock] = {}
        self._fired: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def handle_for(self, session_id: str) -> Optional[ReminderHandle]:
        return self._handles.get(session_id)

    def pending(self) -> list[ReminderHandle]:
        return sorted(self._handles.values(), key=lambda h: h.fire_at)

    async def arm(self, session: SessionInstance) -> Optional[ReminderHandle]:
        """Arm (or re-arm) the reminder for session. Returns None when nothing was armed."""
        async with self._lock_for(session.id):
            self._cancel_locked(session.id)
            if session.reminder is None:
                return None
            if session.reminder.fired or session.id in self._fired:
                logger.debug("Reminder for %s already fired, not re-arming", session.id)
                return None
            now = self._clock.now()
            if session.start_time <= now:
                logger.info("Session %s already started at %s, reminder skipped", session.id, session.start_time)
                return None

            fire_at = fire_at_for(session)
            self._versions[session.id] += 1
            handle = ReminderHandle(session.id, fire_at, self._versions[session.id])
            task = asyncio.create_task(self._run(handle), name=f"reminder:{session.id}")
            handle._task = task
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
            self._handles[session.id] = handle

        if fire_at <= now:
            logger.debug("Reminder for %s is already due, firing now", session.id)
        else:
            logger.debug("Armed reminder for %s at %s", session.id, fire_at.isoformat())
        return handle

    async def cancel(self, handle: Optional[ReminderHandle]) -> bool:
        """Cancel handle. Cancelling an already fired, cancelled or stale handle is a no-op."""
        if handle is None or not handle.pending:
            return False
        async with self._lock_for(handle.session_id):
            return self._cancel_locked(handle.session_id, handle)

    async def cancel_for(self, session_id: str) -> bool:
        async with self._lock_for(session_id):
            return self._cancel_locked(session_id)

    async def discard(self, session_id: str) -> None:
        """Cancel any reminder for a session that is going away and forget its bookkeeping."""
        async with self._lock_for(session_id):
            self._cancel_locked(session_id)
            self._versions.pop(session_id, None)
            self._fired.discard(session_id)
        self._locks.pop(session_id, None)

    def _cancel_locked(self, session_id: str, handle: Optional[ReminderHandle] = None) -> bool:
        target = handle or self._handles.get(session_id)
        if target is None or not target.pending:
            return False
        target.state = HandleState.CANCELLED
        self._versions[session_id] += 1
        if target._task is not None:
            target._task.cancel()
        if self._handles.get(session_id) is target:
            del self._handles[session_id]
        logger.debug("Cancelled reminder for %s (was due %s)", session_id, target.fire_at.isoformat())
        return True

    async def _run(self, handle: ReminderHandle) -> None:
        await self._clock.sleep_until(handle.fire_at)
        async with self._lock_for(handle.session_id):
            if not handle.pending or self._versions[handle.session_id] != handle.version:
                return
            handle.state = HandleState.FIRED
            self._fired.add(handle.session_id)
            if self._handles.get(handle.session_id) is handle:
                del self._handles[handle.session_id]
        await self._deliver(handle)

    async def _deliver(self, handle: ReminderHandle) -> None:
        try:
            session = await self._store.get(handle.session_id)
        except NotFound:
            logger.info("Session %s was removed before its reminder fired", handle.session_id)
            return
        if session.reminder is None or session.reminder.fired:
            return
        if session.progress.status in TERMINAL_STATUSES:
            logger.debug("Session %s is already %s, reminder dropped", session.id, session.progress.status.value)
            return

        payload = ReminderPayload(
            session_id=session.id,
            owner_id=session.owner_id,
            title=session.title,
            category=session.category,
            lead_minutes=session.reminder.lead_minutes,
            start_time=session.start_time,
        )
        try:
            await self._sink.send(session.owner_id, payload)
            logger.info("Reminder sent for session %s to %s", session.id, session.owner_id)
        except Exception as e:
            logger.error(f"Reminder delivery failed for session {session.id}: {e}")

        try:
            await self._store.update(session.id, {"reminder.fired": True})
        except NotFound:
            logger.info("Session %s was removed while its reminder was being sent", session.id)
        except StoreFailure as e:
            logger.error(f"Could not mark reminder fired for session {session.id}: {e}")

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Reminder task %s crashed: %r", task.get_name(), exc)

    async def wait(self, handle: ReminderHandle) -> None:
        """Block until the handle's task has fired or been cancelled."""
        if handle._task is not None:
            await asyncio.gather(handle._task, return_exceptions=True)

    async def close(self) -> None:
        """Cancel every pending reminder and wait for in-flight deliveries to finish."""
        for session_id in list(self._handles):
            await self.cancel_for(session_id)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
