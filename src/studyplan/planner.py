"""
AsyncStudyPlanner / StudyPlanner — the operations callers use.

Wires the recurrence expander, session store, reminder scheduler, progress
tracker and statistics aggregator together.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from studyplan.clock import Clock, SystemClock
from studyplan.errors import StoreFailure, ValidationError
from studyplan.models.session import (
    TERMINAL_STATUSES,
    Category,
    ProgressUpdate,
    Reminder,
    SessionDefinition,
    SessionFilter,
    SessionInstance,
    SessionPatch,
)
from studyplan.models.stats import CategoryStats
from studyplan.notifications import LoggingSink, NotificationSink
from studyplan.progress import ProgressTracker
from studyplan.recurrence import RecurrenceExpander, validate_window
from studyplan.reminders import ReminderScheduler, fire_at_for
from studyplan.stats import StatisticsAggregator
from studyplan.store import InMemorySessionStore, SessionStore

logger = logging.getLogger("studyplan.planner")

DEFAULT_SWEEP_INTERVAL_S = 300.0

# Fields a patch may not clear.
REQUIRED_FIELDS = ("title", "category", "start_time", "end_time")


def _as_filter(filter: Union[SessionFilter, dict[str, Any], None]) -> Optional[SessionFilter]:
    if filter is None or isinstance(filter, SessionFilter):
        return filter
    try:
        return SessionFilter.model_validate(filter)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid filter: {e.errors()[0]['msg']}", details={"errors": e.error_count()}) from e


class AsyncStudyPlanner:
    """Async study planner (primary)."""

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        sink: Optional[NotificationSink] = None,
        clock: Optional[Clock] = None,
        sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
    ):
        self.clock = clock if clock is not None else SystemClock()
        self.store = store if store is not None else InMemorySessionStore(clock=self.clock)
        self.sink = sink if sink is not None else LoggingSink()
        self.expander = RecurrenceExpander(self.store)
        self.reminders = ReminderScheduler(self.store, self.sink, self.clock)
        self.progress = ProgressTracker(self.store, self.clock)
        self.statistics = StatisticsAggregator(self.store)
        self._sweep_interval_s = sweep_interval_s
        self._sweeper: Optional[asyncio.Task[None]] = None

    async def __aenter__(self) -> "AsyncStudyPlanner":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def create_session(
        self, owner_id: str, definition: Union[SessionDefinition, dict[str, Any]],
    ) -> list[SessionInstance]:
        """Create a single or recurring session and arm a reminder for each instance."""
        sessions = await self.expander.materialize(definition, owner_id)
        for session in sessions:
            await self.reminders.arm(session)
        logger.info("Created %d session(s) for %s", len(sessions), owner_id)
        return sessions

    async def update_session(self, session_id: str, patch: Union[SessionPatch, dict[str, Any]]) -> SessionInstance:
        """Edit a session. Changing start_time or the reminder re-arms the reminder,
        unless the session is already completed or missed.
        """
        changes = SessionPatch.parse(patch).changes()
        current = await self.store.get(session_id)

        cleared = [name for name in REQUIRED_FIELDS if name in changes and changes[name] is None]
        if cleared:
            raise ValidationError(f"Cannot clear required field(s): {', '.join(cleared)}", details={"fields": cleared})
        if "title" in changes:
            changes["title"] = changes["title"].strip()
            if not changes["title"]:
                raise ValidationError("title must not be empty")
        validate_window(changes.get("start_time", current.start_time), changes.get("end_time", current.end_time))
        if "reminder" in changes:
            requested = changes["reminder"]
            already_fired = bool(current.reminder and current.reminder.fired)
            changes["reminder"] = None if requested is None else Reminder(lead_minutes=requested.lead_minutes, fired=already_fired)

        updated = await self.store.update(session_id, changes)
        if "start_time" in changes or "reminder" in changes:
            if updated.progress.status in TERMINAL_STATUSES:
                await self.reminders.cancel_for(session_id)
            else:
                await self.reminders.arm(updated)
        return updated

    async def delete_session(self, session_id: str) -> None:
        await self.store.get(session_id)
        await self.reminders.discard(session_id)
        await self.store.delete(session_id)
        logger.info("Deleted session %s", session_id)

    async def update_progress(self, session_id: str, update: Union[ProgressUpdate, dict[str, Any]]) -> SessionInstance:
        return await self.progress.update(session_id, update)

    async def list_sessions(
        self, owner_id: str, filter: Union[SessionFilter, dict[str, Any], None] = None,
    ) -> list[SessionInstance]:
        return await self.store.find(owner_id, _as_filter(filter))

    async def get_statistics(
        self, owner_id: str, filter: Union[SessionFilter, dict[str, Any], None] = None,
    ) -> dict[Category, CategoryStats]:
        return await self.statistics.summarize(owner_id, _as_filter(filter))

    async def sweep_missed(self, owner_id: Optional[str] = None) -> list[SessionInstance]:
        return await self.progress.sweep_missed(owner_id)

    async def restore_reminders(self, owner_id: Optional[str] = None) -> int:
        """Arm unfired reminders of persisted sessions, e.g. after a restart.

        Sessions whose reminder is already armed for the same time are left alone, so
        calling this repeatedly only picks up sessions added or moved by other writers.
        """
        armed = 0
        for session in await self.store.find(owner_id):
            if session.reminder is None or session.reminder.fired:
                continue
            if session.progress.status in TERMINAL_STATUSES:
                continue
            handle = self.reminders.handle_for(session.id)
            if handle is not None and handle.pending and handle.fire_at == fire_at_for(session):
                continue
            if await self.reminders.arm(session) is not None:
                armed += 1
        if armed:
            logger.info("Restored %d reminder(s)", armed)
        return armed

    def start_sweeper(self, interval_s: Optional[float] = None, rearm: bool = False) -> "asyncio.Task[None]":
        """Run the missed sweep periodically in the background.

        With rearm, every pass also arms reminders for sessions other processes
        created or moved in a shared store.
        """
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(
                self._sweep_forever(interval_s or self._sweep_interval_s, rearm), name="studyplan:sweeper",
            )
        return self._sweeper

    async def _sweep_forever(self, interval_s: float, rearm: bool) -> None:
        while True:
            try:
                await self.sweep_missed()
                if rearm:
                    await self.restore_reminders()
            except StoreFailure as e:
                logger.error(f"Missed sweep failed: {e}")
            await self.clock.sleep_until(self.clock.now() + timedelta(seconds=interval_s))

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        await self.reminders.close()
        await self.sink.close()


class StudyPlanner:
    """Sync wrapper around AsyncStudyPlanner. Runs the event loop internally.

    Reminder tasks only make progress while a call is running on the loop;
    long-lived processes should use AsyncStudyPlanner.
    """

    def __init__(self, **kwargs: Any):
        self._loop = asyncio.new_event_loop()
        self._async = AsyncStudyPlanner(**kwargs)

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    @property
    def store(self) -> SessionStore:
        return self._async.store

    def create_session(self, owner_id: str, definition: Union[SessionDefinition, dict[str, Any]]) -> list[SessionInstance]:
        return self._run(self._async.create_session(owner_id, definition))

    def update_session(self, session_id: str, patch: Union[SessionPatch, dict[str, Any]]) -> SessionInstance:
        return self._run(self._async.update_session(session_id, patch))

    def delete_session(self, session_id: str) -> None:
        self._run(self._async.delete_session(session_id))

    def update_progress(self, session_id: str, update: Union[ProgressUpdate, dict[str, Any]]) -> SessionInstance:
        return self._run(self._async.update_progress(session_id, update))

    def list_sessions(self, owner_id: str, filter: Union[SessionFilter, dict[str, Any], None] = None) -> list[SessionInstance]:
        return self._run(self._async.list_sessions(owner_id, filter))

    def get_statistics(
        self, owner_id: str, filter: Union[SessionFilter, dict[str, Any], None] = None,
    ) -> dict[Category, CategoryStats]:
        return self._run(self._async.get_statistics(owner_id, filter))

    def sweep_missed(self, owner_id: Optional[str] = None) -> list[SessionInstance]:
        return self._run(self._async.sweep_missed(owner_id))

    def restore_reminders(self, owner_id: Optional[str] = None) -> int:
        return self._run(self._async.restore_reminders(owner_id))

    def close(self) -> None:
        self._run(self._async.close())
        self._loop.close()
