"""
Progress tracking — the session lifecycle state machine.

    not_started -> in_progress -> completed
    not_started -> missed
    in_progress -> missed

completed and missed are terminal; re-sending the same terminal status only
replaces the notes. Writes use an optimistic check on the prior status so a
user update and the missed sweep cannot overwrite each other.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Union

from studyplan.clock import Clock, SystemClock
from studyplan.errors import Conflict, InvalidTransition, NotFound
from studyplan.models.session import Progress, ProgressStatus, ProgressUpdate, SessionFilter, SessionInstance
from studyplan.store import SessionStore

logger = logging.getLogger("studyplan.progress")

ALLOWED_TRANSITIONS: dict[ProgressStatus, frozenset[ProgressStatus]] = {
    ProgressStatus.NOT_STARTED: frozenset({ProgressStatus.IN_PROGRESS, ProgressStatus.MISSED}),
    ProgressStatus.IN_PROGRESS: frozenset({ProgressStatus.COMPLETED, ProgressStatus.MISSED}),
    ProgressStatus.COMPLETED: frozenset({ProgressStatus.COMPLETED}),
    ProgressStatus.MISSED: frozenset({ProgressStatus.MISSED}),
}


def can_transition(current: ProgressStatus, target: ProgressStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class ProgressTracker:
    def __init__(self, store: SessionStore, clock: Optional[Clock] = None):
        self._store = store
        self._clock = clock if clock is not None else SystemClock()

    def apply(self, session: SessionInstance, update: ProgressUpdate, now: Optional[datetime] = None) -> Progress:
        """Compute the progress that results from update. Pure; raises InvalidTransition."""
        now = now or self._clock.now()
        current = session.progress
        target = update.status
        if not can_transition(current.status, target):
            raise InvalidTransition(
                f"Cannot move session {session.id} from {current.status.value} to {target.value}",
                {"id": session.id, "from": current.status.value, "to": target.value},
            )
        notes = update.notes if update.notes is not None else current.notes

        if target == current.status:
            return current.model_copy(update={"notes": notes})

        if target is ProgressStatus.IN_PROGRESS:
            return Progress(status=target, started_at=now, notes=notes)

        if target is ProgressStatus.COMPLETED:
            window = session.window_minutes
            if update.duration_minutes is not None:
                duration = min(update.duration_minutes, window)
            else:
                started = current.started_at or session.start_time
                elapsed = max((now - started).total_seconds() / 60, 0.0)
                duration = min(elapsed, window)
            return Progress(
                status=target,
                duration_minutes=round(duration, 2),
                started_at=current.started_at,
                completed_at=now,
                notes=notes,
            )

        return Progress(status=target, started_at=current.started_at, notes=notes)

    async def update(self, session_id: str, update: Union[ProgressUpdate, dict[str, Any]]) -> SessionInstance:
        update = ProgressUpdate.parse(update)
        session = await self._store.get(session_id)
        progress = self.apply(session, update)
        try:
            updated = await self._store.update(
                session_id, {"progress": progress}, expected_status=session.progress.status,
            )
        except Conflict as e:
            raise InvalidTransition(f"Session {session_id} changed while its progress was being updated", e.details) from e
        logger.debug("Session %s: %s -> %s", session_id, session.progress.status.value, progress.status.value)
        return updated

    async def sweep_missed(self, owner_id: Optional[str] = None) -> list[SessionInstance]:
        """Mark not-started sessions whose window has ended as missed."""
        now = self._clock.now()
        candidates = await self._store.find(owner_id, SessionFilter(status=ProgressStatus.NOT_STARTED))
        missed: list[SessionInstance] = []
        for session in candidates:
            if session.end_time >= now:
                continue
            progress = self.apply(session, ProgressUpdate(status=ProgressStatus.MISSED), now)
            try:
                missed.append(await self._store.update(
                    session.id, {"progress": progress}, expected_status=ProgressStatus.NOT_STARTED,
                ))
            except (Conflict, NotFound) as e:
                logger.debug("Sweep skipped session %s: %s", session.id, e)
        if missed:
            logger.info("Marked %d sessions as missed", len(missed))
        return missed
