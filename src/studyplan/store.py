"""
Session stores — persistence for session instances.

Every store hands out copies; mutating a returned instance never changes stored state.
Bulk creation is all-or-nothing. Durable stores re-read their backing file before
every operation, so several processes can share one file.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from studyplan.clock import Clock, SystemClock
from studyplan.errors import Conflict, NotFound, StoreFailure, ValidationError
from studyplan.models.session import ProgressStatus, SessionFilter, SessionInstance

logger = logging.getLogger("studyplan.store")


def _apply_changes(data: dict[str, Any], changes: dict[str, Any]) -> None:
    for key, value in changes.items():
        if "." not in key:
            data[key] = value
            continue
        *parents, leaf = key.split(".")
        target = data
        for name in parents:
            target = target.get(name)
            if target is None:
                break
        # unset parent (e.g. the reminder was removed): nothing to set
        if target is not None:
            target[leaf] = value


class SessionStore:
    """Interface every session store implements."""

    async def create(self, session: SessionInstance) -> SessionInstance:
        raise NotImplementedError

    async def bulk_create(self, sessions: list[SessionInstance]) -> list[SessionInstance]:
        raise NotImplementedError

    async def get(self, session_id: str) -> SessionInstance:
        raise NotImplementedError

    async def find(self, owner_id: Optional[str], filter: Optional[SessionFilter] = None) -> list[SessionInstance]:
        """Sessions for owner_id (all owners when None) matching filter, ordered by start_time."""
        raise NotImplementedError

    async def update(
        self,
        session_id: str,
        changes: dict[str, Any],
        expected_status: Optional[ProgressStatus] = None,
    ) -> SessionInstance:
        """Apply changes; raise Conflict if expected_status is given and no longer current.

        Dotted keys such as ``reminder.fired`` set one nested field of the current
        record and are skipped when the parent is unset.
        """
        raise NotImplementedError

    async def delete(self, session_id: str) -> None:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock if clock is not None else SystemClock()
        self._sessions: dict[str, SessionInstance] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _refresh(self) -> None:
        """Hook for durable subclasses to pick up changes made by other writers."""

    async def _flush(self) -> None:
        """Hook for durable subclasses, called after every mutation under the lock."""

    async def _commit(self, previous: dict[str, SessionInstance]) -> None:
        try:
            await self._flush()
        except OSError as e:
            self._sessions = previous
            raise StoreFailure(f"Failed to persist sessions: {e}") from e

    async def create(self, session: SessionInstance) -> SessionInstance:
        return (await self.bulk_create([session]))[0]

    async def bulk_create(self, sessions: list[SessionInstance]) -> list[SessionInstance]:
        async with self._lock:
            self._refresh()
            ids = [s.id for s in sessions]
            duplicates = sorted({i for i in ids if ids.count(i) > 1 or i in self._sessions})
            if duplicates:
                raise StoreFailure("Duplicate session ids", {"ids": duplicates})
            now = self._clock.now()
            stored = [s.model_copy(update={"created_at": now, "updated_at": now}, deep=True) for s in sessions]
            previous = dict(self._sessions)
            for s in stored:
                self._sessions[s.id] = s
            await self._commit(previous)
        logger.debug("Stored %d sessions", len(stored))
        return [s.model_copy(deep=True) for s in stored]

    async def get(self, session_id: str) -> SessionInstance:
        self._refresh()
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFound(session_id)
        return session.model_copy(deep=True)

    async def find(self, owner_id: Optional[str], filter: Optional[SessionFilter] = None) -> list[SessionInstance]:
        self._refresh()
        matched = [
            s for s in self._sessions.values()
            if (owner_id is None or s.owner_id == owner_id) and (filter is None or filter.matches(s))
        ]
        matched.sort(key=lambda s: s.start_time)
        return [s.model_copy(deep=True) for s in matched]

    async def update(
        self,
        session_id: str,
        changes: dict[str, Any],
        expected_status: Optional[ProgressStatus] = None,
    ) -> SessionInstance:
        async with self._lock:
            self._refresh()
            current = self._sessions.get(session_id)
            if current is None:
                raise NotFound(session_id)
            if expected_status is not None and current.progress.status != expected_status:
                raise Conflict(session_id, expected_status.value, current.progress.status.value)
            data = current.model_dump()
            _apply_changes(data, changes)
            data["id"] = current.id
            data["updated_at"] = self._clock.now()
            try:
                updated = SessionInstance.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid session update: {e.errors()[0]['msg']}", details={"id": session_id}) from e
            previous = dict(self._sessions)
            self._sessions[session_id] = updated
            await self._commit(previous)
        return updated.model_copy(deep=True)

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._refresh()
            if session_id not in self._sessions:
                raise NotFound(session_id)
            previous = dict(self._sessions)
            del self._sessions[session_id]
            await self._commit(previous)


class JsonFileSessionStore(InMemorySessionStore):
    """In-memory store mirrored to a JSON file after every mutation.

    The file is the source of truth: whenever it changed since this instance last
    read or wrote it (another CLI invocation, a running ``studyplan run``), it is
    re-read before the next operation, so a write never replays a stale snapshot.
    """

    def __init__(self, path: Union[str, Path], clock: Optional[Clock] = None):
        super().__init__(clock)
        self._path = Path(path).expanduser()
        self._stamp: Optional[tuple[int, int, int]] = None
        self._refresh()

    @property
    def path(self) -> Path:
        return self._path

    def _file_stamp(self) -> Optional[tuple[int, int, int]]:
        try:
            st = self._path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreFailure(f"Failed to read {self._path}: {e}") from e
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _refresh(self) -> None:
        stamp = self._file_stamp()
        if stamp == self._stamp:
            return
        self._sessions = {} if stamp is None else self._load()
        self._stamp = stamp

    def _load(self) -> dict[str, SessionInstance]:
        try:
            raw = json.loads(self._path.read_text())
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            raise StoreFailure(f"Failed to read {self._path}: {e}") from e
        sessions: dict[str, SessionInstance] = {}
        try:
            for item in raw.get("sessions", []):
                session = SessionInstance.model_validate(item)
                sessions[session.id] = session
        except PydanticValidationError as e:
            raise StoreFailure(f"Corrupt session file {self._path}: {e.error_count()} errors") from e
        logger.debug("Loaded %d sessions from %s", len(sessions), self._path)
        return sessions

    async def _flush(self) -> None:
        payload = {"sessions": [s.model_dump(mode="json") for s in self._sessions.values()]}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2))
        tmp.replace(self._path)
        self._stamp = self._file_stamp()
