"""
Clocks — the injectable time source used for reminders, expiry and the missed sweep.

Deadlines are absolute datetimes; waiting is always "until", never "for",
so a late wake-up cannot accumulate drift.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

# Long waits are split so a wall-clock jump is noticed within this many seconds.
MAX_SLEEP_CHUNK_S = 60.0


class Clock(Protocol):
    def now(self) -> datetime: ...

    async def sleep_until(self, deadline: datetime) -> None: ...


def ensure_aware(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep_until(self, deadline: datetime) -> None:
        while True:
            remaining = (deadline - self.now()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, MAX_SLEEP_CHUNK_S))


class ManualClock:
    """A clock that only moves when told to.

    Waiters registered through sleep_until() are released by advance()/set()
    once the new time reaches their deadline.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_aware(start) if start else datetime.now(timezone.utc)
        self._waiters: list[tuple[datetime, asyncio.Future[None]]] = []

    def now(self) -> datetime:
        return self._now

    async def sleep_until(self, deadline: datetime) -> None:
        if deadline <= self._now:
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((deadline, fut))
        await fut

    def set(self, value: datetime) -> None:
        self._now = ensure_aware(value)
        still_waiting = []
        for deadline, fut in self._waiters:
            if fut.done():
                continue
            if deadline <= self._now:
                fut.set_result(None)
            else:
                still_waiting.append((deadline, fut))
        self._waiters = still_waiting

    def advance(self, delta: timedelta) -> None:
        self.set(self._now + delta)

    @property
    def waiting(self) -> int:
        return sum(1 for _, fut in self._waiters if not fut.done())
