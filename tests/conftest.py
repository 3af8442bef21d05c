import asyncio
from datetime import datetime, timezone

import pytest

from studyplan import AsyncStudyPlanner, InboxSink, InMemorySessionStore, ManualClock
from studyplan.models.notification import ReminderPayload
from studyplan.notifications import NotificationSink

T0 = datetime(2023, 12, 31, 12, 0, tzinfo=timezone.utc)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


async def settle(rounds: int = 10) -> None:
    """Let ready tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class RecordingSink(NotificationSink):
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, ReminderPayload]] = []
        self.fail = fail

    async def send(self, owner_id: str, payload: ReminderPayload) -> None:
        self.sent.append((owner_id, payload))
        if self.fail:
            from studyplan.errors import NotificationFailure
            raise NotificationFailure("sink down")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def store(clock: ManualClock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def inbox(clock: ManualClock) -> InboxSink:
    return InboxSink(clock=clock)


@pytest.fixture
def planner(store, sink, clock) -> AsyncStudyPlanner:
    return AsyncStudyPlanner(store=store, sink=sink, clock=clock)


def definition(**overrides):
    data = {
        "title": "Linear algebra",
        "category": "exam_prep",
        "start_time": utc(2024, 1, 1, 10, 0),
        "end_time": utc(2024, 1, 1, 11, 0),
    }
    data.update(overrides)
    return data
