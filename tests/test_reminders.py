"""Reminder scheduling: arming, firing, cancellation and at-most-once delivery."""

import asyncio
import logging
from datetime import timedelta

import pytest

from studyplan.models.session import Progress, ProgressStatus, Reminder, SessionInstance
from studyplan.reminders import HandleState, ReminderScheduler

from conftest import RecordingSink, settle, utc


def make(lead: int = 30, start=None, **kw) -> SessionInstance:
    start = start or utc(2024, 1, 1, 10)
    return SessionInstance(owner_id="owner-1", title="Essay", category="homework",
                           start_time=start, end_time=start + timedelta(hours=1),
                           reminder=Reminder(lead_minutes=lead) if lead is not None else None, **kw)


class BlockingSink(RecordingSink):
    """Holds every send until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, owner_id, payload):
        self.entered.set()
        await self.release.wait()
        await super().send(owner_id, payload)


@pytest.fixture
def scheduler(store, sink, clock) -> ReminderScheduler:
    return ReminderScheduler(store, sink, clock)


class TestArm:
    @pytest.mark.asyncio
    async def test_no_reminder_is_noop(self, scheduler, store):
        session = await store.create(make(lead=None))
        assert await scheduler.arm(session) is None
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_fires_at_start_minus_lead(self, scheduler, store, sink, clock):
        session = await store.create(make(lead=30))
        handle = await scheduler.arm(session)
        assert handle.fire_at == utc(2024, 1, 1, 9, 30)
        assert scheduler.handle_for(session.id) is handle

        clock.set(utc(2024, 1, 1, 9, 29))
        await settle()
        assert handle.pending
        assert sink.sent == []

        clock.set(utc(2024, 1, 1, 9, 30))
        await scheduler.wait(handle)
        assert handle.state is HandleState.FIRED
        [(owner, payload)] = sink.sent
        assert owner == "owner-1"
        assert payload.session_id == session.id
        assert payload.title == "Essay"
        assert payload.category == "homework"
        assert (await store.get(session.id)).reminder.fired is True
        assert scheduler.handle_for(session.id) is None

    @pytest.mark.asyncio
    async def test_due_reminder_fires_immediately(self, scheduler, store, sink, clock):
        clock.set(utc(2024, 1, 1, 9, 55))
        session = await store.create(make(lead=30))
        handle = await scheduler.arm(session)
        await scheduler.wait(handle)
        assert len(sink.sent) == 1

    @pytest.mark.asyncio
    async def test_started_session_is_skipped(self, scheduler, store, sink, clock):
        clock.set(utc(2024, 1, 1, 10, 0))
        session = await store.create(make(lead=30))
        assert await scheduler.arm(session) is None
        await settle()
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_fired_reminder_is_not_rearmed(self, scheduler, store):
        session = await store.create(make(lead=30))
        session.reminder.fired = True
        assert await scheduler.arm(session) is None

    @pytest.mark.asyncio
    async def test_rearm_replaces_previous_handle(self, scheduler, store, sink, clock):
        session = await store.create(make(lead=30))
        first = await scheduler.arm(session)
        session.reminder.lead_minutes = 10
        second = await scheduler.arm(session)
        assert first.state is HandleState.CANCELLED
        assert second.fire_at == utc(2024, 1, 1, 9, 50)
        assert second.version > first.version

        clock.set(utc(2024, 1, 1, 10, 0))
        await scheduler.wait(first)
        await scheduler.wait(second)
        assert len(sink.sent) == 1


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_before_fire(self, scheduler, store, sink, clock):
        session = await store.create(make())
        handle = await scheduler.arm(session)
        assert await scheduler.cancel(handle) is True
        clock.set(utc(2024, 1, 2))
        await scheduler.wait(handle)
        await settle()
        assert sink.sent == []
        assert handle.state is HandleState.CANCELLED
        assert (await store.get(session.id)).reminder.fired is False

    @pytest.mark.asyncio
    async def test_cancel_racing_due_fire(self, scheduler, store, sink, clock):
        session = await store.create(make())
        handle = await scheduler.arm(session)
        await settle()
        assert clock.waiting == 1
        clock.set(utc(2024, 1, 1, 9, 30))  # wakes the task, which has not resumed yet
        assert await scheduler.cancel(handle) is True
        await scheduler.wait(handle)
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, scheduler, store, clock):
        session = await store.create(make())
        handle = await scheduler.arm(session)
        assert await scheduler.cancel(handle) is True
        assert await scheduler.cancel(handle) is False
        assert await scheduler.cancel(None) is False
        assert await scheduler.cancel_for("unknown") is False

    @pytest.mark.asyncio
    async def test_cancel_after_fire_is_noop(self, scheduler, store, sink, clock):
        session = await store.create(make())
        handle = await scheduler.arm(session)
        clock.set(utc(2024, 1, 1, 9, 30))
        await scheduler.wait(handle)
        assert await scheduler.cancel(handle) is False
        assert handle.state is HandleState.FIRED
        assert len(sink.sent) == 1

    @pytest.mark.asyncio
    async def test_stale_handle_cannot_cancel_new_one(self, scheduler, store):
        session = await store.create(make())
        old = await scheduler.arm(session)
        new = await scheduler.arm(session)
        assert await scheduler.cancel(old) is False
        assert new.pending

    @pytest.mark.asyncio
    async def test_close_cancels_everything(self, scheduler, store, sink, clock):
        handles = [await scheduler.arm(await store.create(make(start=utc(2024, 1, d, 10)))) for d in (1, 2, 3)]
        await scheduler.close()
        assert all(h.state is HandleState.CANCELLED for h in handles)
        clock.set(utc(2024, 2, 1))
        await settle()
        assert sink.sent == []


class TestDelivery:
    @pytest.mark.asyncio
    async def test_sink_failure_still_marks_fired(self, store, clock, caplog):
        sink = RecordingSink(fail=True)
        scheduler = ReminderScheduler(store, sink, clock)
        session = await store.create(make())
        handle = await scheduler.arm(session)
        clock.set(utc(2024, 1, 1, 9, 30))
        with caplog.at_level(logging.ERROR, logger="studyplan.reminders"):
            await scheduler.wait(handle)
        assert len(sink.sent) == 1
        assert (await store.get(session.id)).reminder.fired is True
        assert "delivery failed" in caplog.text

        assert await scheduler.arm(await store.get(session.id)) is None

    @pytest.mark.asyncio
    async def test_lead_edit_during_delivery_is_kept(self, store, clock):
        sink = BlockingSink()
        scheduler = ReminderScheduler(store, sink, clock)
        session = await store.create(make(lead=30))
        handle = await scheduler.arm(session)
        clock.set(utc(2024, 1, 1, 9, 30))
        await sink.entered.wait()
        await store.update(session.id, {"reminder": Reminder(lead_minutes=45)})
        sink.release.set()
        await scheduler.wait(handle)
        assert (await store.get(session.id)).reminder == Reminder(lead_minutes=45, fired=True)

    @pytest.mark.asyncio
    async def test_finished_session_is_not_notified(self, scheduler, store, sink, clock):
        session = await store.create(make())
        handle = await scheduler.arm(session)
        await store.update(session.id, {"progress": Progress(status=ProgressStatus.MISSED)})
        clock.set(utc(2024, 1, 1, 9, 30))
        await scheduler.wait(handle)
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_deleted_session_does_not_fire(self, scheduler, store, sink, clock):
        session = await store.create(make())
        handle = await scheduler.arm(session)
        await store.delete(session.id)
        clock.set(utc(2024, 1, 1, 9, 30))
        await scheduler.wait(handle)
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_payload_uses_latest_title(self, scheduler, store, sink, clock):
        session = await store.create(make())
        handle = await scheduler.arm(session)
        await store.update(session.id, {"title": "Essay draft"})
        clock.set(utc(2024, 1, 1, 9, 30))
        await scheduler.wait(handle)
        assert sink.sent[0][1].title == "Essay draft"

    @pytest.mark.asyncio
    async def test_never_refires_after_fire(self, scheduler, store, sink, clock):
        session = await store.create(make())
        handle = await scheduler.arm(session)
        clock.set(utc(2024, 1, 1, 9, 30))
        await scheduler.wait(handle)
        # an edit that has not yet seen the fired flag
        assert await scheduler.arm(session) is None
        assert len(sink.sent) == 1
