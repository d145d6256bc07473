import asyncio
from datetime import timedelta

import pytest

from carebell.core.errors import NotFound, StoreConflict
from carebell.db import init_db, make_engine, make_sessionmaker
from carebell.models.enums import Decision, EngineState, ReminderLabel, ReminderStatus
from carebell.repositories.reminder_repo import SqlReminderStore
from carebell.services.dispatcher import LogDispatcher
from carebell.services.escalation_engine import EscalationEngine, ReminderDraft

from conftest import FakeClock, FakeTimers, T0


def _run_with_store(tmp_path, scenario):
    async def go():
        engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'carebell.db'}")
        try:
            await init_db(engine)
            clock = FakeClock()
            store = SqlReminderStore(make_sessionmaker(engine), clock)
            await scenario(store, clock)
        finally:
            await engine.dispose()

    asyncio.run(go())


def _fields(**kw):
    data = {
        "created_by": "cg",
        "for_user": "rc",
        "title": "Pill",
        "label": ReminderLabel.MEDICINE,
        "date_time": T0 + timedelta(minutes=5),
    }
    data.update(kw)
    return data


def test_round_trip_keeps_utc_and_enums(tmp_path):
    async def scenario(store, clock):
        doc = await store.create(_fields())
        got = await store.get(doc.id)
        assert got.date_time == T0 + timedelta(minutes=5)
        assert got.date_time.tzinfo is not None
        assert got.label == ReminderLabel.MEDICINE
        assert got.status == ReminderStatus.PENDING
        assert got.original_date_time == got.date_time

    _run_with_store(tmp_path, scenario)


def test_compare_and_set(tmp_path):
    async def scenario(store, clock):
        doc = await store.create(_fields())
        await store.update(
            doc.id, {"alarm_triggered_at": T0},
            expect_status=ReminderStatus.PENDING, expect_triggered_at=None,
        )
        ok = await store.update(
            doc.id, {"miss_count": 1}, expect_triggered_at=T0
        )
        assert ok.miss_count == 1

        with pytest.raises(StoreConflict):
            await store.update(doc.id, {"miss_count": 2}, expect_triggered_at=None)
        with pytest.raises(StoreConflict):
            await store.update(doc.id, {"miss_count": 2}, expect_status=ReminderStatus.DONE)
        with pytest.raises(NotFound):
            await store.update("missing", {"miss_count": 2}, expect_status=ReminderStatus.PENDING)

        assert (await store.get(doc.id)).miss_count == 1

    _run_with_store(tmp_path, scenario)


def test_lists_and_delete(tmp_path):
    async def scenario(store, clock):
        a = await store.create(_fields(title="B", date_time=T0 + timedelta(hours=2)))
        b = await store.create(_fields(title="A", date_time=T0 + timedelta(hours=1)))
        await store.update(a.id, {"status": ReminderStatus.DONE, "repeat": "daily"})

        assert [d.title for d in await store.list_for("cg", True)] == ["A", "B"]
        assert [d.id for d in await store.list_pending()] == [b.id]
        assert [d.id for d in await store.list_done_repeating_without_successor()] == [a.id]

        await store.delete(b.id)
        with pytest.raises(NotFound):
            await store.delete(b.id)

    _run_with_store(tmp_path, scenario)


def test_missed_tally(tmp_path):
    async def scenario(store, clock):
        assert await store.missed_count("rc") == 0
        assert await store.bump_missed("rc") == 1
        assert await store.bump_missed("rc") == 2
        await store.reset_missed("rc")
        assert await store.missed_count("rc") == 0

    _run_with_store(tmp_path, scenario)


def test_engine_runs_on_sql_store(tmp_path):
    async def scenario(store, clock):
        timers = FakeTimers(clock)
        engine = EscalationEngine(store, LogDispatcher(clock), timers, clock=clock)
        doc = await engine.create_reminder(
            "cg", "rc", ReminderDraft(title="Pill", date_time=T0 + timedelta(minutes=5))
        )
        await timers.advance(minutes=5)
        assert (await store.get(doc.id)).state == EngineState.RINGING_1

        await engine.report_decision(doc.id, Decision.SNOOZE, 10)
        await timers.advance(minutes=10)
        await timers.advance(minutes=1)

        doc = await store.get(doc.id)
        assert doc.state == EngineState.MISSED_FINAL
        assert (doc.snooze_count, doc.miss_count) == (1, 1)
        assert await store.missed_count("rc") == 1

    _run_with_store(tmp_path, scenario)
