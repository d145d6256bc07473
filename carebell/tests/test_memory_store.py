import asyncio
from datetime import timedelta

import pytest

from carebell.core.errors import NotFound, StoreConflict
from carebell.models.enums import ReminderStatus
from carebell.repositories.memory_store import InMemoryReminderStore

from conftest import FakeClock, T0


def _fields(**kw):
    data = {
        "created_by": "cg",
        "for_user": "rc",
        "title": "Pill",
        "date_time": T0 + timedelta(minutes=5),
    }
    data.update(kw)
    return data


def test_create_fills_defaults():
    async def go():
        store = InMemoryReminderStore(FakeClock())
        doc = await store.create(_fields(status="pending"))
        assert len(doc.id) == 32
        assert doc.status == ReminderStatus.PENDING
        assert doc.original_date_time == doc.date_time
        assert doc.created_at == T0
        assert await store.get(doc.id) == doc

    asyncio.run(go())


def test_update_compare_and_set():
    async def go():
        store = InMemoryReminderStore(FakeClock())
        doc = await store.create(_fields())

        ringing = await store.update(
            doc.id, {"alarm_triggered_at": T0},
            expect_status=ReminderStatus.PENDING, expect_triggered_at=None,
        )
        assert ringing.alarm_triggered_at == T0

        with pytest.raises(StoreConflict) as e:
            await store.update(doc.id, {"snooze_count": 1}, expect_triggered_at=None)
        assert e.value.field == "alarm_triggered_at"

        with pytest.raises(StoreConflict):
            await store.update(doc.id, {"snooze_count": 1}, expect_status=ReminderStatus.DONE)

        assert (await store.get(doc.id)).snooze_count == 0

    asyncio.run(go())


def test_update_rejects_unknown_and_immutable_fields():
    async def go():
        store = InMemoryReminderStore(FakeClock())
        doc = await store.create(_fields())
        with pytest.raises(ValueError):
            await store.update(doc.id, {"color": "red"})
        with pytest.raises(ValueError):
            await store.update(doc.id, {"for_user": "someone-else"})

    asyncio.run(go())


def test_missing_documents():
    async def go():
        store = InMemoryReminderStore(FakeClock())
        with pytest.raises(NotFound):
            await store.get("x")
        with pytest.raises(NotFound):
            await store.update("x", {"title": "y"})
        with pytest.raises(NotFound):
            await store.delete("x")

    asyncio.run(go())


def test_subscribe_streams_sorted_views():
    async def go():
        store = InMemoryReminderStore(FakeClock())
        late = await store.create(_fields(title="Late", date_time=T0 + timedelta(hours=2)))

        stream = store.subscribe("cg", True)
        first = await stream.__anext__()
        assert [d.title for d in first] == ["Late"]

        await store.create(_fields(title="Early", date_time=T0 + timedelta(hours=1)))
        await store.create(_fields(title="Other", created_by="someone"))
        second = await stream.__anext__()
        assert [d.title for d in second] == ["Early", "Late"]

        await store.delete(late.id)
        third = await stream.__anext__()
        assert [d.title for d in third] == ["Early"]

        await stream.aclose()
        assert store.feed.subscribers == 0

        recipient_view = await store.list_for("rc", False)
        assert len(recipient_view) == 2

    asyncio.run(go())


def test_missed_tally():
    async def go():
        store = InMemoryReminderStore(FakeClock())
        assert await store.missed_count("rc") == 0
        assert await store.bump_missed("rc") == 1
        assert await store.bump_missed("rc") == 2
        await store.reset_missed("rc")
        assert await store.missed_count("rc") == 0

    asyncio.run(go())
