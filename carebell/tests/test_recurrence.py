import asyncio
from datetime import timedelta

from carebell.models.enums import Decision, EngineState, ReminderStatus, Repeat
from carebell.services.recurrence import RecurrenceExpander

from conftest import CAREGIVER, RECIPIENT, T0


async def _done(env, doc):
    await env.timers.advance(minutes=5)
    res = await env.engine.report_decision(doc.id, Decision.DONE)
    assert res.applied
    return await env.get(doc.id)


def test_daily_reminder_gets_next_occurrence(env):
    async def go():
        doc = await env.create(repeat=Repeat.DAILY)
        done = await _done(env, doc)

        assert done.next_occurrence_id is not None
        nxt = await env.get(done.next_occurrence_id)
        assert nxt.date_time == doc.date_time + timedelta(days=1)
        assert nxt.original_date_time == nxt.date_time
        assert nxt.previous_occurrence_id == doc.id
        assert nxt.state == EngineState.SCHEDULED
        assert (nxt.created_by, nxt.for_user, nxt.title, nxt.repeat) == (CAREGIVER, RECIPIENT, doc.title, Repeat.DAILY)
        assert env.timers.names() == [f"trigger:{nxt.id}"]
        assert env.sent_of("caregiver_done")[0]["metadata"]["next_date_time"] == nxt.date_time.isoformat()

    asyncio.run(go())


def test_next_occurrence_ignores_snooze_drift(env):
    async def go():
        doc = await env.create(repeat=Repeat.WEEKLY)
        await env.timers.advance(minutes=5)
        await env.engine.report_decision(doc.id, Decision.SNOOZE, 30)
        await env.timers.advance(minutes=30)
        await env.engine.report_decision(doc.id, Decision.DONE)

        done = await env.get(doc.id)
        nxt = await env.get(done.next_occurrence_id)
        assert nxt.date_time == doc.original_date_time + timedelta(days=7)
        assert (nxt.snooze_count, nxt.miss_count) == (0, 0)

    asyncio.run(go())


def test_missed_occurrence_does_not_repeat(env):
    async def go():
        doc = await env.create(repeat=Repeat.DAILY)
        await env.timers.advance(minutes=5)
        await env.timers.advance(minutes=1)
        await env.timers.advance(minutes=10)
        await env.timers.advance(minutes=1)

        doc = await env.get(doc.id)
        assert doc.status == ReminderStatus.MISSED
        assert doc.next_occurrence_id is None
        assert len(await env.store.list_pending()) == 0

    asyncio.run(go())


def test_next_date_time_skips_past_occurrences(env):
    doc = asyncio.run(env.create(repeat=Repeat.DAILY))
    expander = RecurrenceExpander(env.store, env.clock)

    assert expander.next_date_time(doc, now=T0) == doc.original_date_time + timedelta(days=1)
    late = doc.original_date_time + timedelta(days=2, hours=1)
    assert expander.next_date_time(doc, now=late) == doc.original_date_time + timedelta(days=3)


def test_expand_is_idempotent(env):
    async def go():
        doc = await env.create(repeat=Repeat.DAILY)
        done = await _done(env, doc)
        expander = RecurrenceExpander(env.store, env.clock)

        again = await expander.expand(done)
        assert again.id == done.next_occurrence_id
        assert len(await env.store.list_for(CAREGIVER, True)) == 2

    asyncio.run(go())


def test_expand_skips_non_repeating_and_unfinished(env):
    async def go():
        expander = RecurrenceExpander(env.store, env.clock)
        once = await env.create()
        daily = await env.create(repeat=Repeat.DAILY)
        assert await expander.expand(once) is None
        assert await expander.expand(daily) is None

    asyncio.run(go())


def test_reconcile_repairs_missing_successor(env):
    async def go():
        orphan = await env.store.create({
            "created_by": CAREGIVER,
            "for_user": RECIPIENT,
            "title": "Vitamins",
            "date_time": T0 - timedelta(hours=1),
            "repeat": Repeat.DAILY,
            "status": ReminderStatus.DONE,
        })

        stats = await env.engine.reconcile()
        assert stats["expanded"] == 1

        orphan = await env.get(orphan.id)
        nxt = await env.get(orphan.next_occurrence_id)
        assert nxt.date_time == T0 - timedelta(hours=1) + timedelta(days=1)
        assert env.engine.has_live_timer(nxt.id)

        assert (await env.engine.reconcile())["expanded"] == 0

    asyncio.run(go())
