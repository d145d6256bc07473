import asyncio
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from carebell.services.timer_service import TimerService
from carebell.utils.dates import now_utc


def test_due_timer_fires_and_future_timer_cancels():
    async def go():
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.start()
        try:
            timers = TimerService(scheduler)
            fired = asyncio.Event()
            got = []

            async def callback(value):
                got.append(value)
                fired.set()

            # an instant in the past runs right away
            timers.schedule(now_utc() - timedelta(seconds=5), callback, "now", name="past")
            later = timers.schedule(now_utc() + timedelta(hours=1), callback, "later")

            await asyncio.wait_for(fired.wait(), timeout=5)
            assert got == ["now"]
            assert timers.pending() == 1

            assert timers.cancel(later) is True
            assert timers.cancel(later) is False
            assert timers.cancel(None) is False
            assert timers.pending() == 0
        finally:
            scheduler.shutdown(wait=False)

    asyncio.run(go())


def test_failing_callback_is_contained():
    async def go():
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.start()
        try:
            timers = TimerService(scheduler)
            done = asyncio.Event()

            async def boom():
                raise RuntimeError("boom")

            async def ok():
                done.set()

            timers.schedule(now_utc(), boom)
            timers.schedule(now_utc(), ok)
            await asyncio.wait_for(done.wait(), timeout=5)
        finally:
            scheduler.shutdown(wait=False)

    asyncio.run(go())
