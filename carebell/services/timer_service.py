# carebell/services/timer_service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Protocol, Set
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from carebell.utils.dates import now_utc

logger = logging.getLogger(__name__)

TimerCallback = Callable[..., Awaitable[Any]]


class Timers(Protocol):
    def schedule(self, at: datetime, callback: TimerCallback, *args: Any, name: Optional[str] = None) -> str: ...

    def cancel(self, handle: Optional[str]) -> bool: ...


class TimerService:
    """
    One-shot timers on top of APScheduler ``date`` jobs.

    The handle is the job id. Timers live in memory only: after a restart the
    escalation engine re-arms them from the stored reminder fields.
    """

    def __init__(self, scheduler: AsyncIOScheduler, clock: Callable[[], datetime] = now_utc) -> None:
        self.scheduler = scheduler
        self._clock = clock
        self._live: Set[str] = set()

    def schedule(self, at: datetime, callback: TimerCallback, *args: Any, name: Optional[str] = None) -> str:
        run_at = max(at, self._clock())
        handle = uuid4().hex
        self.scheduler.add_job(
            self._run,
            trigger="date",
            run_date=run_at,
            args=[handle, callback, args],
            id=handle,
            name=name or getattr(callback, "__name__", "timer"),
            misfire_grace_time=None,  # a late timer still has to fire
            coalesce=True,
        )
        self._live.add(handle)
        logger.debug("timer_scheduled", extra={"handle": handle, "at": run_at.isoformat()})
        return handle

    def cancel(self, handle: Optional[str]) -> bool:
        if not handle:
            return False
        self._live.discard(handle)
        try:
            self.scheduler.remove_job(handle)
        except JobLookupError:
            # already fired or cancelled
            return False
        return True

    def pending(self) -> int:
        return len(self._live)

    async def _run(self, handle: str, callback: TimerCallback, args: tuple) -> None:
        self._live.discard(handle)
        try:
            await callback(*args)
        except Exception:
            logger.exception("timer_callback_failed", extra={"handle": handle})
