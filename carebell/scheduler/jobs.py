# carebell/scheduler/jobs.py
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from carebell.config import settings
from carebell.services.escalation_engine import EscalationEngine

logger = logging.getLogger(__name__)


async def reconcile_job(engine: EscalationEngine) -> None:
    """
    Periodic repair: re-arms pending reminders that have no live timer and
    creates recurrence successors that a failed expansion left out.
    """
    try:
        await engine.reconcile()
    except Exception:
        # next tick tries again
        logger.exception("reconcile_job failed")


def setup_scheduler(scheduler: AsyncIOScheduler, engine: EscalationEngine) -> None:
    """
    Registers the periodic jobs. Called once on startup.
    One-shot reminder timers are added by the TimerService, not here.
    """
    scheduler.add_job(
        reconcile_job,
        trigger="interval",
        seconds=settings.RECONCILE_INTERVAL_SECONDS,
        kwargs={"engine": engine},
        id="reconcile_job",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=60,
    )
