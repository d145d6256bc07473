# carebell/services/recurrence.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from carebell.core.errors import NotFound, StoreConflict
from carebell.models.enums import ReminderStatus, Repeat
from carebell.models.reminder import ReminderDoc
from carebell.repositories.reminder_store import ReminderStore
from carebell.utils.dates import add_days, now_utc

logger = logging.getLogger(__name__)

_STEP_DAYS = {Repeat.DAILY: 1, Repeat.WEEKLY: 7}


class RecurrenceExpander:
    """
    Turns a finished repeating occurrence into the next one.

    The step is taken from ``original_date_time``, so snoozes and misses on
    the finished occurrence never drift the series.
    """

    def __init__(self, store: ReminderStore, clock: Callable[[], datetime] = now_utc) -> None:
        self.store = store
        self._clock = clock

    def next_date_time(self, doc: ReminderDoc, now: Optional[datetime] = None) -> Optional[datetime]:
        step = _STEP_DAYS.get(doc.repeat)
        if step is None:
            return None
        now = now or self._clock()
        nxt = add_days(doc.original_date_time, step)
        # done very late (or repaired after downtime): skip occurrences already in the past
        while nxt <= now:
            nxt = add_days(nxt, step)
        return nxt

    async def expand(self, doc: ReminderDoc) -> Optional[ReminderDoc]:
        if not doc.is_repeating or doc.status != ReminderStatus.DONE:
            return None

        if doc.next_occurrence_id:
            try:
                return await self.store.get(doc.next_occurrence_id)
            except NotFound:
                logger.warning(
                    "successor %s is gone, not recreating", doc.next_occurrence_id,
                    extra={"reminder_id": doc.id},
                )
                return None

        nxt = self.next_date_time(doc)
        new = await self.store.create({
            "created_by": doc.created_by,
            "for_user": doc.for_user,
            "title": doc.title,
            "description": doc.description,
            "label": doc.label,
            "repeat": doc.repeat,
            "follow_up_minutes": doc.follow_up_minutes,
            "date_time": nxt,
            "original_date_time": nxt,
            "previous_occurrence_id": doc.id,
        })
        try:
            await self.store.update(
                doc.id, {"next_occurrence_id": new.id}, expect_status=ReminderStatus.DONE
            )
        except (NotFound, StoreConflict) as e:
            # the new occurrence stands on its own; only the back-link is lost
            logger.warning("could not link successor: %s", e, extra={"reminder_id": doc.id})

        logger.info(
            "next occurrence %s at %s", new.id, nxt.isoformat(),
            extra={"reminder_id": doc.id, "user_id": doc.for_user},
        )
        return new
