# carebell/services/alarm_presentation.py
"""
What the foreground alarm screen and the reminder lists are allowed to see
and do. Reads go to the store; every decision goes through the engine.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from carebell.core.errors import NotFound
from carebell.models.enums import Decision, ReminderLabel, ReminderStatus
from carebell.models.reminder import ReminderDoc
from carebell.repositories.reminder_store import ReminderStore
from carebell.services.escalation_engine import ACTIONABLE_WINDOW, EscalationEngine, TransitionResult
from carebell.utils.dates import now_utc

logger = logging.getLogger(__name__)

FIRST_RING_DECISIONS = [Decision.DONE, Decision.SNOOZE, Decision.IN_PROGRESS]
LAST_RING_DECISIONS = [Decision.DONE, Decision.IN_PROGRESS, Decision.SNOOZE, Decision.DISMISS]


@dataclass
class ReminderFilters:
    search_query: str = ""
    label: Optional[ReminderLabel] = None
    status: Optional[ReminderStatus] = None


def apply_filters(docs: Iterable[ReminderDoc], filters: Optional[ReminderFilters]) -> List[ReminderDoc]:
    if filters is None:
        return list(docs)
    q = (filters.search_query or "").strip().lower()
    out = []
    for d in docs:
        if q and q not in d.title.lower() and q not in (d.description or "").lower():
            continue
        if filters.label is not None and d.label != filters.label:
            continue
        if filters.status is not None and d.status != filters.status:
            continue
        out.append(d)
    return out


def is_actionable(doc: ReminderDoc, now: datetime) -> bool:
    if doc.status != ReminderStatus.PENDING:
        return False
    elapsed = now - doc.date_time
    return elapsed.total_seconds() >= 0 and elapsed < ACTIONABLE_WINDOW


class AlarmPresenter:
    def __init__(
        self,
        engine: EscalationEngine,
        store: ReminderStore,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.engine = engine
        self.store = store
        self._clock = clock

    async def get_ringing_reminder(self, reminder_id: str) -> Optional[ReminderDoc]:
        """The reminder, but only while the alarm screen may still act on it."""
        try:
            doc = await self.store.get(reminder_id)
        except NotFound:
            return None
        return doc if is_actionable(doc, self._clock()) else None

    async def get_active_reminder(self, user_id: str) -> Optional[ReminderDoc]:
        now = self._clock()
        for doc in await self.store.list_for(user_id, is_author_view=False):
            if is_actionable(doc, now):
                return doc
        return None

    async def report_decision(
        self, reminder_id: str, decision: Decision, minutes: Optional[int] = None
    ) -> TransitionResult:
        return await self.engine.report_decision(reminder_id, decision, minutes)

    @staticmethod
    def available_decisions(doc: ReminderDoc) -> List[Decision]:
        if doc.status != ReminderStatus.PENDING:
            return []
        if doc.ring_stage == 0:
            return list(FIRST_RING_DECISIONS)
        return list(LAST_RING_DECISIONS)

    async def list_reminders(
        self,
        user_id: str,
        is_author_view: bool,
        filters: Optional[ReminderFilters] = None,
    ) -> List[ReminderDoc]:
        docs = await self.store.list_for(user_id, is_author_view)
        return apply_filters(docs, filters)

    async def missed_count(self, user_id: str) -> int:
        return await self.store.missed_count(user_id)

    async def reset_missed(self, user_id: str) -> None:
        await self.store.reset_missed(user_id)
        logger.info("missed tally reset", extra={"user_id": user_id})
