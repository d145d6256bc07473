# carebell/repositories/memory_store.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional

from carebell.core.errors import NotFound, StoreConflict
from carebell.models.enums import ReminderStatus
from carebell.models.reminder import ReminderDoc
from carebell.repositories.reminder_store import (
    UNSET,
    ChangeFeed,
    new_reminder_id,
    normalize_fields,
    sort_for_view,
)
from carebell.utils.dates import now_utc

logger = logging.getLogger(__name__)


class InMemoryReminderStore:
    """
    Process-local store. Every method runs without awaiting between the read
    and the write, so on a single event loop each call is atomic.
    """

    def __init__(self, clock: Callable[[], datetime] = now_utc) -> None:
        self._docs: Dict[str, ReminderDoc] = {}
        self._missed: Dict[str, int] = {}
        self._clock = clock
        self.feed = ChangeFeed()

    async def get(self, reminder_id: str) -> ReminderDoc:
        doc = self._docs.get(reminder_id)
        if doc is None:
            raise NotFound(reminder_id)
        return doc

    async def create(self, fields: Mapping[str, Any]) -> ReminderDoc:
        values = normalize_fields(fields, creating=True)
        values.setdefault("id", new_reminder_id())
        values.setdefault("original_date_time", values.get("date_time"))
        ts = self._clock()
        values.setdefault("created_at", ts)
        values.setdefault("updated_at", ts)
        if values["id"] in self._docs:
            raise ValueError(f"reminder {values['id']} already exists")

        doc = ReminderDoc(**values)
        self._docs[doc.id] = doc
        logger.debug("store_create", extra={"reminder_id": doc.id})
        self.feed.publish()
        return doc

    async def update(
        self,
        reminder_id: str,
        fields: Mapping[str, Any],
        *,
        expect_status: Optional[ReminderStatus] = None,
        expect_triggered_at: Optional[datetime] = UNSET,
    ) -> ReminderDoc:
        values = normalize_fields(fields)
        cur = await self.get(reminder_id)

        if expect_status is not None and cur.status != expect_status:
            raise StoreConflict(reminder_id, "status", expect_status, cur.status)
        if expect_triggered_at is not UNSET and cur.alarm_triggered_at != expect_triggered_at:
            raise StoreConflict(
                reminder_id, "alarm_triggered_at", expect_triggered_at, cur.alarm_triggered_at
            )

        values.setdefault("updated_at", self._clock())
        doc = cur.evolve(**values)
        self._docs[reminder_id] = doc
        self.feed.publish()
        return doc

    async def delete(self, reminder_id: str) -> None:
        if self._docs.pop(reminder_id, None) is None:
            raise NotFound(reminder_id)
        self.feed.publish()

    async def subscribe(self, user_id: str, is_author_view: bool) -> AsyncIterator[list[ReminderDoc]]:
        q = self.feed.open()
        try:
            while True:
                yield sort_for_view(self._docs.values(), user_id, is_author_view)
                await q.get()
        finally:
            self.feed.close(q)

    async def list_for(self, user_id: str, is_author_view: bool) -> list[ReminderDoc]:
        return sort_for_view(self._docs.values(), user_id, is_author_view)

    async def list_pending(self) -> list[ReminderDoc]:
        return sorted(
            (d for d in self._docs.values() if d.status == ReminderStatus.PENDING),
            key=lambda d: d.date_time,
        )

    async def list_done_repeating_without_successor(self) -> list[ReminderDoc]:
        return [
            d for d in self._docs.values()
            if d.status == ReminderStatus.DONE and d.is_repeating and d.next_occurrence_id is None
        ]

    # ---------- recipient missed tally ----------

    async def bump_missed(self, user_id: str) -> int:
        self._missed[user_id] = self._missed.get(user_id, 0) + 1
        return self._missed[user_id]

    async def missed_count(self, user_id: str) -> int:
        return self._missed.get(user_id, 0)

    async def reset_missed(self, user_id: str) -> None:
        self._missed[user_id] = 0
