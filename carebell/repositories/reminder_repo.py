from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Mapping, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carebell.core.errors import NotFound, StoreConflict
from carebell.models.enums import ReminderLabel, ReminderStatus, Repeat
from carebell.models.reminder import ReminderDoc, ReminderRow
from carebell.repositories.reminder_store import (
    DATETIME_FIELDS,
    UNSET,
    ChangeFeed,
    new_reminder_id,
    normalize_fields,
)
from carebell.repositories.user_repo import UserRepo
from carebell.utils.dates import ensure_utc, now_utc

logger = logging.getLogger(__name__)


def _to_row_values(values: Mapping[str, Any]) -> dict[str, Any]:
    return {k: (v.value if hasattr(v, "value") else v) for k, v in values.items()}


def _to_doc(row: ReminderRow) -> ReminderDoc:
    data = {}
    for name in ReminderDoc.__dataclass_fields__:
        v = getattr(row, name)
        if name in DATETIME_FIELDS:
            v = ensure_utc(v)
        data[name] = v
    data["status"] = ReminderStatus(row.status)
    data["repeat"] = Repeat(row.repeat)
    data["label"] = ReminderLabel(row.label)
    data["dismissed"] = bool(row.dismissed)
    return ReminderDoc(**data)


class SqlReminderStore:
    """
    Reminder store on SQLAlchemy async sessions.
    Compare-and-set goes into the UPDATE's WHERE clause, so the check holds
    across processes as well.
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.sessions = sessions
        self._clock = clock
        self.feed = ChangeFeed()

    async def get(self, reminder_id: str) -> ReminderDoc:
        async with self.sessions() as s:
            row = await s.get(ReminderRow, reminder_id)
            if row is None:
                raise NotFound(reminder_id)
            return _to_doc(row)

    async def create(self, fields: Mapping[str, Any]) -> ReminderDoc:
        values = normalize_fields(fields, creating=True)
        values.setdefault("id", new_reminder_id())
        values.setdefault("original_date_time", values.get("date_time"))
        ts = self._clock()
        values.setdefault("created_at", ts)
        values.setdefault("updated_at", ts)

        async with self.sessions() as s:
            row = ReminderRow(**_to_row_values(values))
            s.add(row)
            await s.commit()
            await s.refresh(row)
            doc = _to_doc(row)
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
        values.setdefault("updated_at", self._clock())

        stmt = update(ReminderRow).where(ReminderRow.id == reminder_id)
        if expect_status is not None:
            stmt = stmt.where(ReminderRow.status == ReminderStatus(expect_status).value)
        if expect_triggered_at is not UNSET:
            if expect_triggered_at is None:
                stmt = stmt.where(ReminderRow.alarm_triggered_at.is_(None))
            else:
                stmt = stmt.where(ReminderRow.alarm_triggered_at == ensure_utc(expect_triggered_at))

        async with self.sessions() as s:
            res = await s.execute(stmt.values(**_to_row_values(values)))
            if res.rowcount == 0:
                row = await s.get(ReminderRow, reminder_id)
                if row is None:
                    raise NotFound(reminder_id)
                cur = _to_doc(row)
                if expect_status is not None and cur.status != expect_status:
                    raise StoreConflict(reminder_id, "status", expect_status, cur.status)
                raise StoreConflict(
                    reminder_id, "alarm_triggered_at", expect_triggered_at, cur.alarm_triggered_at
                )
            await s.commit()
            row = await s.get(ReminderRow, reminder_id, populate_existing=True)
            doc = _to_doc(row)
        self.feed.publish()
        return doc

    async def delete(self, reminder_id: str) -> None:
        async with self.sessions() as s:
            res = await s.execute(delete(ReminderRow).where(ReminderRow.id == reminder_id))
            if res.rowcount == 0:
                raise NotFound(reminder_id)
            await s.commit()
        self.feed.publish()

    async def list_for(self, user_id: str, is_author_view: bool) -> list[ReminderDoc]:
        col = ReminderRow.created_by if is_author_view else ReminderRow.for_user
        async with self.sessions() as s:
            q = await s.execute(
                select(ReminderRow).where(col == user_id).order_by(ReminderRow.date_time.asc())
            )
            return [_to_doc(r) for r in q.scalars().all()]

    async def subscribe(self, user_id: str, is_author_view: bool) -> AsyncIterator[list[ReminderDoc]]:
        q = self.feed.open()
        try:
            while True:
                yield await self.list_for(user_id, is_author_view)
                await q.get()
        finally:
            self.feed.close(q)

    async def list_pending(self) -> list[ReminderDoc]:
        async with self.sessions() as s:
            q = await s.execute(
                select(ReminderRow)
                .where(ReminderRow.status == ReminderStatus.PENDING.value)
                .order_by(ReminderRow.date_time.asc())
            )
            return [_to_doc(r) for r in q.scalars().all()]

    async def list_done_repeating_without_successor(self) -> list[ReminderDoc]:
        async with self.sessions() as s:
            q = await s.execute(
                select(ReminderRow)
                .where(ReminderRow.status == ReminderStatus.DONE.value)
                .where(ReminderRow.repeat != Repeat.NONE.value)
                .where(ReminderRow.next_occurrence_id.is_(None))
            )
            return [_to_doc(r) for r in q.scalars().all()]

    # ---------- recipient missed tally ----------

    async def bump_missed(self, user_id: str) -> int:
        async with self.sessions() as s:
            return await UserRepo(s).bump_missed(user_id)

    async def missed_count(self, user_id: str) -> int:
        async with self.sessions() as s:
            return await UserRepo(s).missed_count(user_id)

    async def reset_missed(self, user_id: str) -> None:
        async with self.sessions() as s:
            await UserRepo(s).reset_missed(user_id)
