# carebell/repositories/reminder_store.py
"""
Reminder Store contract.

The store is the durable source of truth for the escalation engine: every
timer the engine holds can be re-derived from what is stored here. Both
backends (in-memory and SQLAlchemy) implement the same surface and publish
every write through a ``ChangeFeed`` so ``subscribe`` streams stay current.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Protocol

from carebell.models.enums import ReminderLabel, ReminderStatus, Repeat
from carebell.models.reminder import FIELD_NAMES, ReminderDoc
from carebell.utils.dates import ensure_utc

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

IMMUTABLE_FIELDS = frozenset({"id", "created_by", "for_user", "created_at"})
DATETIME_FIELDS = frozenset({
    "date_time", "original_date_time", "alarm_triggered_at", "completed_at",
    "snoozed_until", "created_at", "updated_at",
})
_ENUM_FIELDS = {"status": ReminderStatus, "repeat": Repeat, "label": ReminderLabel}


def new_reminder_id() -> str:
    return uuid.uuid4().hex


def normalize_fields(fields: Mapping[str, Any], *, creating: bool = False) -> dict[str, Any]:
    """Validates field names and coerces enums / datetimes to their canonical form."""
    unknown = set(fields) - FIELD_NAMES
    if unknown:
        raise ValueError(f"unknown reminder fields: {sorted(unknown)}")
    if not creating:
        frozen = IMMUTABLE_FIELDS.intersection(fields)
        if frozen:
            raise ValueError(f"immutable reminder fields: {sorted(frozen)}")

    out: dict[str, Any] = {}
    for k, v in fields.items():
        if k in _ENUM_FIELDS and v is not None:
            v = _ENUM_FIELDS[k](v)
        elif k in DATETIME_FIELDS:
            v = ensure_utc(v)
        out[k] = v
    return out


def sort_for_view(docs: Iterable[ReminderDoc], user_id: str, is_author_view: bool) -> list[ReminderDoc]:
    if is_author_view:
        picked = [d for d in docs if d.created_by == user_id]
    else:
        picked = [d for d in docs if d.for_user == user_id]
    return sorted(picked, key=lambda d: d.date_time)


class ChangeFeed:
    """Fan-out of "something changed" ticks to live subscribers.

    Each subscriber owns a queue of size one, so a burst of writes collapses
    into a single refresh.
    """

    def __init__(self) -> None:
        self._queues: set[asyncio.Queue] = set()

    def open(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._queues.add(q)
        return q

    def close(self, q: asyncio.Queue) -> None:
        self._queues.discard(q)

    def publish(self) -> None:
        for q in list(self._queues):
            try:
                q.put_nowait(None)
            except asyncio.QueueFull:
                pass

    @property
    def subscribers(self) -> int:
        return len(self._queues)


class ReminderStore(Protocol):
    async def get(self, reminder_id: str) -> ReminderDoc: ...

    async def create(self, fields: Mapping[str, Any]) -> ReminderDoc: ...

    async def update(
        self,
        reminder_id: str,
        fields: Mapping[str, Any],
        *,
        expect_status: Optional[ReminderStatus] = None,
        expect_triggered_at: Optional[datetime] = UNSET,
    ) -> ReminderDoc: ...

    async def delete(self, reminder_id: str) -> None: ...

    def subscribe(self, user_id: str, is_author_view: bool) -> AsyncIterator[list[ReminderDoc]]: ...

    async def list_for(self, user_id: str, is_author_view: bool) -> list[ReminderDoc]: ...

    async def list_pending(self) -> list[ReminderDoc]: ...

    async def list_done_repeating_without_successor(self) -> list[ReminderDoc]: ...

    async def bump_missed(self, user_id: str) -> int: ...

    async def missed_count(self, user_id: str) -> int: ...

    async def reset_missed(self, user_id: str) -> None: ...
