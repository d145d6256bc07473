from __future__ import annotations

import itertools
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import pytest

from carebell.models.enums import ReminderLabel, Repeat
from carebell.repositories.memory_store import InMemoryReminderStore
from carebell.services.alarm_presentation import AlarmPresenter
from carebell.services.dispatcher import LogDispatcher
from carebell.services.escalation_engine import EscalationEngine, ReminderDraft
from carebell.utils.dates import UTC

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

CAREGIVER = "cg-1"
RECIPIENT = "rc-1"


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> datetime:
        self.now += timedelta(**kw)
        return self.now


class FakeTimers:
    """Timer service driven by the fake clock: nothing fires until a test advances time."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.jobs: Dict[str, tuple] = {}
        self._seq = itertools.count(1)

    def schedule(self, at, callback, *args, name=None) -> str:
        n = next(self._seq)
        handle = f"t{n}"
        self.jobs[handle] = (max(at, self.clock()), n, callback, args, name)
        return handle

    def cancel(self, handle: Optional[str]) -> bool:
        if not handle:
            return False
        return self.jobs.pop(handle, None) is not None

    def names(self) -> list:
        return sorted(j[4] for j in self.jobs.values())

    def due_at(self, name: str) -> Optional[datetime]:
        for at, _, _, _, n in self.jobs.values():
            if n == name:
                return at
        return None

    async def run_due(self) -> int:
        fired = 0
        while True:
            due = [(j[0], j[1], h) for h, j in self.jobs.items() if j[0] <= self.clock()]
            if not due:
                return fired
            _, _, handle = min(due)
            _, _, callback, args, _ = self.jobs.pop(handle)
            await callback(*args)
            fired += 1

    async def advance(self, **kw) -> int:
        self.clock.advance(**kw)
        return await self.run_due()


class Env:
    def __init__(self, **engine_kw: Any) -> None:
        self.clock = FakeClock()
        self.store = InMemoryReminderStore(self.clock)
        self.timers = FakeTimers(self.clock)
        self.dispatcher = LogDispatcher(self.clock)
        self.engine = EscalationEngine(
            self.store, self.dispatcher, self.timers, clock=self.clock, **engine_kw
        )
        self.alarm = AlarmPresenter(self.engine, self.store, self.clock)

    def restart(self) -> "Env":
        """Same store and clock, fresh process state."""
        other = Env.__new__(Env)
        other.clock = self.clock
        other.store = self.store
        other.timers = FakeTimers(self.clock)
        other.dispatcher = LogDispatcher(self.clock)
        other.engine = EscalationEngine(other.store, other.dispatcher, other.timers, clock=self.clock)
        other.alarm = AlarmPresenter(other.engine, other.store, self.clock)
        return other

    async def create(self, in_minutes: int = 5, **kw):
        draft = ReminderDraft(
            title=kw.pop("title", "Blood pressure pill"),
            date_time=self.clock() + timedelta(minutes=in_minutes),
            description=kw.pop("description", "One tablet with water"),
            label=kw.pop("label", ReminderLabel.MEDICINE),
            repeat=kw.pop("repeat", Repeat.NONE),
            follow_up_minutes=kw.pop("follow_up_minutes", None),
        )
        return await self.engine.create_reminder(CAREGIVER, RECIPIENT, draft)

    async def get(self, reminder_id: str):
        return await self.store.get(reminder_id)

    def kinds(self) -> list:
        return [m["metadata"]["type"] for m in self.dispatcher.sent]

    def sent_of(self, kind: str) -> list:
        return [m for m in self.dispatcher.sent if m["metadata"]["type"] == kind]


@pytest.fixture
def env() -> Env:
    return Env()
