from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .enums import EngineState, ReminderLabel, ReminderStatus, Repeat

DEFAULT_FOLLOW_UP_MINUTES = 10


class ReminderRow(Base):
    __tablename__ = "reminders"
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    created_by: Mapped[str] = mapped_column(String(64), index=True)
    for_user: Mapped[str] = mapped_column(String(64), index=True)

    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    label: Mapped[str] = mapped_column(String(16), default=ReminderLabel.OTHER.value)

    date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    original_date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    repeat: Mapped[str] = mapped_column(String(8), default=Repeat.NONE.value)
    follow_up_minutes: Mapped[int] = mapped_column(Integer, default=DEFAULT_FOLLOW_UP_MINUTES)

    snooze_count: Mapped[int] = mapped_column(Integer, default=0)
    miss_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(16), index=True, default=ReminderStatus.PENDING.value)
    dismissed: Mapped[bool] = mapped_column(Boolean, default=False)

    alarm_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    miss_timer_handle: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    notification_handle: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    previous_occurrence_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    next_occurrence_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<ReminderRow id={self.id} status={self.status} date_time={self.date_time}>"


@dataclass(frozen=True)
class ReminderDoc:
    """Immutable snapshot of a stored reminder document.

    Only the store produces these; everyone else derives a changed copy with
    ``evolve`` and hands the changed fields back to ``ReminderStore.update``.
    """

    id: str
    created_by: str
    for_user: str
    title: str
    date_time: datetime
    original_date_time: datetime
    description: Optional[str] = None
    label: ReminderLabel = ReminderLabel.OTHER
    repeat: Repeat = Repeat.NONE
    follow_up_minutes: int = DEFAULT_FOLLOW_UP_MINUTES
    snooze_count: int = 0
    miss_count: int = 0
    status: ReminderStatus = ReminderStatus.PENDING
    dismissed: bool = False
    alarm_triggered_at: Optional[datetime] = None
    miss_timer_handle: Optional[str] = None
    notification_handle: Optional[str] = None
    completed_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    previous_occurrence_id: Optional[str] = None
    next_occurrence_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def ring_stage(self) -> int:
        # 0: first ring, may reschedule; 1: last ring, escalate on anything but done
        return min(self.snooze_count + self.miss_count, 1)

    @property
    def is_ringing(self) -> bool:
        return self.status == ReminderStatus.PENDING and self.alarm_triggered_at is not None

    @property
    def is_repeating(self) -> bool:
        return self.repeat != Repeat.NONE

    @property
    def state(self) -> EngineState:
        if self.status == ReminderStatus.DONE:
            return EngineState.DONE
        if self.status == ReminderStatus.SNOOZED:
            return EngineState.SNOOZED_FINAL
        if self.status == ReminderStatus.MISSED:
            return EngineState.DISMISSED_FINAL if self.dismissed else EngineState.MISSED_FINAL
        if self.alarm_triggered_at is None:
            return EngineState.SCHEDULED
        return EngineState.RINGING_1 if self.ring_stage == 0 else EngineState.RINGING_2

    def evolve(self, **changes) -> "ReminderDoc":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        for k, v in data.items():
            if isinstance(v, datetime):
                data[k] = v.isoformat()
            elif hasattr(v, "value"):
                data[k] = v.value
        data["ring_stage"] = self.ring_stage
        data["state"] = self.state.value
        return data


FIELD_NAMES = frozenset(f.name for f in dataclasses.fields(ReminderDoc))
