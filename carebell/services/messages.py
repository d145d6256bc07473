# carebell/services/messages.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from carebell.models.reminder import ReminderDoc


class NotificationKind(str, Enum):
    RING = "ring"
    SCHEDULED = "scheduled"
    CAREGIVER_SNOOZED = "caregiver_snoozed"
    CAREGIVER_MISSED = "caregiver_missed"
    CAREGIVER_CHECK_ON = "caregiver_check_on"
    CAREGIVER_DONE = "caregiver_done"


@dataclass
class Message:
    kind: NotificationKind
    recipient: str
    title: str
    body: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def _meta(kind: NotificationKind, doc: ReminderDoc, **extra: Any) -> Dict[str, Any]:
    data = {"type": kind.value, "reminder_id": doc.id, "ring": doc.ring_stage + 1}
    data.update(extra)
    return data


def ring(doc: ReminderDoc) -> Message:
    return Message(
        kind=NotificationKind.RING,
        recipient=doc.for_user,
        title=doc.title or "Reminder",
        body=doc.description or "Time for your reminder!",
        metadata=_meta(NotificationKind.RING, doc, label=doc.label.value, final=doc.ring_stage >= 1),
    )


def scheduled(doc: ReminderDoc) -> Message:
    return Message(
        kind=NotificationKind.SCHEDULED,
        recipient=doc.for_user,
        title="New Reminder",
        body=f'"{doc.title}" has been scheduled for you at {doc.date_time:%H:%M} UTC.',
        metadata=_meta(NotificationKind.SCHEDULED, doc, date_time=doc.date_time.isoformat()),
    )


def caregiver_snoozed(doc: ReminderDoc, minutes: int, decision: str = "snooze") -> Message:
    if decision == "in_progress":
        body = f'They are on "{doc.title}". Follow-up ring in {minutes} minutes.'
    else:
        body = f'"{doc.title}" was snoozed. It will ring again in {minutes} minutes.'
    return Message(
        kind=NotificationKind.CAREGIVER_SNOOZED,
        recipient=doc.created_by,
        title="Reminder Snoozed",
        body=body,
        metadata=_meta(
            NotificationKind.CAREGIVER_SNOOZED, doc, retry_in_minutes=minutes, decision=decision
        ),
    )


def caregiver_missed(doc: ReminderDoc, minutes: int) -> Message:
    return Message(
        kind=NotificationKind.CAREGIVER_MISSED,
        recipient=doc.created_by,
        title="Reminder Missed",
        body=f'"{doc.title}" was not answered. It will ring again in {minutes} minutes.',
        metadata=_meta(NotificationKind.CAREGIVER_MISSED, doc, retry_in_minutes=minutes),
    )


def caregiver_check_on(doc: ReminderDoc, outcome: str) -> Message:
    if outcome == "dismissed":
        title = "Reminder Dismissed"
        body = f'"{doc.title}" was dismissed. You may want to check on them.'
    else:
        title = "Check On Them"
        body = f'"{doc.title}" has not been done. Better to call and check on them.'
    return Message(
        kind=NotificationKind.CAREGIVER_CHECK_ON,
        recipient=doc.created_by,
        title=title,
        body=body,
        metadata=_meta(NotificationKind.CAREGIVER_CHECK_ON, doc, outcome=outcome),
    )


def caregiver_done(doc: ReminderDoc, next_at: Optional[str] = None) -> Message:
    meta = _meta(NotificationKind.CAREGIVER_DONE, doc)
    if next_at:
        meta["next_date_time"] = next_at
    return Message(
        kind=NotificationKind.CAREGIVER_DONE,
        recipient=doc.created_by,
        title="Task Completed",
        body=f'Great news! "{doc.title}" was completed.',
        metadata=meta,
    )
