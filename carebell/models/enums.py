from enum import Enum


class ReminderStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    SNOOZED = "snoozed"
    MISSED = "missed"


class Repeat(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"


class ReminderLabel(str, Enum):
    MEDICINE = "medicine"
    MEAL = "meal"
    DOCTOR = "doctor"
    EXERCISE = "exercise"
    OTHER = "other"


class Decision(str, Enum):
    DONE = "done"
    SNOOZE = "snooze"
    IN_PROGRESS = "in_progress"
    DISMISS = "dismiss"


class EngineState(str, Enum):
    SCHEDULED = "scheduled"
    RINGING_1 = "ringing_1"
    RINGING_2 = "ringing_2"
    DONE = "done"
    MISSED_FINAL = "missed_final"
    SNOOZED_FINAL = "snoozed_final"
    DISMISSED_FINAL = "dismissed_final"
