from .base import Base
from .enums import Decision, EngineState, ReminderLabel, ReminderStatus, Repeat
from .reminder import DEFAULT_FOLLOW_UP_MINUTES, ReminderDoc, ReminderRow
from .user import User

__all__ = [
    "Base", "User", "ReminderRow", "ReminderDoc", "DEFAULT_FOLLOW_UP_MINUTES",
    "Decision", "EngineState", "ReminderLabel", "ReminderStatus", "Repeat",
]
