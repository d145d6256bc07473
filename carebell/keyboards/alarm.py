from typing import NamedTuple, Optional

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from carebell.models.enums import Decision

PREFIX = "alarm"
SNOOZE_CHOICES = (10, 30)


class AlarmCallback(NamedTuple):
    decision: Decision
    reminder_id: str
    minutes: Optional[int]


def alarm_data(decision: Decision, reminder_id: str, minutes: Optional[int] = None) -> str:
    # telegram caps callback_data at 64 bytes: 18 + 32 + 4 fits
    return f"{PREFIX}:{decision.value}:{reminder_id}:{minutes or 0}"


def parse_alarm_data(data: str) -> Optional[AlarmCallback]:
    parts = (data or "").split(":")
    if len(parts) != 4 or parts[0] != PREFIX:
        return None
    try:
        decision = Decision(parts[1])
        minutes = int(parts[3])
    except ValueError:
        return None
    return AlarmCallback(decision, parts[2], minutes or None)


def alarm_keyboard(reminder_id: str, final: bool = False) -> InlineKeyboardMarkup:
    """Ring screen buttons. The last ring also offers Dismiss."""
    rows = [
        [InlineKeyboardButton(text="✅ Done", callback_data=alarm_data(Decision.DONE, reminder_id))],
        [
            InlineKeyboardButton(
                text=f"💤 {m} min",
                callback_data=alarm_data(Decision.SNOOZE, reminder_id, m),
            )
            for m in SNOOZE_CHOICES
        ],
        [InlineKeyboardButton(text="🏃 I'm on it", callback_data=alarm_data(Decision.IN_PROGRESS, reminder_id))],
    ]
    if final:
        rows.append([InlineKeyboardButton(text="✖️ Dismiss", callback_data=alarm_data(Decision.DISMISS, reminder_id))])
    return InlineKeyboardMarkup(inline_keyboard=rows)
