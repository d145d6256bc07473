from __future__ import annotations

import html
import logging

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from carebell.keyboards.alarm import PREFIX, alarm_keyboard, parse_alarm_data
from carebell.models.enums import Decision
from carebell.services.alarm_presentation import AlarmPresenter

logger = logging.getLogger(__name__)

router = Router()

_ANSWERS = {
    Decision.DONE: "✅ Marked as done",
    Decision.SNOOZE: "💤 Snoozed",
    Decision.IN_PROGRESS: "🏃 Got it, I'll check back",
    Decision.DISMISS: "✖️ Dismissed",
}


@router.callback_query(F.data.startswith(f"{PREFIX}:"))
async def on_alarm_button(call: CallbackQuery, alarm: AlarmPresenter):
    parsed = parse_alarm_data(call.data)
    if parsed is None:
        await call.answer("Unknown action", show_alert=True)
        return

    doc = await alarm.get_ringing_reminder(parsed.reminder_id)
    if doc is None:
        # the window closed; the engine already counted it as missed
        await call.answer("This reminder is no longer active.", show_alert=True)
        return
    if str(call.from_user.id) != doc.for_user:
        await call.answer("This reminder is not for you.", show_alert=True)
        return

    res = await alarm.report_decision(parsed.reminder_id, parsed.decision, parsed.minutes)
    if not res.applied:
        logger.info(
            "alarm_button_ignored",
            extra={"reminder_id": parsed.reminder_id, "user_id": call.from_user.id, "reason": res.reason},
        )
        await call.answer("Already handled.")
        return

    await call.answer(_ANSWERS[parsed.decision])


@router.message(Command("now"))
async def show_active(msg: Message, alarm: AlarmPresenter):
    doc = await alarm.get_active_reminder(str(msg.from_user.id))
    if doc is None:
        await msg.answer("Nothing is ringing right now.")
        return
    final = Decision.DISMISS in alarm.available_decisions(doc)
    await msg.answer(
        f"<b>{html.escape(doc.title)}</b>\n{html.escape(doc.description or '')}".strip(),
        reply_markup=alarm_keyboard(doc.id, final=final),
    )
