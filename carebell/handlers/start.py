# carebell/handlers/start.py
from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

router = Router()

WELCOME_TEXT = (
    "🔔 Hi! I'm Carebell.\n\n"
    "Someone who cares about you can schedule reminders here: medicine, meals, "
    "doctor visits, exercise.\n\n"
    "When a reminder rings, tap:\n"
    "• ✅ Done, when it's taken care of\n"
    "• 💤 to snooze it for a bit\n"
    "• 🏃 I'm on it, if you're already doing it\n\n"
    "If a reminder goes unanswered twice, your caregiver is asked to check on you.\n\n"
    "/now shows what is ringing, /id shows the id to share with your caregiver."
)


@router.message(CommandStart())
async def start(message: Message) -> None:
    await message.answer(WELCOME_TEXT)


@router.message(Command("id"))
async def show_id(msg: Message):
    await msg.answer(f"Your Carebell id: <code>{msg.chat.id}</code>")
