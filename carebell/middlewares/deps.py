# carebell/middlewares/deps.py
from typing import Any, Callable, Dict, Awaitable
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject


class DepsMiddleware(BaseMiddleware):
    def __init__(self, *, services: Dict[str, Any]) -> None:
        self.services = services

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        # inject services under the names handlers ask for
        # e.g. async def on_alarm_button(call: CallbackQuery, alarm: AlarmPresenter)
        for k, v in self.services.items():
            data[k] = v

        return await handler(event, data)
