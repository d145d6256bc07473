# carebell/middlewares/logging.py
import logging
import time
from typing import Any, Dict, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import Update

from carebell.keyboards.alarm import parse_alarm_data

logger = logging.getLogger("carebell.middleware.logging")


def _safe_get(obj: Any, path: str, default: Any = None):
    cur = obj
    for p in path.split("."):
        if cur is None:
            return default
        cur = getattr(cur, p, None)
    return cur if cur is not None else default


def _extract_reminder_id(event: Any) -> str | None:
    # alarm buttons carry the reminder id in callback data
    for data in (_safe_get(event, "data"), _safe_get(event, "callback_query.data")):
        if isinstance(data, str):
            parsed = parse_alarm_data(data)
            if parsed:
                return parsed.reminder_id
    return None


class LoggingMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[Any, Dict[str, Any]], Awaitable[Any]],
        event: Any,
        data: Dict[str, Any]
    ) -> Any:
        update: Update | None = data.get("event_update") or data.get("update")
        update_id = getattr(update, "update_id", "-")

        user_id = (
            _safe_get(event, "from_user.id")
            or _safe_get(event, "message.from_user.id")
            or _safe_get(event, "callback_query.from_user.id")
            or "-"
        )
        ctx = {
            "update_id": update_id,
            "user_id": user_id,
            "reminder_id": _extract_reminder_id(event) or "-",
            "event_type": type(event).__name__,
        }

        logger.info("incoming", extra=ctx)

        started = time.perf_counter()
        try:
            result = await handler(event, data)
            logger.info("handled", extra={**ctx, "duration_ms": int((time.perf_counter() - started) * 1000)})
            return result
        except Exception:
            logger.exception(
                "handler_error", extra={**ctx, "duration_ms": int((time.perf_counter() - started) * 1000)}
            )
            raise
