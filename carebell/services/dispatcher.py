# carebell/services/dispatcher.py
"""
Notification Dispatcher: the contract the escalation engine talks to, plus
the transports behind it.

Delivery is at-least-once. A transport retries on its own and raises
``DispatchFailure`` only after it gave up; the engine logs that and commits
its transition anyway.
"""
from __future__ import annotations

import asyncio
import html
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

from aiogram import Bot
from aiogram.exceptions import (
    TelegramAPIError,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramServerError,
)

from carebell.core.errors import DispatchFailure
from carebell.keyboards.alarm import alarm_keyboard
from carebell.services.messages import NotificationKind
from carebell.services.timer_service import Timers
from carebell.utils.dates import now_utc

logger = logging.getLogger(__name__)

# a delivery due within this slack goes out right away instead of via a timer
IMMEDIATE_SLACK = timedelta(seconds=1)

# delivered timer messages kept for cancel; the oldest are forgotten past this
MAX_TRACKED_DELIVERIES = 1000


class NotificationDispatcher(Protocol):
    async def send(
        self,
        recipient: str,
        title: str,
        body: str,
        metadata: Dict[str, Any],
        at: Optional[datetime] = None,
    ) -> str: ...

    async def cancel(self, handle: Optional[str]) -> bool: ...


async def with_retries(
    op: Callable[[], Awaitable[Any]],
    *,
    attempts: int,
    delay: float,
    what: str,
) -> Any:
    """Runs ``op`` up to ``attempts`` times; transient Telegram errors are retried."""
    last: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return await op()
        except TelegramRetryAfter as e:
            last = e
            wait = float(e.retry_after)
        except (TelegramNetworkError, TelegramServerError) as e:
            last = e
            wait = delay * attempt
        except TelegramAPIError as e:
            # bad request / forbidden: retrying will not help
            raise DispatchFailure(f"{what}: {e}") from e
        logger.warning("dispatch_retry", extra={"what": what, "attempt": attempt, "error": str(last)})
        if attempt < attempts:
            await asyncio.sleep(wait)
    raise DispatchFailure(f"{what}: gave up after {attempts} attempts: {last}") from last


class LogDispatcher:
    """Development transport: logs every notification and keeps them in memory."""

    def __init__(self, clock: Callable[[], datetime] = now_utc) -> None:
        self._clock = clock
        self.sent: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self._live: Dict[str, Dict[str, Any]] = {}

    async def send(self, recipient, title, body, metadata, at=None) -> str:
        handle = uuid4().hex
        item = {
            "handle": handle,
            "recipient": recipient,
            "title": title,
            "body": body,
            "metadata": dict(metadata),
            "at": at or self._clock(),
        }
        self.sent.append(item)
        self._live[handle] = item
        logger.info(
            "notify %s -> %s: %s",
            metadata.get("type"), recipient, title,
            extra={"reminder_id": metadata.get("reminder_id", "-"), "user_id": recipient},
        )
        return handle

    async def cancel(self, handle: Optional[str]) -> bool:
        if not handle or self._live.pop(handle, None) is None:
            return False
        self.cancelled.append(handle)
        return True


class TelegramDispatcher:
    """
    Delivers notifications as Telegram messages. Recipient ids are chat ids.

    Handles:
      - ``tg:<chat_id>:<message_id>`` for a delivered message (cancel deletes it)
      - ``job:<timer handle>`` for a delivery waiting on the timer service
    """

    def __init__(
        self,
        bot: Bot,
        timers: Timers,
        *,
        clock: Callable[[], datetime] = now_utc,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
    ) -> None:
        self.bot = bot
        self.timers = timers
        self._clock = clock
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        # token -> timer handle while waiting, token -> (chat, message) once delivered
        self._scheduled: Dict[str, str] = {}
        self._delivered: "OrderedDict[str, Tuple[int, int]]" = OrderedDict()

    async def send(self, recipient, title, body, metadata, at=None) -> str:
        chat_id = self._chat_id(recipient)
        if at is None or at <= self._clock() + IMMEDIATE_SLACK:
            message_id = await self._deliver(chat_id, title, body, metadata)
            return f"tg:{chat_id}:{message_id}"

        token = uuid4().hex
        self._scheduled[token] = self.timers.schedule(
            at, self._deliver_later, token, chat_id, title, body, dict(metadata), name="tg_delivery"
        )
        return f"job:{token}"

    async def cancel(self, handle: Optional[str]) -> bool:
        if not handle:
            return False
        kind, _, rest = handle.partition(":")
        if kind == "job":
            timer_handle = self._scheduled.pop(rest, None)
            if timer_handle is not None:
                return self.timers.cancel(timer_handle)
            delivered = self._delivered.pop(rest, None)
            if delivered is None:
                return False
            return await self._delete(*delivered)
        if kind == "tg":
            chat, _, msg = rest.partition(":")
            return await self._delete(int(chat), int(msg))
        logger.warning("unknown notification handle %s", handle)
        return False

    # ---------- internals ----------

    @staticmethod
    def _chat_id(recipient: str) -> int:
        try:
            return int(recipient)
        except (TypeError, ValueError) as e:
            raise DispatchFailure(f"recipient {recipient!r} is not a telegram chat id") from e

    async def _deliver(self, chat_id: int, title: str, body: str, metadata: Dict[str, Any]) -> int:
        text = f"<b>{html.escape(title)}</b>\n{html.escape(body)}"
        markup = None
        if metadata.get("type") == NotificationKind.RING.value:
            markup = alarm_keyboard(metadata["reminder_id"], final=bool(metadata.get("final")))

        async def _once():
            return await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=markup)

        msg = await with_retries(
            _once,
            attempts=self.max_attempts,
            delay=self.retry_delay,
            what=f"send_message chat={chat_id}",
        )
        return msg.message_id

    async def _deliver_later(
        self, token: str, chat_id: int, title: str, body: str, metadata: Dict[str, Any]
    ) -> None:
        if self._scheduled.pop(token, None) is None:
            return  # cancelled in the meantime
        try:
            message_id = await self._deliver(chat_id, title, body, metadata)
            self._delivered[token] = (chat_id, message_id)
            while len(self._delivered) > MAX_TRACKED_DELIVERIES:
                self._delivered.popitem(last=False)
        except DispatchFailure:
            logger.exception(
                "scheduled_delivery_failed",
                extra={"reminder_id": metadata.get("reminder_id", "-"), "user_id": chat_id},
            )

    async def _delete(self, chat_id: int, message_id: int) -> bool:
        try:
            return bool(await self.bot.delete_message(chat_id=chat_id, message_id=message_id))
        except TelegramAPIError as e:
            # too old or already gone
            logger.info("delete_message failed chat=%s msg=%s: %s", chat_id, message_id, e)
            return False
