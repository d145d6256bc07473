# carebell/container.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.fsm.storage.redis import RedisStorage
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncEngine

from carebell.config import Settings, settings as default_settings
from carebell.db import init_db, make_engine, make_sessionmaker
from carebell.repositories.memory_store import InMemoryReminderStore
from carebell.repositories.reminder_repo import SqlReminderStore
from carebell.repositories.reminder_store import ReminderStore
from carebell.services.alarm_presentation import AlarmPresenter
from carebell.services.dispatcher import LogDispatcher, NotificationDispatcher, TelegramDispatcher
from carebell.services.escalation_engine import EscalationEngine
from carebell.services.recurrence import RecurrenceExpander
from carebell.services.timer_service import TimerService
from carebell.utils.dates import now_utc

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    scheduler: AsyncIOScheduler
    timers: TimerService
    store: ReminderStore
    dispatcher: NotificationDispatcher
    engine: EscalationEngine
    alarm: AlarmPresenter
    bot: Optional[Bot] = None
    db_engine: Optional[AsyncEngine] = None

    def services(self) -> dict[str, Any]:
        """What aiogram handlers get injected by name."""
        return {"alarm": self.alarm, "engine": self.engine}


def build_bot(cfg: Settings) -> Optional[Bot]:
    if not cfg.BOT_TOKEN:
        return None
    return Bot(
        token=cfg.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )


def build_dp(cfg: Settings) -> Dispatcher:
    """
    Dispatcher for aiogram 3.x. FSM state lives in Redis when it is configured.
    """
    storage = RedisStorage.from_url(cfg.REDIS_DSN) if cfg.REDIS_DSN else MemoryStorage()
    return Dispatcher(storage=storage)


def build_container(
    cfg: Settings = default_settings,
    *,
    scheduler: Optional[AsyncIOScheduler] = None,
    clock: Callable[[], datetime] = now_utc,
) -> Container:
    """
    Single place that wires the store, transport, timers and engine together.
    """
    scheduler = scheduler or AsyncIOScheduler(timezone=cfg.SCHEDULER_TZ)
    timers = TimerService(scheduler, clock)

    db_engine = None
    if cfg.STORE_BACKEND == "sql":
        db_engine = make_engine(cfg.DATABASE_URL, echo=cfg.SQL_ECHO)
        store: ReminderStore = SqlReminderStore(make_sessionmaker(db_engine), clock)
    elif cfg.STORE_BACKEND == "memory":
        store = InMemoryReminderStore(clock)
    else:
        raise ValueError(f"unknown STORE_BACKEND {cfg.STORE_BACKEND!r}")

    bot = build_bot(cfg)
    if cfg.NOTIFY_TRANSPORT == "telegram":
        dispatcher: NotificationDispatcher = TelegramDispatcher(
            bot,
            timers,
            clock=clock,
            max_attempts=cfg.DISPATCH_MAX_ATTEMPTS,
            retry_delay=cfg.DISPATCH_RETRY_DELAY_SECONDS,
        )
    elif cfg.NOTIFY_TRANSPORT == "log":
        dispatcher = LogDispatcher(clock)
    else:
        raise ValueError(f"unknown NOTIFY_TRANSPORT {cfg.NOTIFY_TRANSPORT!r}")

    engine = EscalationEngine(
        store,
        dispatcher,
        timers,
        clock=clock,
        recurrence=RecurrenceExpander(store, clock),
        max_follow_up_minutes=cfg.MAX_FOLLOW_UP_MINUTES,
        notify_caregiver_on_done=cfg.NOTIFY_CAREGIVER_ON_DONE,
        notify_recipient_on_create=cfg.NOTIFY_RECIPIENT_ON_CREATE,
    )
    alarm = AlarmPresenter(engine, store, clock)

    logger.info(
        "container built: store=%s transport=%s bot=%s",
        cfg.STORE_BACKEND, cfg.NOTIFY_TRANSPORT, bool(bot),
    )
    return Container(
        settings=cfg,
        scheduler=scheduler,
        timers=timers,
        store=store,
        dispatcher=dispatcher,
        engine=engine,
        alarm=alarm,
        bot=bot,
        db_engine=db_engine,
    )


async def prepare_db(container: Container) -> None:
    """
    Dev-only create_all, when INIT_DB_ON_START is set. Production runs alembic upgrade head.
    """
    if container.db_engine is None:
        return
    if container.settings.INIT_DB_ON_START:
        try:
            await init_db(container.db_engine)
            logger.info("DB init done (create_all enabled by ENV)")
        except Exception:
            logger.exception("DB init failed (dev-only path)")
    else:
        logger.info("DB init skipped (use alembic upgrade head)")
