# carebell/main.py
from __future__ import annotations

import asyncio
import logging
import signal

import uvicorn
from aiogram import Bot
from aiogram.types import BotCommand

from carebell.config import settings
from carebell.container import Container, build_container, build_dp, prepare_db
from carebell.core.logging import attach_ctx_filter, setup_logging
from carebell.handlers.alarm import router as alarm_router
from carebell.handlers.errors import router as errors_router
from carebell.handlers.start import router as start_router
from carebell.middlewares.deps import DepsMiddleware
from carebell.middlewares.logging import LoggingMiddleware
from carebell.scheduler.jobs import setup_scheduler
from carebell.web.server import create_app

logger = logging.getLogger("carebell.main")


async def setup_bot_commands(bot: Bot) -> None:
    await bot.set_my_commands(
        [
            BotCommand(command="start", description="What Carebell does"),
            BotCommand(command="now", description="Show what is ringing"),
            BotCommand(command="id", description="Your id for the caregiver"),
        ]
    )


async def main() -> None:
    # logs first
    setup_logging()
    attach_ctx_filter()

    logger.info(
        "boot: starting with LOG_LEVEL=%s store=%s transport=%s",
        settings.log_level,
        settings.STORE_BACKEND,
        settings.NOTIFY_TRANSPORT,
    )

    container: Container = build_container(settings)
    await prepare_db(container)

    # ---------- Scheduler + timers from the store ----------
    setup_scheduler(container.scheduler, container.engine)
    container.scheduler.start()
    await container.engine.resume()

    # ---------- Bot ----------
    bot = container.bot
    dp = None
    poll_task = None
    if bot is not None:
        # polling and a webhook do not mix
        try:
            await bot.delete_webhook(drop_pending_updates=True)
        except Exception:
            logger.warning("delete_webhook failed; continue with polling")

        dp = build_dp(settings)
        dp.update.outer_middleware(LoggingMiddleware())
        dp.update.middleware(DepsMiddleware(services=container.services()))
        # order matters: errors last
        dp.include_routers(start_router, alarm_router, errors_router)

        await setup_bot_commands(bot)
        logger.info("Commands set, start polling")

        async def _poll():
            try:
                await dp.start_polling(bot, handle_signals=False)
            except asyncio.CancelledError:
                pass

        poll_task = asyncio.create_task(_poll())
    else:
        logger.info("BOT_TOKEN is empty, running without the bot")

    # ---------- HTTP ----------
    app = create_app(container, configure_logging=False)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=settings.WEBAPP_HOST,
        port=settings.WEBAPP_PORT,
        log_level=settings.log_level.lower(),
        access_log=True,
    ))
    web_task = asyncio.create_task(server.serve())

    stop_evt = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _stop(*_: object) -> None:
        stop_evt.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:
            pass

    # uvicorn may take the signal itself and just return
    stop_task = asyncio.create_task(stop_evt.wait())
    await asyncio.wait({web_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    stop_task.cancel()

    # ---------- Shutdown ----------
    server.should_exit = True
    try:
        await web_task
    except Exception:
        logger.exception("web server stopped with an error")

    if dp is not None:
        try:
            await dp.stop_polling()
        except Exception:
            pass

    try:
        container.scheduler.shutdown(wait=False)
    except Exception:
        logger.exception("scheduler shutdown failed")

    if poll_task is not None and not poll_task.done():
        poll_task.cancel()
        try:
            await poll_task
        except asyncio.CancelledError:
            pass

    if dp is not None:
        try:
            await dp.storage.close()
        except Exception:
            logger.exception("storage close failed")

    if bot is not None:
        try:
            await bot.session.close()
        except Exception:
            logger.exception("bot session close failed")

    if container.db_engine is not None:
        try:
            await container.db_engine.dispose()
        except Exception:
            logger.exception("engine dispose failed")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
