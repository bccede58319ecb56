import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from bot import router
from config import EngineConfig, settings
from services import (
    AdminAlertHandler,
    AppStateRepository,
    ChangeNotifier,
    CheckPipeline,
    Fetcher,
    TrackerRepository,
    TrackerScheduler,
)

# ensure logs are recorded both to stdout and to a rotating file
def configure_logging() -> None:
    log_dir = Path(os.getenv("LOG_DIR", "logs"))
    if not log_dir.is_absolute():
        log_dir = Path.cwd() / log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "tracky.log"

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(
                log_file,
                maxBytes=5 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            ),
        ],
        force=True,
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger("tracky")


async def main() -> None:
    settings.validate()
    config = EngineConfig.from_settings(settings)

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    logging.getLogger().addHandler(
        AdminAlertHandler(bot, settings.ADMIN_CHAT_IDS, loop=asyncio.get_running_loop())
    )

    repository = TrackerRepository()
    app_state = AppStateRepository()
    fetcher = Fetcher(
        timeout=config.request_timeout,
        proxy_url=config.proxy_url,
        headers=config.headers,
    )
    pipeline = CheckPipeline(fetcher, repository, max_value_length=config.max_value_length)
    tracker_scheduler = TrackerScheduler(repository, pipeline, config)
    repository.subscribe(
        ChangeNotifier(bot, settings.ADMIN_CHAT_IDS, tag_user=settings.ALERT_TAG_USER),
        checks_only=True,
    )

    dispatcher = Dispatcher(
        repository=repository,
        app_state=app_state,
        tracker_scheduler=tracker_scheduler,
    )
    dispatcher.include_router(router)

    trackers = repository.list_trackers()
    logger.info(
        "Bot started. %s trackers, tick every %ss, fetch timeout %ss, proxy: %s",
        len(trackers),
        config.tick_seconds,
        config.request_timeout,
        config.proxy_url or "direct",
    )

    try:
        if app_state.get_monitoring_enabled():
            tracker_scheduler.start()
            await tracker_scheduler.tick()
        else:
            logger.info("Monitoring is paused, use /monitoring on to resume")
        await dispatcher.start_polling(bot)
    finally:
        tracker_scheduler.stop()
        await tracker_scheduler.wait_idle()
        tracker_scheduler.shutdown()
        await fetcher.close()
        await bot.session.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception:
        logger.exception("Fatal error")
