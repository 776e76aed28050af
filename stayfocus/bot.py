"""Main entry point for the StayFocus Telegram bot."""
import asyncio
import functools
import logging
import sys

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand

from stayfocus.config import settings
from stayfocus.core.database import init_database
from stayfocus.core.encryption import build_encryption
from stayfocus.core.local_storage import LocalStorage
from stayfocus.services.connectivity import ConnectivityMonitor
from stayfocus.services.offline_queue import OfflineMutationQueue
from stayfocus.store.factory import create_store

# Import handlers
from stayfocus.handlers import simulado, start, statistics, sync


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


async def main():
    """Main function to start the bot."""
    if not settings.BOT_TOKEN:
        logger.error("BOT_TOKEN не задан. Создайте файл .env на основе .env.example")
        sys.exit(1)

    logger.info("Starting StayFocus bot...")

    store = await create_store(settings)

    # Offline queue: durable local storage + connectivity
    logger.info(f"Initializing local storage at {settings.LOCAL_STORAGE_PATH}")
    storage_db = await init_database(settings.LOCAL_STORAGE_PATH)
    storage = LocalStorage(storage_db, build_encryption(settings.QUEUE_ENCRYPTION_KEY))

    bot = Bot(token=settings.BOT_TOKEN)

    monitor = ConnectivityMonitor(store.ping, interval=settings.CONNECTIVITY_CHECK_INTERVAL)
    queue = OfflineMutationQueue(
        storage,
        store.execute,
        monitor,
        max_retries=settings.OFFLINE_QUEUE_MAX_RETRIES,
        storage_key=settings.OFFLINE_QUEUE_KEY,
        on_dropped=functools.partial(sync.notify_dropped, bot),
    )
    await queue.load()

    # store and queue are injected into handlers by name
    dp = Dispatcher(storage=MemoryStorage(), store=store, queue=queue)

    # Register routers
    dp.include_router(start.router)
    dp.include_router(simulado.router)
    dp.include_router(statistics.router)
    dp.include_router(sync.router)

    logger.info("Bot handlers registered successfully")

    await bot.set_my_commands([
        BotCommand(command="start", description="Главное меню"),
        BotCommand(command="token", description="Токен для REST API"),
    ])

    await monitor.check()
    monitor.start()
    if monitor.is_online:
        await queue.process_queue()

    # Start polling
    try:
        logger.info("Starting bot polling...")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types()
        )
    except Exception as e:
        logger.error(f"Error during polling: {e}")
        raise
    finally:
        # Cleanup
        await monitor.stop()
        await queue.wait_idle()
        await bot.session.close()
        await store.close()
        await storage_db.close()
        logger.info("Bot stopped")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
