"""Entry point for the StayFocus REST API."""
import logging
import sys

from aiohttp import web

from stayfocus.api.app import create_app
from stayfocus.config import settings
from stayfocus.store.factory import create_store

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


async def init_app() -> web.Application:
    """Build the store and the application around it."""
    store = await create_store(settings)
    return create_app(store, settings=settings, owns_store=True)


def main():
    logger.info("Starting StayFocus API on %s:%s...", settings.API_HOST, settings.API_PORT)
    try:
        web.run_app(init_app(), host=settings.API_HOST, port=settings.API_PORT)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
