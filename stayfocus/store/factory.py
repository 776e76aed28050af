"""Build the configured store implementation."""
import logging

from stayfocus.config import Settings
from stayfocus.core.database import init_database
from stayfocus.store.client import RestStore
from stayfocus.store.local import LocalStore

logger = logging.getLogger(__name__)


async def create_store(settings: Settings):
    """Return a LocalStore or RestStore depending on STORE_BACKEND."""
    backend = settings.STORE_BACKEND.lower()

    if backend == "rest":
        if not settings.STORE_URL:
            raise ValueError("STORE_URL must be set when STORE_BACKEND=rest")
        logger.info("Using hosted store at %s", settings.STORE_URL)
        return RestStore(settings.STORE_URL, settings.STORE_ANON_KEY, timeout=settings.STORE_TIMEOUT)

    if backend == "local":
        logger.info("Using local store at %s", settings.DATABASE_PATH)
        db = await init_database(settings.DATABASE_PATH)
        return LocalStore(db)

    raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")
