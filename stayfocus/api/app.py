"""aiohttp application factory for the StayFocus REST API."""
import logging
import time
from typing import Optional

from aiohttp import web

from stayfocus.api.keys import OWNS_STORE_KEY, QUEUE_KEY, SETTINGS_KEY, STARTED_AT_KEY, STORE_KEY
from stayfocus.api.middleware import auth_middleware, error_middleware
from stayfocus.api.routes import health, history
from stayfocus.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


async def on_startup(app: web.Application):
    app[STARTED_AT_KEY] = time.monotonic()
    logger.info("REST API started (%s, v%s)", app[SETTINGS_KEY].ENVIRONMENT, app[SETTINGS_KEY].APP_VERSION)


async def on_cleanup(app: web.Application):
    """Close the store if the app owns it."""
    if app[OWNS_STORE_KEY]:
        await app[STORE_KEY].close()
        logger.info("Store connection closed")


def create_app(
    store,
    settings: Optional[Settings] = None,
    queue=None,
    owns_store: bool = False,
) -> web.Application:
    """
    Create and configure the application.

    Args:
        store: LocalStore or RestStore used by every handler
        settings: Defaults to the global settings
        queue: Optional OfflineMutationQueue reported by /api/health
        owns_store: Close the store on application cleanup
    """
    app = web.Application(middlewares=[error_middleware, auth_middleware])

    app[STORE_KEY] = store
    app[SETTINGS_KEY] = settings or default_settings
    app[QUEUE_KEY] = queue
    app[OWNS_STORE_KEY] = owns_store
    app[STARTED_AT_KEY] = time.monotonic()

    health.setup_routes(app)
    history.setup_routes(app)

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    return app
