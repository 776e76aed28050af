"""Health check endpoints (public)."""
import logging
import time

import psutil
from aiohttp import web

from stayfocus.api.keys import QUEUE_KEY, SETTINGS_KEY, STARTED_AT_KEY, STORE_KEY
from stayfocus.store.models import format_timestamp, utc_now

logger = logging.getLogger(__name__)

NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}

HEALTHY_STATES = ("healthy", "unknown")


def _memory_mb() -> dict:
    info = psutil.Process().memory_info()
    return {
        "rss": round(info.rss / 1024 / 1024),
        "vms": round(info.vms / 1024 / 1024),
    }


async def _store_status(app: web.Application) -> str:
    store = app.get(STORE_KEY)
    if store is None:
        return "unknown"
    try:
        return "healthy" if await store.ping() else "unhealthy"
    except Exception as e:
        logger.warning("Store health check failed: %s", e)
        return "error"


async def health(request: web.Request) -> web.Response:
    """
    GET /api/health

    Reports uptime, memory and a best-effort check of the store.
    503 when any service is unhealthy.
    """
    app = request.app
    settings = app[SETTINGS_KEY]
    try:
        services = {"store": await _store_status(app)}
        body = {
            "status": "healthy",
            "timestamp": format_timestamp(utc_now()),
            "uptime": round(time.monotonic() - app[STARTED_AT_KEY], 2),
            "environment": settings.ENVIRONMENT,
            "version": settings.APP_VERSION,
            "memory": _memory_mb(),
            "services": services,
        }

        queue = app.get(QUEUE_KEY)
        if queue is not None:
            body["offline_queue"] = queue.get_queue_status()

        is_healthy = all(state in HEALTHY_STATES for state in services.values())
        if not is_healthy:
            body["status"] = "unhealthy"
        return web.json_response(body, status=200 if is_healthy else 503, headers=NO_CACHE)
    except Exception as e:
        logger.error("Health check failed: %s", e)
        return web.json_response(
            {
                "status": "unhealthy",
                "timestamp": format_timestamp(utc_now()),
                "error": str(e),
            },
            status=503,
            headers=NO_CACHE,
        )


async def health_head(request: web.Request) -> web.Response:
    """HEAD /api/health: liveness only, no body."""
    try:
        psutil.Process().status()
    except psutil.Error as e:
        logger.error("Liveness check failed: %s", e)
        return web.Response(status=503)
    return web.Response(status=200, headers=NO_CACHE)


def setup_routes(app: web.Application) -> None:
    app.router.add_get("/api/health", health, allow_head=False)
    app.router.add_head("/api/health", health_head)
