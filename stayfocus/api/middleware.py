"""aiohttp middlewares: error mapping and bearer-token authentication."""
import logging
from typing import Callable

from aiohttp import web

from stayfocus.api.keys import STORE_KEY
from stayfocus.api.validation import ValidationError
from stayfocus.store.exceptions import AuthenticationError, DataNotFoundError

logger = logging.getLogger(__name__)

PUBLIC_PATHS = ("/api/health",)


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.Response:
    """Turn exceptions raised by handlers into JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except AuthenticationError:
        return web.json_response({"error": "Unauthorized"}, status=401)
    except DataNotFoundError as e:
        return web.json_response({"error": str(e) or "Record not found"}, status=404)
    except Exception as e:
        logger.exception("API error on %s %s: %s", request.method, request.path, e)
        return web.json_response({"error": "Internal server error"}, status=500)


@web.middleware
async def auth_middleware(request: web.Request, handler: Callable) -> web.Response:
    """Resolve `Authorization: Bearer <token>` to request["user_id"]."""
    if request.path in PUBLIC_PATHS:
        return await handler(request)

    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing bearer token")

    user_id = await request.app[STORE_KEY].get_user_id(token.strip())
    if not user_id:
        raise AuthenticationError("Unknown token")

    request["user_id"] = user_id
    return await handler(request)
