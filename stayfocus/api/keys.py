"""Typed application state keys shared by the app factory and the routes."""
from aiohttp import web

from stayfocus.config import Settings

STORE_KEY = web.AppKey("store", object)
SETTINGS_KEY = web.AppKey("settings", Settings)
QUEUE_KEY = web.AppKey("queue", object)
OWNS_STORE_KEY = web.AppKey("owns_store", bool)
STARTED_AT_KEY = web.AppKey("started_at", float)
