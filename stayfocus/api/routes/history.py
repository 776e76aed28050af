"""Simulation history endpoints."""
import json
import logging

from aiohttp import web

from stayfocus.api.keys import STORE_KEY
from stayfocus.api.validation import (
    ValidationError, merged_consistency, parse_list_query, parse_statistics_query,
    validate_create, validate_record_id, validate_update,
)
from stayfocus.services.statistics import compute_enhanced_statistics, compute_statistics
from stayfocus.store.models import format_timestamp, utc_now

logger = logging.getLogger(__name__)

BASE_PATH = "/api/simulation-history"


async def _read_json(request: web.Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")


async def list_history(request: web.Request) -> web.Response:
    """GET /api/simulation-history"""
    filters = parse_list_query(request.query)
    records, total = await request.app[STORE_KEY].list_history(request["user_id"], filters)
    return web.json_response({
        "data": [r.to_dict() for r in records],
        "count": total,
        "pagination": {
            "offset": filters.offset,
            "limit": filters.limit,
            "total": total,
        },
    })


async def create_history(request: web.Request) -> web.Response:
    """POST /api/simulation-history"""
    fields = validate_create(await _read_json(request))
    record = await request.app[STORE_KEY].create_history(request["user_id"], fields)
    logger.info("Создана запись истории %s для пользователя %s", record.id, request["user_id"])
    return web.json_response({"data": record.to_dict()}, status=201)


async def get_history(request: web.Request) -> web.Response:
    record_id = validate_record_id(request.match_info["id"])
    record = await request.app[STORE_KEY].get_history(request["user_id"], record_id)
    return web.json_response({"data": record.to_dict()})


async def update_history(request: web.Request) -> web.Response:
    """PUT /api/simulation-history/{id}: partial update."""
    record_id = validate_record_id(request.match_info["id"])
    changes = validate_update(await _read_json(request))

    store = request.app[STORE_KEY]
    user_id = request["user_id"]
    if {"score", "total_questions", "percentage"} & set(changes):
        current = await store.get_history(user_id, record_id)
        merged_consistency(current.to_dict(), changes)

    changes["updated_at"] = format_timestamp(utc_now())
    record = await store.update_history(user_id, record_id, changes)
    return web.json_response({"data": record.to_dict()})


async def delete_history(request: web.Request) -> web.Response:
    record_id = validate_record_id(request.match_info["id"])
    await request.app[STORE_KEY].delete_history(request["user_id"], record_id)
    return web.json_response({"message": "Record deleted successfully"})


async def statistics(request: web.Request) -> web.Response:
    """GET /api/simulation-history/statistics"""
    filters = parse_statistics_query(request.query)
    records, _ = await request.app[STORE_KEY].list_history(request["user_id"], filters)
    return web.json_response({"data": compute_statistics(records)})


async def enhanced_statistics(request: web.Request) -> web.Response:
    """GET /api/simulation-history/enhanced-statistics"""
    filters = parse_statistics_query(request.query, multiple=True)
    records, _ = await request.app[STORE_KEY].list_history(request["user_id"], filters)
    return web.json_response({"data": compute_enhanced_statistics(records)})


def setup_routes(app: web.Application) -> None:
    # Fixed paths before the {id} route
    app.router.add_get(f"{BASE_PATH}/statistics", statistics)
    app.router.add_get(f"{BASE_PATH}/enhanced-statistics", enhanced_statistics)

    app.router.add_get(BASE_PATH, list_history)
    app.router.add_post(BASE_PATH, create_history)
    app.router.add_get(BASE_PATH + "/{id}", get_history)
    app.router.add_put(BASE_PATH + "/{id}", update_history)
    app.router.add_delete(BASE_PATH + "/{id}", delete_history)
