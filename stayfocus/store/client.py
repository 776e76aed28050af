"""Async client for the hosted relational store (PostgREST over HTTPS)."""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .endpoints import AUTH_USER, NOT_FOUND_CODE, REST_PREFIX
from .exceptions import (
    AuthenticationError, DataNotFoundError, InvalidResponseError,
    NetworkError, StoreError, UnsupportedOperationError,
)
from .models import AttemptRecord, HistoryFilters, QueuedOperation, format_timestamp

logger = logging.getLogger(__name__)

HISTORY_TABLE = "simulation_history"


def _parse_total(content_range: Optional[str]) -> Optional[int]:
    """Extract the total from a 'Content-Range: 0-49/123' header."""
    if not content_range or "/" not in content_range:
        return None
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class RestStore:
    """Store implementation over the hosted REST API."""

    def __init__(self, base_url: str, api_key: str, timeout: int = 30):
        """
        Args:
            base_url: Store project URL (without /rest/v1)
            api_key: Key sent as `apikey` and default bearer token
            timeout: Total request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    def _headers(self, token: Optional[str] = None, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token or self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[List[Tuple[str, str]]] = None,
        payload: Any = None,
        token: Optional[str] = None,
        prefer: Optional[str] = None,
    ) -> Tuple[Any, Dict[str, str]]:
        """
        Perform a request and decode the JSON body.

        Returns:
            (decoded body or None, response headers)
        """
        session = await self._get_session()
        url = f"{self.base_url}{path}"

        try:
            async with session.request(
                method, url, params=params, json=payload,
                headers=self._headers(token, prefer),
            ) as resp:
                text = await resp.text()
                headers = dict(resp.headers)
                status = resp.status
        except asyncio.TimeoutError:
            logger.error("Таймаут запроса к хранилищу: %s %s", method, path)
            raise NetworkError(f"Store request timed out: {method} {path}")
        except aiohttp.ClientError as e:
            logger.error("Ошибка соединения с хранилищем: %s", e)
            raise NetworkError(f"Store request failed: {e}")

        body = None
        if text:
            try:
                body = json.loads(text)
            except ValueError:
                if status < 400:
                    raise InvalidResponseError(f"Invalid JSON from store: {text[:100]}")

        if status in (401, 403):
            raise AuthenticationError("Токен истек или недействителен")
        if status >= 400:
            code = body.get("code") if isinstance(body, dict) else None
            message = body.get("message") if isinstance(body, dict) else text
            if status == 404 or code == NOT_FOUND_CODE:
                raise DataNotFoundError(message or "Record not found")
            logger.error("Ошибка хранилища %s: %s %s", status, code, message)
            raise StoreError(f"HTTP {status}: {message}")

        return body, headers

    @staticmethod
    def _first(body: Any) -> Dict[str, Any]:
        if isinstance(body, list):
            if not body:
                raise DataNotFoundError("Record not found")
            return body[0]
        if isinstance(body, dict):
            return body
        raise InvalidResponseError("Expected a JSON object or array")

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def get_user_id(self, token: str) -> Optional[str]:
        """Resolve the access token of an authenticated user."""
        try:
            body, _ = await self._request("GET", AUTH_USER, token=token)
        except AuthenticationError:
            return None
        if not isinstance(body, dict) or not body.get("id"):
            return None
        return str(body["id"])

    async def issue_token(self, user_id: str) -> str:
        raise UnsupportedOperationError("Tokens are issued by the hosted store's auth service")

    # ------------------------------------------------------------------
    # Simulation history
    # ------------------------------------------------------------------

    @staticmethod
    def _history_params(user_id: str, filters: HistoryFilters) -> List[Tuple[str, str]]:
        params = [("select", "*"), ("user_id", f"eq.{user_id}")]
        if filters.simulation_ids:
            params.append(("simulation_id", f"in.({','.join(filters.simulation_ids)})"))
        if filters.date_from is not None:
            params.append(("completed_at", f"gte.{format_timestamp(filters.date_from)}"))
        if filters.date_to is not None:
            params.append(("completed_at", f"lte.{format_timestamp(filters.date_to)}"))
        if filters.min_score is not None:
            params.append(("score", f"gte.{filters.min_score}"))
        if filters.max_score is not None:
            params.append(("score", f"lte.{filters.max_score}"))
        if filters.min_percentage is not None:
            params.append(("percentage", f"gte.{filters.min_percentage}"))
        if filters.max_percentage is not None:
            params.append(("percentage", f"lte.{filters.max_percentage}"))
        params.append(("order", f"{filters.sort_by}.{filters.sort_order}"))
        if filters.limit is not None:
            params.append(("limit", str(filters.limit)))
            params.append(("offset", str(filters.offset)))
        return params

    async def list_history(
        self, user_id: str, filters: Optional[HistoryFilters] = None
    ) -> Tuple[List[AttemptRecord], int]:
        filters = filters or HistoryFilters()
        body, headers = await self._request(
            "GET", f"{REST_PREFIX}/{HISTORY_TABLE}",
            params=self._history_params(user_id, filters),
            prefer="count=exact",
        )
        if not isinstance(body, list):
            raise InvalidResponseError("Expected a JSON array")
        records = [AttemptRecord.from_dict(row) for row in body]
        total = _parse_total(headers.get("Content-Range"))
        return records, total if total is not None else len(records)

    async def get_history(self, user_id: str, record_id: str) -> AttemptRecord:
        body, _ = await self._request(
            "GET", f"{REST_PREFIX}/{HISTORY_TABLE}",
            params=[("select", "*"), ("id", f"eq.{record_id}"), ("user_id", f"eq.{user_id}")],
        )
        return AttemptRecord.from_dict(self._first(body))

    async def create_history(self, user_id: str, fields: Dict[str, Any]) -> AttemptRecord:
        payload = dict(fields, user_id=user_id)
        body, _ = await self._request(
            "POST", f"{REST_PREFIX}/{HISTORY_TABLE}",
            payload=payload, prefer="return=representation",
        )
        return AttemptRecord.from_dict(self._first(body))

    async def update_history(
        self, user_id: str, record_id: str, fields: Dict[str, Any]
    ) -> AttemptRecord:
        body, _ = await self._request(
            "PATCH", f"{REST_PREFIX}/{HISTORY_TABLE}",
            params=[("id", f"eq.{record_id}"), ("user_id", f"eq.{user_id}")],
            payload=fields, prefer="return=representation",
        )
        return AttemptRecord.from_dict(self._first(body))

    async def delete_history(self, user_id: str, record_id: str) -> None:
        body, _ = await self._request(
            "DELETE", f"{REST_PREFIX}/{HISTORY_TABLE}",
            params=[("id", f"eq.{record_id}"), ("user_id", f"eq.{user_id}")],
            prefer="return=representation",
        )
        self._first(body)

    # ------------------------------------------------------------------
    # Simulations
    # ------------------------------------------------------------------

    async def create_simulation(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        body, _ = await self._request(
            "POST", f"{REST_PREFIX}/simulations",
            payload=dict(fields, user_id=user_id), prefer="return=representation",
        )
        return self._first(body)

    async def get_simulation(self, user_id: str, simulation_id: str) -> Dict[str, Any]:
        body, _ = await self._request(
            "GET", f"{REST_PREFIX}/simulations",
            params=[("select", "*"), ("id", f"eq.{simulation_id}"), ("user_id", f"eq.{user_id}")],
        )
        return self._first(body)

    # ------------------------------------------------------------------
    # Offline queue replay
    # ------------------------------------------------------------------

    async def execute(self, operation: QueuedOperation) -> None:
        """Apply a queued mutation to its collection."""
        path = f"{REST_PREFIX}/{operation.table}"
        data = operation.data

        if operation.type == "CREATE":
            await self._request("POST", path, payload=data, prefer="return=minimal")
        elif operation.type == "UPDATE":
            await self._request(
                "PATCH", path, params=[("id", f"eq.{data['id']}")],
                payload=data, prefer="return=minimal",
            )
        elif operation.type == "DELETE":
            await self._request(
                "DELETE", path, params=[("id", f"eq.{data['id']}")],
                prefer="return=minimal",
            )
        else:
            raise UnsupportedOperationError(f"Unsupported operation type: {operation.type}")

    async def ping(self) -> bool:
        """Best-effort reachability check (HEAD /rest/v1/)."""
        session = await self._get_session()
        try:
            async with session.head(f"{self.base_url}{REST_PREFIX}/", headers=self._headers()) as resp:
                return resp.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Хранилище недоступно: %s", e)
            return False

    async def close(self):
        """Закрыть HTTP-сессию."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
