"""Persistent store backed by the local SQLite database."""
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from stayfocus.core.database import Database
from stayfocus.database import crud
from stayfocus.store.exceptions import (
    DataNotFoundError, StoreError, UnsupportedOperationError,
)
from stayfocus.store.models import AttemptRecord, HistoryFilters, QueuedOperation

logger = logging.getLogger(__name__)

HISTORY_TABLE = "simulation_history"
SIMULATIONS_TABLE = "simulations"


class LocalStore:
    """Store implementation over aiosqlite; same interface as RestStore."""

    def __init__(self, db: Database):
        self.db = db

    async def get_user_id(self, token: str) -> Optional[str]:
        """Resolve a bearer token issued by create_api_token."""
        try:
            return await crud.get_user_id_by_token(self.db, token)
        except sqlite3.Error as e:
            logger.error("Ошибка проверки токена: %s", e)
            raise StoreError(f"Token lookup failed: {e}")

    async def issue_token(self, user_id: str) -> str:
        """Create a bearer token for the REST API."""
        try:
            token = await crud.create_api_token(self.db, user_id)
        except sqlite3.Error as e:
            logger.error("Ошибка выпуска токена: %s", e)
            raise StoreError(f"Token creation failed: {e}")
        logger.info("Выпущен API-токен для пользователя %s", user_id)
        return token

    # ------------------------------------------------------------------
    # Simulation history
    # ------------------------------------------------------------------

    async def list_history(
        self, user_id: str, filters: Optional[HistoryFilters] = None
    ) -> Tuple[List[AttemptRecord], int]:
        filters = filters or HistoryFilters()
        try:
            rows, total = await crud.list_history(self.db, user_id, filters)
        except sqlite3.Error as e:
            logger.error("Ошибка чтения истории: %s", e)
            raise StoreError(f"Database error: {e}")
        return [AttemptRecord.from_dict(row) for row in rows], total

    async def get_history(self, user_id: str, record_id: str) -> AttemptRecord:
        try:
            row = await crud.get_history(self.db, user_id, record_id)
        except sqlite3.Error as e:
            logger.error("Ошибка чтения записи %s: %s", record_id, e)
            raise StoreError(f"Database error: {e}")
        if row is None:
            raise DataNotFoundError("Record not found")
        return AttemptRecord.from_dict(row)

    async def create_history(self, user_id: str, fields: Dict[str, Any]) -> AttemptRecord:
        try:
            row = await crud.insert_history(self.db, user_id, fields)
        except sqlite3.Error as e:
            logger.error("Ошибка создания записи: %s", e)
            raise StoreError(f"Failed to create record: {e}")
        return AttemptRecord.from_dict(row)

    async def update_history(
        self, user_id: str, record_id: str, fields: Dict[str, Any]
    ) -> AttemptRecord:
        try:
            row = await crud.update_history(self.db, user_id, record_id, fields)
        except sqlite3.Error as e:
            logger.error("Ошибка обновления записи %s: %s", record_id, e)
            raise StoreError(f"Failed to update record: {e}")
        if row is None:
            raise DataNotFoundError("Record not found")
        return AttemptRecord.from_dict(row)

    async def delete_history(self, user_id: str, record_id: str) -> None:
        try:
            deleted = await crud.delete_history(self.db, user_id, record_id)
        except sqlite3.Error as e:
            logger.error("Ошибка удаления записи %s: %s", record_id, e)
            raise StoreError(f"Failed to delete record: {e}")
        if not deleted:
            raise DataNotFoundError("Record not found")

    # ------------------------------------------------------------------
    # Simulations
    # ------------------------------------------------------------------

    async def create_simulation(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await crud.insert_simulation(self.db, user_id, fields)
        except sqlite3.Error as e:
            logger.error("Ошибка сохранения симуляции: %s", e)
            raise StoreError(f"Failed to create simulation: {e}")

    async def get_simulation(self, user_id: str, simulation_id: str) -> Dict[str, Any]:
        try:
            row = await crud.get_simulation(self.db, user_id, simulation_id)
        except sqlite3.Error as e:
            raise StoreError(f"Database error: {e}")
        if row is None:
            raise DataNotFoundError("Simulation not found")
        return row

    # ------------------------------------------------------------------
    # Offline queue replay
    # ------------------------------------------------------------------

    async def execute(self, operation: QueuedOperation) -> None:
        """Apply a queued mutation. Payloads carry their owner in `user_id`."""
        data = operation.data
        user_id = data.get("user_id")
        if not user_id:
            raise UnsupportedOperationError(f"Operation {operation.id} has no user_id")

        if operation.table == HISTORY_TABLE:
            await self._execute_history(operation, str(user_id))
        elif operation.table == SIMULATIONS_TABLE:
            await self._execute_simulation(operation, str(user_id))
        else:
            raise UnsupportedOperationError(f"Unknown collection: {operation.table}")

    async def _execute_history(self, operation: QueuedOperation, user_id: str) -> None:
        data = operation.data
        if operation.type == "CREATE":
            # A replay of an already delivered CREATE is a no-op
            if data.get("id") and await crud.get_history(self.db, user_id, str(data["id"])):
                return
            await self.create_history(user_id, data)
        elif operation.type == "UPDATE":
            await self.update_history(user_id, str(data["id"]), data)
        elif operation.type == "DELETE":
            await self.delete_history(user_id, str(data["id"]))
        else:
            raise UnsupportedOperationError(f"Unsupported operation type: {operation.type}")

    async def _execute_simulation(self, operation: QueuedOperation, user_id: str) -> None:
        data = operation.data
        try:
            if operation.type == "CREATE":
                if data.get("id") and await crud.get_simulation(self.db, user_id, str(data["id"])):
                    return
                await crud.insert_simulation(self.db, user_id, data)
            elif operation.type == "UPDATE":
                if not await crud.update_simulation(self.db, user_id, str(data["id"]), data):
                    raise DataNotFoundError("Simulation not found")
            elif operation.type == "DELETE":
                if not await crud.delete_simulation(self.db, user_id, str(data["id"])):
                    raise DataNotFoundError("Simulation not found")
            else:
                raise UnsupportedOperationError(f"Unsupported operation type: {operation.type}")
        except sqlite3.Error as e:
            raise StoreError(f"Database error: {e}")

    async def ping(self) -> bool:
        try:
            await self.db.fetchone("SELECT 1 AS ok")
            return True
        except sqlite3.Error as e:
            logger.warning("Локальная БД недоступна: %s", e)
            return False

    async def close(self):
        await self.db.close()
