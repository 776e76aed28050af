"""
Offline mutation queue.

Mutations (CREATE / UPDATE / DELETE on a store collection) are appended to
a FIFO queue that is persisted to local storage after every change and
replayed against the store while it is reachable. A failed operation is
kept for the next pass until it has failed `max_retries` times; then it is
moved to `dead_letters` and reported to `on_dropped`, never to the caller
that enqueued it.

The queue is built by the composition root (bot.py / server.py) and passed
to whatever issues mutations.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from stayfocus.core.local_storage import LocalStorage
from stayfocus.services.connectivity import ConnectivityMonitor
from stayfocus.store.models import QueuedOperation

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "stayfocus_offline_queue"
DEFAULT_MAX_RETRIES = 3

Executor = Callable[[QueuedOperation], Awaitable[None]]
DroppedCallback = Callable[[QueuedOperation], Awaitable[None]]


class OfflineMutationQueue:
    """Persisted FIFO of pending store mutations with bounded retries."""

    def __init__(
        self,
        storage: LocalStorage,
        executor: Executor,
        connectivity: ConnectivityMonitor,
        max_retries: int = DEFAULT_MAX_RETRIES,
        storage_key: str = DEFAULT_STORAGE_KEY,
        on_dropped: Optional[DroppedCallback] = None,
    ):
        """
        Args:
            storage: Durable local storage for the queue blob
            executor: Coroutine applying one operation to the store; raises on failure
            connectivity: Source of is_online; offline → online triggers a pass
            max_retries: Failed attempts before an operation is dropped
            storage_key: Key of the persisted blob
            on_dropped: Awaited with each operation that exhausted its retries
        """
        self.storage = storage
        self.executor = executor
        self.connectivity = connectivity
        self.max_retries = max_retries
        self.storage_key = storage_key
        self.on_dropped = on_dropped

        self.operations: List[QueuedOperation] = []
        self.dead_letters: List[QueuedOperation] = []
        self.is_processing = False
        self._tasks: Set[asyncio.Task] = set()

        connectivity.add_listener(self.process_queue)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Restore the queue saved by a previous run."""
        try:
            blob = await self.storage.get_item(self.storage_key)
            if blob:
                self.operations = [QueuedOperation.from_dict(op) for op in blob.get("operations", [])]
                self.dead_letters = [QueuedOperation.from_dict(op) for op in blob.get("deadLetters", [])]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error("Ошибка загрузки офлайн-очереди, очередь сброшена: %s", e)
            self.operations = []
            self.dead_letters = []
            await self.storage.remove_item(self.storage_key)

        # A pass interrupted by shutdown is never resumed as "processing"
        self.is_processing = False
        logger.info("Офлайн-очередь загружена: %d операций", len(self.operations))

    async def _save(self) -> None:
        await self.storage.set_item(self.storage_key, {
            "operations": [op.to_dict() for op in self.operations],
            "isProcessing": self.is_processing,
            "deadLetters": [op.to_dict() for op in self.dead_letters],
        })

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def enqueue(self, kind: str, table: str, payload: Dict[str, Any]) -> str:
        """
        Append a mutation and persist the queue.

        When online, a processing pass is started in the background; the
        caller does not wait for delivery.

        Returns:
            The operation id
        """
        operation = QueuedOperation.create(kind, table, payload, self.max_retries)
        self.operations.append(operation)
        await self._save()

        logger.info("В очередь добавлена операция %s %s (%s)", operation.type, operation.table, operation.id)

        if self.connectivity.is_online:
            self._schedule_processing()

        return operation.id

    def _schedule_processing(self) -> None:
        task = asyncio.create_task(self.process_queue())
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Сбой обработки офлайн-очереди: %s", task.exception())

    async def process_queue(self) -> None:
        """
        Replay pending operations one at a time in enqueue order.

        Ignored while another pass runs or while offline.
        """
        if self.is_processing or not self.connectivity.is_online:
            return

        self.is_processing = True
        attempted: Set[str] = set()
        dropped: List[QueuedOperation] = []

        try:
            # self.operations stays the source of truth during the pass:
            # enqueue() appends to it and clear_queue() replaces it.
            while True:
                operation = next((op for op in self.operations if op.id not in attempted), None)
                if operation is None:
                    break

                try:
                    await self.executor(operation)
                except Exception as e:
                    logger.error("Ошибка операции %s: %s", operation.id, e)
                    attempted.add(operation.id)
                    operation.retry_count += 1
                    if operation.retry_count < operation.max_retries:
                        continue
                    logger.error(
                        "Операция %s отброшена после %d попыток",
                        operation.id, operation.max_retries,
                    )
                    if self._discard(operation):
                        dropped.append(operation)
                    continue

                attempted.add(operation.id)
                self._discard(operation)
                logger.debug("Операция %s доставлена", operation.id)
        finally:
            self.dead_letters.extend(dropped)
            self.is_processing = False
            await self._save()

        for operation in dropped:
            await self._notify_dropped(operation)

    def _discard(self, operation: QueuedOperation) -> bool:
        """Remove a settled operation; False if it was cleared meanwhile."""
        remaining = [op for op in self.operations if op is not operation]
        found = len(remaining) != len(self.operations)
        self.operations = remaining
        return found

    async def _notify_dropped(self, operation: QueuedOperation) -> None:
        if self.on_dropped is None:
            return
        try:
            await self.on_dropped(operation)
        except Exception:
            logger.exception("on_dropped callback failed for %s", operation.id)

    def get_queue_status(self) -> Dict[str, Any]:
        return {
            "pending_count": len(self.operations),
            "is_processing": self.is_processing,
            "is_online": self.connectivity.is_online,
            "dead_letter_count": len(self.dead_letters),
        }

    async def clear_queue(self) -> None:
        """Discard all pending operations."""
        count = len(self.operations)
        self.operations = []
        await self._save()
        logger.info("Офлайн-очередь очищена (%d операций)", count)

    async def clear_dead_letters(self) -> None:
        self.dead_letters = []
        await self._save()

    async def wait_idle(self) -> None:
        """Wait for background passes started by enqueue()."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
