"""Тесты офлайн-очереди мутаций."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from stayfocus.core.encryption import StorageEncryption, generate_key
from stayfocus.core.local_storage import LocalStorage
from stayfocus.services.connectivity import ConnectivityMonitor
from stayfocus.services.offline_queue import DEFAULT_STORAGE_KEY, OfflineMutationQueue


def _monitor(online: bool) -> ConnectivityMonitor:
    return ConnectivityMonitor(AsyncMock(return_value=online), initially_online=online)


class Recorder:
    """Executor that records delivered operations and can fail on demand."""

    def __init__(self, fail_times: int = 0, always_fail: bool = False):
        self.delivered = []
        self.calls = 0
        self.fail_times = fail_times
        self.always_fail = always_fail

    async def __call__(self, operation):
        self.calls += 1
        if self.always_fail or self.calls <= self.fail_times:
            raise ConnectionError("store unavailable")
        self.delivered.append(operation)


@pytest.fixture
def recorder():
    return Recorder()


# ============================================================================
# ДОСТАВКА
# ============================================================================


class TestDelivery:
    """Тесты обработки очереди."""

    async def test_fifo_delivery(self, local_storage, recorder):
        """N операций при рабочем хранилище доставляются в порядке добавления."""
        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, recorder, monitor)

        ids = []
        for i in range(5):
            ids.append(await queue.enqueue("CREATE", "simulation_history", {"n": i, "user_id": "u"}))

        await monitor.set_online(True)

        assert [op.id for op in recorder.delivered] == ids
        assert [op.data["n"] for op in recorder.delivered] == [0, 1, 2, 3, 4]
        assert queue.get_queue_status()["pending_count"] == 0

    async def test_enqueue_online_processes_in_background(self, local_storage, recorder):
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=True))

        for i in range(3):
            await queue.enqueue("UPDATE", "simulations", {"id": str(i), "user_id": "u"})
        await queue.wait_idle()

        assert [op.data["id"] for op in recorder.delivered] == ["0", "1", "2"]
        assert queue.operations == []

    async def test_enqueue_returns_id_format(self, local_storage, recorder):
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))

        op_id = await queue.enqueue("DELETE", "simulation_history", {"id": "x", "user_id": "u"})

        prefix, millis, suffix = op_id.split("_")
        assert prefix == "offline"
        assert millis.isdigit()
        assert len(suffix) == 9
        assert suffix.isalnum() and suffix.lower() == suffix

    async def test_unknown_kind_rejected(self, local_storage, recorder):
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))

        with pytest.raises(ValueError):
            await queue.enqueue("UPSERT", "simulation_history", {})
        assert queue.operations == []

    async def test_offline_does_nothing(self, local_storage, recorder):
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})

        await queue.process_queue()

        assert recorder.calls == 0
        assert queue.get_queue_status()["pending_count"] == 1

    async def test_overlapping_pass_ignored(self, local_storage, recorder):
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})
        queue.connectivity._online = True
        queue.is_processing = True

        await queue.process_queue()

        assert recorder.calls == 0
        assert len(queue.operations) == 1


# ============================================================================
# ПОВТОРЫ
# ============================================================================


class TestRetries:
    """Тесты ограниченного числа повторов."""

    async def test_dropped_after_max_retries(self, local_storage):
        """Всегда падающая операция: ровно max_retries попыток, затем удаление."""
        executor = Recorder(always_fail=True)
        on_dropped = AsyncMock()
        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, executor, monitor, max_retries=3, on_dropped=on_dropped)
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})
        monitor._online = True

        await queue.process_queue()
        assert len(queue.operations) == 1
        assert queue.operations[0].retry_count == 1

        await queue.process_queue()
        assert len(queue.operations) == 1
        assert queue.operations[0].retry_count == 2

        await queue.process_queue()
        assert queue.operations == []
        assert executor.calls == 3
        assert executor.delivered == []

        assert len(queue.dead_letters) == 1
        assert queue.get_queue_status()["dead_letter_count"] == 1
        on_dropped.assert_awaited_once_with(queue.dead_letters[0])

        # Dropped operations are never retried
        await queue.process_queue()
        assert executor.calls == 3

    async def test_transient_failure_recovers(self, local_storage):
        executor = Recorder(fail_times=1)
        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, executor, monitor)
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})
        monitor._online = True

        await queue.process_queue()
        assert queue.operations[0].retry_count == 1

        await queue.process_queue()
        assert queue.operations == []
        assert len(executor.delivered) == 1
        assert executor.delivered[0].retry_count == 1

    async def test_failure_does_not_block_others(self, local_storage):
        """Ошибка одной операции не мешает доставке остальных."""
        delivered = []

        async def executor(operation):
            if operation.data["n"] == 0:
                raise RuntimeError("boom")
            delivered.append(operation.data["n"])

        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, executor, monitor)
        for i in range(3):
            await queue.enqueue("CREATE", "simulation_history", {"n": i, "user_id": "u"})
        monitor._online = True

        await queue.process_queue()

        assert delivered == [1, 2]
        assert [op.data["n"] for op in queue.operations] == [0]

    async def test_on_dropped_failure_is_logged(self, local_storage):
        executor = Recorder(always_fail=True)
        on_dropped = AsyncMock(side_effect=RuntimeError("notify failed"))
        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, executor, monitor, max_retries=1, on_dropped=on_dropped)
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})
        monitor._online = True

        await queue.process_queue()

        assert queue.operations == []
        on_dropped.assert_awaited_once()


# ============================================================================
# ИЗМЕНЕНИЯ ВО ВРЕМЯ ОБРАБОТКИ
# ============================================================================


class TestDuringPass:
    """Очистка, добавление и отмена посреди прохода."""

    async def test_clear_and_enqueue_during_pass(self, local_storage):
        """Операция, добавленная после clear_queue посреди прохода, доставляется."""
        started = asyncio.Event()
        release = asyncio.Event()
        delivered = []

        async def executor(operation):
            if operation.data["n"] == 0:
                started.set()
                await release.wait()
            delivered.append(operation.data["n"])

        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, executor, monitor)
        for i in range(3):
            await queue.enqueue("CREATE", "simulation_history", {"n": i, "user_id": "u"})
        monitor._online = True

        task = asyncio.create_task(queue.process_queue())
        await started.wait()
        await queue.clear_queue()
        await queue.enqueue("CREATE", "simulation_history", {"n": 99, "user_id": "u"})
        release.set()
        await task
        await queue.wait_idle()

        assert delivered == [0, 99]
        assert queue.operations == []
        blob = await local_storage.get_item(DEFAULT_STORAGE_KEY)
        assert blob["operations"] == []

    async def test_failed_operation_not_restored_after_clear(self, local_storage):
        started = asyncio.Event()
        release = asyncio.Event()

        async def executor(operation):
            started.set()
            await release.wait()
            raise ConnectionError("store unavailable")

        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, executor, monitor, max_retries=1)
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})
        monitor._online = True

        task = asyncio.create_task(queue.process_queue())
        await started.wait()
        await queue.clear_queue()
        release.set()
        await task

        assert queue.operations == []
        assert queue.dead_letters == []

    async def test_cancelled_pass_keeps_operation(self, local_storage):
        """Отмена посреди доставки не теряет операцию и не считает попытку."""
        started = asyncio.Event()

        async def executor(operation):
            started.set()
            await asyncio.Event().wait()

        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, executor, monitor)
        op_id = await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})
        monitor._online = True

        task = asyncio.create_task(queue.process_queue())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [op.id for op in queue.operations] == [op_id]
        assert queue.operations[0].retry_count == 0
        assert queue.is_processing is False

        blob = await local_storage.get_item(DEFAULT_STORAGE_KEY)
        assert [op["id"] for op in blob["operations"]] == [op_id]
        assert blob["operations"][0]["retryCount"] == 0


# ============================================================================
# ПЕРСИСТЕНТНОСТЬ
# ============================================================================


class TestPersistence:
    """Тесты сохранения и восстановления очереди."""

    async def test_blob_format(self, local_storage, recorder):
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))
        await queue.enqueue("CREATE", "simulation_history", {"score": 8, "user_id": "u"})

        blob = await local_storage.get_item(DEFAULT_STORAGE_KEY)

        assert blob["isProcessing"] is False
        assert len(blob["operations"]) == 1
        op = blob["operations"][0]
        assert op["type"] == "CREATE"
        assert op["table"] == "simulation_history"
        assert op["data"] == {"score": 8, "user_id": "u"}
        assert op["retryCount"] == 0
        assert op["maxRetries"] == 3
        assert isinstance(op["timestamp"], int)

    async def test_restore_after_restart(self, local_storage, recorder):
        first = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))
        ids = [
            await first.enqueue("CREATE", "simulation_history", {"n": i, "user_id": "u"})
            for i in range(3)
        ]

        second = OfflineMutationQueue(local_storage, recorder, _monitor(online=True))
        await second.load()

        assert [op.id for op in second.operations] == ids
        await second.process_queue()
        assert [op.id for op in recorder.delivered] == ids

    async def test_load_resets_processing_flag(self, local_storage, recorder):
        await local_storage.set_item(DEFAULT_STORAGE_KEY, {"operations": [], "isProcessing": True})
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))

        await queue.load()

        assert queue.is_processing is False

    async def test_corrupt_blob(self, local_storage, recorder):
        await local_storage.set_item(DEFAULT_STORAGE_KEY, "not a queue")
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))

        await queue.load()

        assert queue.operations == []
        assert await local_storage.get_item(DEFAULT_STORAGE_KEY) is None

    async def test_custom_storage_key(self, local_storage, recorder):
        queue = OfflineMutationQueue(
            local_storage, recorder, _monitor(online=False), storage_key="custom_key",
        )
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})

        assert await local_storage.get_item("custom_key") is not None
        assert await local_storage.get_item(DEFAULT_STORAGE_KEY) is None

    async def test_encrypted_blob(self, db, recorder):
        storage = LocalStorage(db, StorageEncryption(generate_key()))
        queue = OfflineMutationQueue(storage, recorder, _monitor(online=False))
        await queue.enqueue("CREATE", "simulation_history", {"secret": "answers", "user_id": "u"})

        row = await db.fetchone("SELECT value FROM local_storage WHERE key = ?", (DEFAULT_STORAGE_KEY,))
        assert "answers" not in row["value"]

        restored = OfflineMutationQueue(storage, recorder, _monitor(online=False))
        await restored.load()
        assert restored.operations[0].data["secret"] == "answers"


# ============================================================================
# СТАТУС И ОЧИСТКА
# ============================================================================


class TestStatus:

    async def test_status(self, local_storage, recorder):
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})

        assert queue.get_queue_status() == {
            "pending_count": 1,
            "is_processing": False,
            "is_online": False,
            "dead_letter_count": 0,
        }

    async def test_clear_queue(self, local_storage, recorder):
        queue = OfflineMutationQueue(local_storage, recorder, _monitor(online=False))
        for _ in range(3):
            await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})

        await queue.clear_queue()

        assert queue.get_queue_status()["pending_count"] == 0
        blob = await local_storage.get_item(DEFAULT_STORAGE_KEY)
        assert blob["operations"] == []

    async def test_clear_dead_letters(self, local_storage):
        monitor = _monitor(online=False)
        queue = OfflineMutationQueue(local_storage, Recorder(always_fail=True), monitor, max_retries=1)
        await queue.enqueue("CREATE", "simulation_history", {"user_id": "u"})
        monitor._online = True
        await queue.process_queue()
        assert len(queue.dead_letters) == 1

        await queue.clear_dead_letters()

        assert queue.dead_letters == []
