"""Тесты локального хранилища (SQLite)."""
import uuid
from datetime import timedelta

import pytest

from stayfocus.store.exceptions import DataNotFoundError, UnsupportedOperationError
from stayfocus.store.local import LocalStore
from stayfocus.store.models import HistoryFilters, QueuedOperation, format_timestamp


@pytest.fixture
def store(db):
    return LocalStore(db)


def _fields(percentage=80, score=8, **extra):
    fields = {
        "simulation_id": "sim-1",
        "score": score,
        "total_questions": 10,
        "percentage": percentage,
        "answers": {"1": "a"},
    }
    fields.update(extra)
    return fields


# ============================================================================
# ТОКЕНЫ
# ============================================================================


class TestTokens:

    async def test_issue_and_resolve(self, store):
        token = await store.issue_token("12345")

        assert await store.get_user_id(token) == "12345"

    async def test_unknown_token(self, store):
        assert await store.get_user_id("missing") is None

    async def test_tokens_are_unique(self, store):
        assert await store.issue_token("1") != await store.issue_token("1")


# ============================================================================
# ИСТОРИЯ
# ============================================================================


class TestHistory:

    async def test_create_and_get(self, store):
        record = await store.create_history("user-1", _fields(time_taken_minutes=15.5))

        fetched = await store.get_history("user-1", record.id)

        assert fetched.id == record.id
        assert fetched.percentage == 80.0
        assert fetched.time_taken_minutes == 15.5
        assert fetched.answers == {"1": "a"}
        assert fetched.created_at is not None
        uuid.UUID(record.id)

    async def test_get_other_user(self, store):
        record = await store.create_history("user-1", _fields())

        with pytest.raises(DataNotFoundError):
            await store.get_history("user-2", record.id)

    async def test_list_filters_and_pagination(self, store, base_time):
        for i, pct in enumerate([50, 70, 90]):
            await store.create_history("user-1", _fields(
                percentage=pct, score=pct // 10,
                completed_at=format_timestamp(base_time + timedelta(days=i)),
            ))
        await store.create_history("user-2", _fields())

        records, total = await store.list_history("user-1")
        assert total == 3
        assert [r.percentage for r in records] == [90, 70, 50]

        records, total = await store.list_history("user-1", HistoryFilters(
            min_percentage=60, sort_by="percentage", sort_order="asc", limit=1, offset=1,
        ))
        assert total == 2
        assert [r.percentage for r in records] == [90]

        records, _ = await store.list_history("user-1", HistoryFilters(
            date_from=base_time + timedelta(hours=12),
            date_to=base_time + timedelta(days=1, hours=12),
        ))
        assert [r.percentage for r in records] == [70]

    async def test_update(self, store):
        record = await store.create_history("user-1", _fields())

        updated = await store.update_history("user-1", record.id, {"score": 9, "percentage": 90})

        assert updated.score == 9
        assert updated.updated_at is not None

    async def test_update_missing(self, store):
        with pytest.raises(DataNotFoundError):
            await store.update_history("user-1", str(uuid.uuid4()), {"score": 1})

    async def test_delete(self, store):
        record = await store.create_history("user-1", _fields())

        await store.delete_history("user-1", record.id)

        with pytest.raises(DataNotFoundError):
            await store.delete_history("user-1", record.id)


# ============================================================================
# ВОСПРОИЗВЕДЕНИЕ ОЧЕРЕДИ
# ============================================================================


class TestExecute:

    async def test_create_history(self, store):
        record_id = str(uuid.uuid4())
        operation = QueuedOperation.create(
            "CREATE", "simulation_history", dict(_fields(), id=record_id, user_id="42"),
        )

        await store.execute(operation)

        assert (await store.get_history("42", record_id)).score == 8

    async def test_replayed_create_is_noop(self, store):
        """Повторная доставка CREATE не создаёт дубликат."""
        operation = QueuedOperation.create(
            "CREATE", "simulation_history", dict(_fields(), id=str(uuid.uuid4()), user_id="42"),
        )

        await store.execute(operation)
        await store.execute(operation)

        _, total = await store.list_history("42")
        assert total == 1

    async def test_simulation_create_and_update(self, store):
        simulation_id = str(uuid.uuid4())
        await store.execute(QueuedOperation.create("CREATE", "simulations", {
            "id": simulation_id,
            "user_id": "42",
            "title": "Simulado",
            "metadata": {"titulo": "Simulado"},
            "questions": [{"id": "1", "gabarito": "a"}],
            "total_questions": 1,
            "user_answers": {},
        }))

        await store.execute(QueuedOperation.create("UPDATE", "simulations", {
            "id": simulation_id,
            "user_id": "42",
            "user_answers": {"1": "a"},
            "score": 1,
            "completed": True,
            "completed_at": "2026-03-10T12:00:00Z",
        }))

        simulation = await store.get_simulation("42", simulation_id)
        assert simulation["completed"] is True
        assert simulation["user_answers"] == {"1": "a"}
        assert simulation["questions"][0]["gabarito"] == "a"
        assert simulation["completed_at"] == "2026-03-10T12:00:00.000Z"

    async def test_update_missing_simulation(self, store):
        operation = QueuedOperation.create("UPDATE", "simulations", {"id": "x", "user_id": "42", "score": 1})

        with pytest.raises(DataNotFoundError):
            await store.execute(operation)

    async def test_unknown_table(self, store):
        operation = QueuedOperation.create("CREATE", "competitions", {"user_id": "42"})

        with pytest.raises(UnsupportedOperationError):
            await store.execute(operation)

    async def test_missing_user_id(self, store):
        operation = QueuedOperation.create("CREATE", "simulation_history", _fields())

        with pytest.raises(UnsupportedOperationError):
            await store.execute(operation)

    async def test_ping(self, store):
        assert await store.ping() is True
