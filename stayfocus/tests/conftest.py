"""Общие фикстуры для тестов StayFocus."""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from stayfocus.core.database import init_database
from stayfocus.core.local_storage import LocalStorage
from stayfocus.store.exceptions import DataNotFoundError
from stayfocus.store.models import (
    AttemptRecord, HistoryFilters, QueuedOperation, QuizQuestion, format_timestamp, utc_now,
)

BASE_TIME = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_record(
    percentage: float,
    score: Optional[int] = None,
    total: int = 10,
    simulation_id: str = "sim-1",
    completed_at: Optional[datetime] = None,
    time_taken: Optional[float] = None,
    user_id: str = "user-1",
) -> AttemptRecord:
    """AttemptRecord с согласованными score/percentage по умолчанию."""
    if score is None:
        score = round(percentage * total / 100)
    return AttemptRecord(
        id=str(uuid.uuid4()),
        user_id=user_id,
        simulation_id=simulation_id,
        score=score,
        total_questions=total,
        percentage=percentage,
        completed_at=completed_at or BASE_TIME,
        time_taken_minutes=time_taken,
    )


class FakeStore:
    """In-memory store with the same interface as LocalStore / RestStore."""

    def __init__(self):
        self.tokens: Dict[str, str] = {"valid-token": "user-1", "other-token": "user-2"}
        self.records: Dict[str, AttemptRecord] = {}
        self.simulations: Dict[str, Dict[str, Any]] = {}
        self.executed: List[QueuedOperation] = []
        self.online = True

    async def get_user_id(self, token: str) -> Optional[str]:
        return self.tokens.get(token)

    async def issue_token(self, user_id: str) -> str:
        token = f"token-{user_id}"
        self.tokens[token] = user_id
        return token

    def add(self, record: AttemptRecord) -> AttemptRecord:
        self.records[record.id] = record
        return record

    async def list_history(self, user_id: str, filters: Optional[HistoryFilters] = None):
        filters = filters or HistoryFilters()
        rows = [r for r in self.records.values() if r.user_id == user_id]
        if filters.simulation_ids:
            rows = [r for r in rows if r.simulation_id in filters.simulation_ids]
        if filters.date_from:
            rows = [r for r in rows if r.completed_at >= filters.date_from]
        if filters.date_to:
            rows = [r for r in rows if r.completed_at <= filters.date_to]
        if filters.min_score is not None:
            rows = [r for r in rows if r.score >= filters.min_score]
        if filters.max_score is not None:
            rows = [r for r in rows if r.score <= filters.max_score]
        if filters.min_percentage is not None:
            rows = [r for r in rows if r.percentage >= filters.min_percentage]
        if filters.max_percentage is not None:
            rows = [r for r in rows if r.percentage <= filters.max_percentage]

        rows.sort(
            key=lambda r: getattr(r, filters.sort_by) or 0,
            reverse=filters.sort_order == "desc",
        )
        total = len(rows)
        if filters.limit is not None:
            rows = rows[filters.offset:filters.offset + filters.limit]
        return rows, total

    async def get_history(self, user_id: str, record_id: str) -> AttemptRecord:
        record = self.records.get(record_id)
        if record is None or record.user_id != user_id:
            raise DataNotFoundError("Record not found")
        return record

    async def create_history(self, user_id: str, fields: Dict[str, Any]) -> AttemptRecord:
        data = dict(fields, user_id=user_id)
        data.setdefault("id", str(uuid.uuid4()))
        data.setdefault("completed_at", format_timestamp(utc_now()))
        record = AttemptRecord.from_dict(data)
        record.created_at = utc_now()
        return self.add(record)

    async def update_history(self, user_id: str, record_id: str, fields: Dict[str, Any]) -> AttemptRecord:
        record = await self.get_history(user_id, record_id)
        data = record.to_dict()
        data.update(fields)
        updated = AttemptRecord.from_dict(data)
        self.records[record_id] = updated
        return updated

    async def delete_history(self, user_id: str, record_id: str) -> None:
        await self.get_history(user_id, record_id)
        del self.records[record_id]

    async def create_simulation(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        simulation = dict(fields, user_id=user_id)
        self.simulations[simulation["id"]] = simulation
        return simulation

    async def get_simulation(self, user_id: str, simulation_id: str) -> Dict[str, Any]:
        simulation = self.simulations.get(simulation_id)
        if simulation is None or simulation["user_id"] != user_id:
            raise DataNotFoundError("Simulation not found")
        return simulation

    async def execute(self, operation: QueuedOperation) -> None:
        self.executed.append(operation)

    async def ping(self) -> bool:
        return self.online

    async def close(self):
        pass


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def sample_records():
    """Три попытки из сценария: 80%, 60%, 90%."""
    return [
        make_record(80, score=8, completed_at=BASE_TIME),
        make_record(60, score=6, completed_at=BASE_TIME + timedelta(days=1)),
        make_record(90, score=9, completed_at=BASE_TIME + timedelta(days=2)),
    ]


@pytest.fixture
def sample_questions():
    """Пять вопросов с правильными ответами a, b, c, d, a."""
    answers = ["a", "b", "c", "d", "a"]
    return [
        QuizQuestion(
            id=str(i + 1),
            statement=f"Вопрос {i + 1}",
            options={"a": "Один", "b": "Два", "c": "Три", "d": "Четыре"},
            correct_answer=answer,
            explanation=f"Пояснение {i + 1}",
        )
        for i, answer in enumerate(answers)
    ]


@pytest.fixture
def simulado_document():
    """Документ симуляции в формате {metadata, questoes}."""
    return {
        "metadata": {
            "titulo": "Simulado TRT",
            "concurso": "TRT 2ª Região",
            "ano": 2025,
            "totalQuestoes": 2,
            "autor": "Banca",
        },
        "questoes": [
            {
                "id": 1,
                "enunciado": "Capital do Brasil?",
                "alternativas": {"a": "São Paulo", "b": "Brasília", "c": "Rio", "d": "Salvador"},
                "gabarito": "b",
                "assunto": "Geografia",
                "dificuldade": 1,
                "explicacao": "Brasília é a capital desde 1960.",
            },
            {
                "id": 2,
                "enunciado": "2 + 2 = ?",
                "alternativas": {"a": "3", "b": "4", "c": "5", "d": "22"},
                "gabarito": "B",
            },
        ],
    }


@pytest.fixture
async def db():
    """SQLite в памяти со схемой из init.sql."""
    database = await init_database(":memory:")
    yield database
    await database.close()


@pytest.fixture
def local_storage(db):
    return LocalStorage(db)


@pytest.fixture
def record_factory():
    """Фабрика AttemptRecord (см. make_record)."""
    return make_record


@pytest.fixture
def base_time():
    return BASE_TIME
