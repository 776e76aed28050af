"""Data models shared by the store, the offline queue and the quiz flow."""
import json
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

OPERATION_KINDS = ("CREATE", "UPDATE", "DELETE")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware datetime (UTC when naive).

    Accepts the trailing 'Z' produced by JavaScript clients and the store.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as ISO-8601 UTC string with millisecond precision."""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _load_json(value, default):
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


@dataclass
class AttemptRecord:
    """One completed simulation attempt (row of simulation_history)."""
    id: str
    user_id: str
    simulation_id: str
    score: int
    total_questions: int
    percentage: float
    completed_at: datetime
    time_taken_minutes: Optional[float] = None
    answers: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttemptRecord":
        """Build a record from a store row / JSON payload."""
        time_taken = data.get("time_taken_minutes")
        return cls(
            id=str(data.get("id") or ""),
            user_id=str(data.get("user_id") or ""),
            simulation_id=str(data["simulation_id"]),
            score=int(data["score"]),
            total_questions=int(data["total_questions"]),
            percentage=float(data["percentage"]),
            completed_at=parse_timestamp(data.get("completed_at")) or utc_now(),
            time_taken_minutes=float(time_taken) if time_taken is not None else None,
            answers={str(k): v for k, v in _load_json(data.get("answers"), {}).items()},
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "simulation_id": self.simulation_id,
            "score": self.score,
            "total_questions": self.total_questions,
            "percentage": self.percentage,
            "time_taken_minutes": self.time_taken_minutes,
            "answers": dict(self.answers),
            "completed_at": format_timestamp(self.completed_at),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    def to_payload(self) -> Dict[str, Any]:
        """Fields written to the store on insert."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "simulation_id": self.simulation_id,
            "score": self.score,
            "total_questions": self.total_questions,
            "percentage": self.percentage,
            "time_taken_minutes": self.time_taken_minutes,
            "answers": dict(self.answers),
            "completed_at": format_timestamp(self.completed_at),
        }


def generate_operation_id() -> str:
    """Identifier in the form offline_<epoch_ms>_<9 base36 chars>."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"offline_{int(time.time() * 1000)}_{suffix}"


@dataclass
class QueuedOperation:
    """One pending mutation awaiting replay against the store."""
    id: str
    type: str
    table: str
    data: Dict[str, Any]
    timestamp: int
    retry_count: int = 0
    max_retries: int = 3

    @classmethod
    def create(cls, kind: str, table: str, payload: Dict[str, Any], max_retries: int = 3) -> "QueuedOperation":
        kind = kind.upper()
        if kind not in OPERATION_KINDS:
            raise ValueError(f"Unsupported operation kind: {kind}")
        return cls(
            id=generate_operation_id(),
            type=kind,
            table=table,
            data=payload,
            timestamp=int(time.time() * 1000),
            retry_count=0,
            max_retries=max_retries,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedOperation":
        return cls(
            id=data["id"],
            type=data["type"],
            table=data["table"],
            data=data.get("data") or {},
            timestamp=int(data.get("timestamp") or 0),
            retry_count=int(data.get("retryCount", 0)),
            max_retries=int(data.get("maxRetries", 3)),
        )

    def to_dict(self) -> Dict[str, Any]:
        # Field names follow the persisted blob format of the web client
        return {
            "id": self.id,
            "type": self.type,
            "table": self.table,
            "data": self.data,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
        }


@dataclass
class QuizQuestion:
    """Single multiple-choice question of a simulation."""
    id: str
    statement: str
    options: Dict[str, str]
    correct_answer: str
    subject: Optional[str] = None
    difficulty: Optional[int] = None
    explanation: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuizQuestion":
        return cls(
            id=str(data["id"]),
            statement=data.get("statement", ""),
            options=dict(data.get("options") or {}),
            correct_answer=data.get("correct_answer", ""),
            subject=data.get("subject"),
            difficulty=data.get("difficulty"),
            explanation=data.get("explanation"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "statement": self.statement,
            "options": dict(self.options),
            "correct_answer": self.correct_answer,
            "subject": self.subject,
            "difficulty": self.difficulty,
            "explanation": self.explanation,
        }


@dataclass
class SimulationMetadata:
    """Descriptive header of a simulation document."""
    title: str
    total_questions: int
    competition: Optional[str] = None
    year: Optional[int] = None
    area: Optional[str] = None
    level: Optional[str] = None
    author: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "titulo": self.title,
            "concurso": self.competition,
            "ano": self.year,
            "area": self.area,
            "nivel": self.level,
            "totalQuestoes": self.total_questions,
            "autor": self.author,
        }


@dataclass
class HistoryFilters:
    """Query filters for simulation history listings."""
    simulation_ids: Optional[List[str]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_score: Optional[int] = None
    max_score: Optional[int] = None
    min_percentage: Optional[float] = None
    max_percentage: Optional[float] = None
    sort_by: str = "completed_at"
    sort_order: str = "desc"
    limit: Optional[int] = None
    offset: int = 0
