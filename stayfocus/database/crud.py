"""CRUD operations for the local SQLite store."""
import json
import secrets
import uuid
from typing import Any, Dict, List, Optional, Tuple

from stayfocus.core.database import Database
from stayfocus.store.models import HistoryFilters, format_timestamp, parse_timestamp, utc_now

HISTORY_COLUMNS = (
    "id, user_id, simulation_id, score, total_questions, percentage, "
    "time_taken_minutes, answers, completed_at, created_at, updated_at"
)

HISTORY_UPDATABLE = (
    "score", "total_questions", "percentage",
    "time_taken_minutes", "answers", "completed_at",
)

HISTORY_SORTABLE = ("completed_at", "score", "percentage", "time_taken_minutes", "created_at")

SIMULATION_UPDATABLE = (
    "title", "metadata", "questions", "total_questions", "user_answers",
    "score", "completed", "completed_at", "competition_id",
)

_JSON_COLUMNS = ("answers", "metadata", "questions", "user_answers")


def _encode(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return json.dumps(value if value is not None else {}, ensure_ascii=False)
    if column == "completed_at":
        return format_timestamp(parse_timestamp(value)) if value else None
    if column == "completed":
        return 1 if value else 0
    return value


def _decode_row(row: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(row)
    for column in _JSON_COLUMNS:
        if column in result and isinstance(result[column], str):
            result[column] = json.loads(result[column])
    if "completed" in result:
        result["completed"] = bool(result["completed"])
    return result


# ============================================================================
# API TOKENS
# ============================================================================

async def get_user_id_by_token(db: Database, token: str) -> Optional[str]:
    """Resolve a bearer token to its owner's user id."""
    row = await db.fetchone("SELECT user_id FROM api_tokens WHERE token = ?", (token,))
    return row["user_id"] if row else None


async def create_api_token(db: Database, user_id: str) -> str:
    """Issue a new bearer token for user_id."""
    token = secrets.token_urlsafe(32)
    await db.execute(
        "INSERT INTO api_tokens (token, user_id) VALUES (?, ?)",
        (token, user_id),
    )
    return token


# ============================================================================
# SIMULATION HISTORY
# ============================================================================

def _history_where(user_id: str, filters: HistoryFilters) -> Tuple[str, list]:
    clauses = ["user_id = ?"]
    params: list = [user_id]

    if filters.simulation_ids:
        placeholders = ", ".join("?" for _ in filters.simulation_ids)
        clauses.append(f"simulation_id IN ({placeholders})")
        params.extend(filters.simulation_ids)
    if filters.date_from is not None:
        clauses.append("completed_at >= ?")
        params.append(format_timestamp(filters.date_from))
    if filters.date_to is not None:
        clauses.append("completed_at <= ?")
        params.append(format_timestamp(filters.date_to))
    if filters.min_score is not None:
        clauses.append("score >= ?")
        params.append(filters.min_score)
    if filters.max_score is not None:
        clauses.append("score <= ?")
        params.append(filters.max_score)
    if filters.min_percentage is not None:
        clauses.append("percentage >= ?")
        params.append(filters.min_percentage)
    if filters.max_percentage is not None:
        clauses.append("percentage <= ?")
        params.append(filters.max_percentage)

    return " AND ".join(clauses), params


async def list_history(
    db: Database, user_id: str, filters: HistoryFilters
) -> Tuple[List[Dict], int]:
    """
    List a user's simulation history.

    Returns:
        (rows, total number of rows matching the filters)
    """
    where, params = _history_where(user_id, filters)

    count_row = await db.fetchone(
        f"SELECT COUNT(*) AS total FROM simulation_history WHERE {where}", tuple(params)
    )
    total = count_row["total"] if count_row else 0

    sort_by = filters.sort_by if filters.sort_by in HISTORY_SORTABLE else "completed_at"
    direction = "ASC" if filters.sort_order == "asc" else "DESC"
    query = (
        f"SELECT {HISTORY_COLUMNS} FROM simulation_history WHERE {where} "
        f"ORDER BY {sort_by} {direction}, id {direction}"
    )
    if filters.limit is not None:
        query += " LIMIT ? OFFSET ?"
        params.extend([filters.limit, filters.offset])

    rows = await db.fetchall(query, tuple(params))
    return [_decode_row(row) for row in rows], total


async def get_history(db: Database, user_id: str, record_id: str) -> Optional[Dict]:
    """Get one history record owned by user_id."""
    row = await db.fetchone(
        f"SELECT {HISTORY_COLUMNS} FROM simulation_history WHERE id = ? AND user_id = ?",
        (record_id, user_id),
    )
    return _decode_row(row) if row else None


async def insert_history(db: Database, user_id: str, fields: Dict[str, Any]) -> Dict:
    """
    Insert a history record.

    `fields` may carry its own id (replayed offline operations do), otherwise
    a UUID4 is generated.
    """
    record_id = str(fields.get("id") or uuid.uuid4())
    completed_at = fields.get("completed_at") or format_timestamp(utc_now())

    await db.execute(
        """INSERT INTO simulation_history (
               id, user_id, simulation_id, score, total_questions, percentage,
               time_taken_minutes, answers, completed_at
           ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            record_id,
            user_id,
            str(fields["simulation_id"]),
            fields["score"],
            fields["total_questions"],
            fields["percentage"],
            fields.get("time_taken_minutes"),
            _encode("answers", fields.get("answers") or {}),
            _encode("completed_at", completed_at),
        ),
    )

    return await get_history(db, user_id, record_id)


async def update_history(
    db: Database, user_id: str, record_id: str, fields: Dict[str, Any]
) -> Optional[Dict]:
    """Update the given columns; returns the updated row or None if absent."""
    columns = [c for c in HISTORY_UPDATABLE if c in fields]
    if not columns:
        return await get_history(db, user_id, record_id)

    assignments = ", ".join(f"{c} = ?" for c in columns)
    params = [_encode(c, fields[c]) for c in columns]
    params.extend([format_timestamp(utc_now()), record_id, user_id])

    affected = await db.execute(
        f"UPDATE simulation_history SET {assignments}, updated_at = ? WHERE id = ? AND user_id = ?",
        tuple(params),
    )
    if not affected:
        return None
    return await get_history(db, user_id, record_id)


async def delete_history(db: Database, user_id: str, record_id: str) -> bool:
    """Delete a history record. Returns True if a row was removed."""
    affected = await db.execute(
        "DELETE FROM simulation_history WHERE id = ? AND user_id = ?",
        (record_id, user_id),
    )
    return affected > 0


# ============================================================================
# SIMULATIONS
# ============================================================================

async def insert_simulation(db: Database, user_id: str, fields: Dict[str, Any]) -> Dict:
    """Store a loaded simulation (questions + metadata)."""
    simulation_id = str(fields.get("id") or uuid.uuid4())
    questions = fields.get("questions") or []

    await db.execute(
        """INSERT INTO simulations (
               id, user_id, competition_id, title, metadata, questions,
               total_questions, user_answers, score, completed, started_at
           ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?)""",
        (
            simulation_id,
            user_id,
            fields.get("competition_id"),
            fields.get("title") or "",
            _encode("metadata", fields.get("metadata") or {}),
            json.dumps(questions, ensure_ascii=False),
            fields.get("total_questions") or len(questions),
            _encode("user_answers", fields.get("user_answers") or {}),
            format_timestamp(utc_now()),
        ),
    )

    return await get_simulation(db, user_id, simulation_id)


async def get_simulation(db: Database, user_id: str, simulation_id: str) -> Optional[Dict]:
    row = await db.fetchone(
        "SELECT * FROM simulations WHERE id = ? AND user_id = ?",
        (simulation_id, user_id),
    )
    return _decode_row(row) if row else None


async def update_simulation(
    db: Database, user_id: str, simulation_id: str, fields: Dict[str, Any]
) -> bool:
    columns = [c for c in SIMULATION_UPDATABLE if c in fields]
    if not columns:
        return False

    assignments = ", ".join(f"{c} = ?" for c in columns)
    params = [_encode(c, fields[c]) for c in columns]
    params.extend([format_timestamp(utc_now()), simulation_id, user_id])

    affected = await db.execute(
        f"UPDATE simulations SET {assignments}, updated_at = ? WHERE id = ? AND user_id = ?",
        tuple(params),
    )
    return affected > 0


async def delete_simulation(db: Database, user_id: str, simulation_id: str) -> bool:
    affected = await db.execute(
        "DELETE FROM simulations WHERE id = ? AND user_id = ?",
        (simulation_id, user_id),
    )
    return affected > 0
