"""Request validation for the simulation history API."""
import re
from typing import Any, Dict, List, Mapping, Optional

from stayfocus.store.models import HistoryFilters, format_timestamp, parse_timestamp

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

SORT_FIELDS = ("completed_at", "score", "percentage", "time_taken_minutes", "created_at")
SORT_ORDERS = ("asc", "desc")
DEFAULT_LIMIT = 50
MAX_LIMIT = 100

# Allowed gap between percentage and score / total_questions * 100
PERCENTAGE_TOLERANCE = 0.5

REQUIRED_FIELDS = ("simulation_id", "score", "total_questions", "percentage")


class ValidationError(ValueError):
    """Client input is malformed or out of range (HTTP 400)."""
    pass


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_record_id(record_id: str) -> str:
    if not UUID_RE.match(record_id or ""):
        raise ValidationError("Invalid ID format")
    return record_id


def _check_score(value: Any) -> int:
    if not _is_number(value) or value < 0:
        raise ValidationError("Score must be a non-negative number")
    return value


def _check_total(value: Any) -> int:
    if not _is_number(value) or value <= 0:
        raise ValidationError("Total questions must be a positive number")
    return value


def _check_percentage(value: Any) -> float:
    if not _is_number(value) or value < 0 or value > 100:
        raise ValidationError("Percentage must be between 0 and 100")
    return value


def _check_time(value: Any, allow_null: bool) -> Optional[float]:
    if value is None and allow_null:
        return None
    if not _is_number(value) or value < 0:
        if allow_null:
            raise ValidationError("Time taken must be a non-negative number or null")
        raise ValidationError("Time taken must be a non-negative number")
    return value


def _check_answers(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError("Answers must be an object")
    return value


def _check_completed_at(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("Completed at must be a valid ISO date string")
    try:
        return format_timestamp(parse_timestamp(value))
    except ValueError:
        raise ValidationError("Completed at must be a valid ISO date string")


def check_consistency(score: float, total_questions: float, percentage: float) -> None:
    """score must not exceed the total and percentage must match score / total."""
    if score > total_questions:
        raise ValidationError("Score cannot exceed total questions")
    expected = score / total_questions * 100
    if abs(expected - percentage) > PERCENTAGE_TOLERANCE:
        raise ValidationError("Percentage does not match score and total questions")


def validate_create(body: Any) -> Dict[str, Any]:
    """Validate a POST body and return the fields to insert."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    if (
        not body.get("simulation_id")
        or body.get("score") is None
        or not body.get("total_questions")
        or body.get("percentage") is None
    ):
        raise ValidationError(
            "Missing required fields: simulation_id, score, total_questions, percentage"
        )

    fields = {
        "simulation_id": str(body["simulation_id"]),
        "score": _check_score(body["score"]),
        "total_questions": _check_total(body["total_questions"]),
        "percentage": _check_percentage(body["percentage"]),
        "time_taken_minutes": None,
        "answers": {},
    }
    if body.get("time_taken_minutes") is not None:
        fields["time_taken_minutes"] = _check_time(body["time_taken_minutes"], allow_null=False)
    if body.get("answers") is not None:
        fields["answers"] = _check_answers(body["answers"])
    if body.get("completed_at"):
        fields["completed_at"] = _check_completed_at(body["completed_at"])

    check_consistency(fields["score"], fields["total_questions"], fields["percentage"])
    return fields


def validate_update(body: Any) -> Dict[str, Any]:
    """
    Validate a PUT body. Only fields present in the body are returned.

    Consistency between score, total and percentage is checked later,
    against the merged record (see merged_consistency).
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    fields: Dict[str, Any] = {}
    if "score" in body:
        fields["score"] = _check_score(body["score"])
    if "total_questions" in body:
        fields["total_questions"] = _check_total(body["total_questions"])
    if "percentage" in body:
        fields["percentage"] = _check_percentage(body["percentage"])
    if "time_taken_minutes" in body:
        fields["time_taken_minutes"] = _check_time(body["time_taken_minutes"], allow_null=True)
    if "answers" in body:
        fields["answers"] = _check_answers(body["answers"])
    if "completed_at" in body:
        fields["completed_at"] = _check_completed_at(body["completed_at"])

    if not fields:
        raise ValidationError("No valid fields to update")
    return fields


def merged_consistency(current: Mapping[str, Any], changes: Mapping[str, Any]) -> None:
    """Check consistency of an existing record after applying `changes`."""
    if not {"score", "total_questions", "percentage"} & set(changes):
        return
    check_consistency(
        changes.get("score", current["score"]),
        changes.get("total_questions", current["total_questions"]),
        changes.get("percentage", current["percentage"]),
    )


# ============================================================================
# QUERY PARAMETERS
# ============================================================================

def _int_param(query: Mapping[str, str], name: str) -> Optional[int]:
    raw = query.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def _float_param(query: Mapping[str, str], name: str) -> Optional[float]:
    raw = query.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number")


def _date_param(query: Mapping[str, str], name: str):
    raw = query.get(name)
    if not raw:
        return None
    try:
        return parse_timestamp(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a valid ISO date string")


def _ids_param(query: Mapping[str, str], name: str) -> Optional[List[str]]:
    raw = query.get(name)
    if not raw:
        return None
    ids = [part.strip() for part in raw.split(",") if part.strip()]
    return ids or None


def parse_list_query(query: Mapping[str, str]) -> HistoryFilters:
    """Filters, sorting and pagination of GET /api/simulation-history."""
    sort_by = query.get("sort_by") or "completed_at"
    if sort_by not in SORT_FIELDS:
        raise ValidationError(f"sort_by must be one of: {', '.join(SORT_FIELDS)}")

    sort_order = query.get("sort_order") or "desc"
    if sort_order not in SORT_ORDERS:
        raise ValidationError("sort_order must be 'asc' or 'desc'")

    limit = _int_param(query, "limit")
    limit = DEFAULT_LIMIT if limit is None else limit
    if limit < 1 or limit > MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")

    offset = _int_param(query, "offset") or 0
    if offset < 0:
        raise ValidationError("offset must be non-negative")

    simulation_id = query.get("simulation_id")
    return HistoryFilters(
        simulation_ids=[simulation_id] if simulation_id else None,
        date_from=_date_param(query, "date_from"),
        date_to=_date_param(query, "date_to"),
        min_score=_int_param(query, "min_score"),
        max_score=_int_param(query, "max_score"),
        min_percentage=_float_param(query, "min_percentage"),
        max_percentage=_float_param(query, "max_percentage"),
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )


def parse_statistics_query(query: Mapping[str, str], multiple: bool = False) -> HistoryFilters:
    """
    Filters of the statistics endpoints: simulation_id (or comma separated
    simulation_ids when `multiple`), date_from, date_to. No pagination.
    """
    if multiple:
        simulation_ids = _ids_param(query, "simulation_ids")
    else:
        simulation_id = query.get("simulation_id")
        simulation_ids = [simulation_id] if simulation_id else None

    return HistoryFilters(
        simulation_ids=simulation_ids,
        date_from=_date_param(query, "date_from"),
        date_to=_date_param(query, "date_to"),
        sort_by="completed_at",
        sort_order="asc",
    )
