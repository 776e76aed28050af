"""
Statistics over simulation attempts.

compute_statistics() builds the summary served by
/api/simulation-history/statistics and shown by the bot;
compute_enhanced_statistics() adds deeper metrics, period trends and
streaks. Both are pure functions: the caller filters records by owner,
date range and simulation before calling them.
"""
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from stayfocus.store.models import AttemptRecord, format_timestamp

EXCELLENT_THRESHOLD = 90
GOOD_THRESHOLD = 70
AVERAGE_THRESHOLD = 50

TREND_MIN_ATTEMPTS = 10
TREND_WINDOW = 5
PROGRESS_MONTHS = 6
STREAK_THRESHOLD = 70


def round2(value: float) -> float:
    """Round half-up to 2 decimals (76.666… → 76.67)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _empty_distribution() -> Dict[str, int]:
    return {"excellent": 0, "good": 0, "average": 0, "poor": 0}


def performance_bucket(percentage: float) -> str:
    """Name of the distribution bucket a percentage falls into."""
    if percentage >= EXCELLENT_THRESHOLD:
        return "excellent"
    if percentage >= GOOD_THRESHOLD:
        return "good"
    if percentage >= AVERAGE_THRESHOLD:
        return "average"
    return "poor"


def performance_distribution(records: Iterable[AttemptRecord]) -> Dict[str, int]:
    distribution = _empty_distribution()
    for record in records:
        distribution[performance_bucket(record.percentage)] += 1
    return distribution


def count_by_simulation(records: Iterable[AttemptRecord]) -> Dict[str, int]:
    """Attempt counts per simulation id, in first-seen order."""
    counts: Dict[str, int] = {}
    for record in records:
        counts[record.simulation_id] = counts.get(record.simulation_id, 0) + 1
    return counts


def favorite_simulation(counts: Dict[str, int]) -> Optional[str]:
    """Most attempted simulation; ties go to the one seen first."""
    if not counts:
        return None
    return max(counts, key=counts.get)


def recent_trend(records: Sequence[AttemptRecord]) -> Optional[float]:
    """
    Mean percentage of the 5 most recent attempts minus the mean of the 5
    before them. None below 10 attempts. Positive means improving.
    """
    if len(records) < TREND_MIN_ATTEMPTS:
        return None

    newest_first = sorted(records, key=lambda r: r.completed_at, reverse=True)
    recent = [r.percentage for r in newest_first[:TREND_WINDOW]]
    previous = [r.percentage for r in newest_first[TREND_WINDOW:TREND_WINDOW * 2]]
    return round2(_mean(recent) - _mean(previous))


def _last_months(now: datetime, count: int) -> List[Tuple[int, int]]:
    """(year, month) pairs of the last `count` months ending at now, oldest first."""
    months = []
    year, month = now.year, now.month
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    months.reverse()
    return months


def monthly_progress(
    records: Sequence[AttemptRecord], now: datetime, months: int = PROGRESS_MONTHS
) -> List[Dict[str, Any]]:
    """Attempts, mean and best percentage for each of the last `months` months."""
    tz = now.tzinfo or timezone.utc
    by_month: Dict[Tuple[int, int], List[float]] = {}
    for record in records:
        local = record.completed_at.astimezone(tz)
        by_month.setdefault((local.year, local.month), []).append(record.percentage)

    progress = []
    for year, month in _last_months(now, months):
        percentages = by_month.get((year, month), [])
        progress.append({
            "month": f"{year:04d}-{month:02d}",
            "attempts": len(percentages),
            "average_percentage": round2(_mean(percentages)) if percentages else 0,
            "best_percentage": round2(max(percentages)) if percentages else 0,
        })
    return progress


def simulation_breakdown(
    records: Sequence[AttemptRecord], counts: Optional[Dict[str, int]] = None
) -> List[Dict[str, Any]]:
    """Per-simulation attempts, best/mean percentage and last attempt (epoch ms)."""
    counts = counts if counts is not None else count_by_simulation(records)

    grouped: Dict[str, List[AttemptRecord]] = {}
    for record in records:
        grouped.setdefault(record.simulation_id, []).append(record)

    breakdown = []
    for simulation_id, attempts in counts.items():
        sim_records = grouped[simulation_id]
        percentages = [r.percentage for r in sim_records]
        breakdown.append({
            "simulation_id": simulation_id,
            "attempts": attempts,
            "best_percentage": round2(max(percentages)),
            "average_percentage": round2(_mean(percentages)),
            "last_attempt": max(_epoch_ms(r.completed_at) for r in sim_records),
        })

    # sort() is stable: equal counts keep first-seen order
    breakdown.sort(key=lambda item: item["attempts"], reverse=True)
    return breakdown


def compute_statistics(
    records: Sequence[AttemptRecord], now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Summarize a list of attempts.

    Args:
        records: Attempts already filtered by the caller. May be empty.
        now: Reference time for the monthly progress window (UTC now by default).

    Returns:
        StatisticsSummary dict. Empty input gives zero counts, None for the
        score/percentage/time aggregates and 6 empty months.
    """
    now = now or datetime.now(timezone.utc)
    records = list(records)

    if not records:
        return {
            "total_attempts": 0,
            "best_score": None,
            "average_score": None,
            "best_percentage": None,
            "average_percentage": None,
            "total_time_minutes": 0,
            "average_time_minutes": None,
            "favorite_simulation": None,
            "recent_trend": None,
            "performance_distribution": _empty_distribution(),
            "monthly_progress": monthly_progress([], now),
            "simulation_breakdown": [],
        }

    scores = [r.score for r in records]
    percentages = [r.percentage for r in records]
    times = [r.time_taken_minutes for r in records if r.time_taken_minutes is not None]
    counts = count_by_simulation(records)

    return {
        "total_attempts": len(records),
        "best_score": max(scores),
        "average_score": round2(_mean(scores)),
        "best_percentage": round2(max(percentages)),
        "average_percentage": round2(_mean(percentages)),
        "total_time_minutes": round2(sum(times)),
        "average_time_minutes": round2(_mean(times)) if times else None,
        "favorite_simulation": favorite_simulation(counts),
        "recent_trend": recent_trend(records),
        "performance_distribution": performance_distribution(records),
        "monthly_progress": monthly_progress(records, now),
        "simulation_breakdown": simulation_breakdown(records, counts),
    }


# ============================================================================
# ENHANCED STATISTICS
# ============================================================================

def improvement_rate(percentages: Sequence[float]) -> float:
    """Least-squares slope of percentage over attempt number (1..n)."""
    n = len(percentages)
    if n < 2:
        return 0.0

    sum_x = n * (n + 1) / 2
    sum_y = sum(percentages)
    sum_xy = sum((i + 1) * p for i, p in enumerate(percentages))
    sum_x2 = n * (n + 1) * (2 * n + 1) / 6

    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def performance_metrics(records: Sequence[AttemptRecord]) -> Dict[str, Any]:
    if not records:
        return {
            "total_attempts": 0,
            "total_time_hours": 0,
            "average_score": 0,
            "average_percentage": 0,
            "best_score": 0,
            "best_percentage": 0,
            "worst_score": 0,
            "worst_percentage": 0,
            "median_percentage": 0,
            "standard_deviation": 0,
            "improvement_rate": 0,
            "consistency_score": 0,
        }

    chronological = sorted(records, key=lambda r: r.completed_at)
    scores = [r.score for r in chronological]
    percentages = [r.percentage for r in chronological]
    times = [r.time_taken_minutes for r in chronological if r.time_taken_minutes]

    average = _mean(percentages)
    variance = sum((p - average) ** 2 for p in percentages) / len(percentages)
    deviation = math.sqrt(variance)
    # upper median
    median = sorted(percentages)[len(percentages) // 2]
    consistency = max(0.0, 100 - (deviation / average) * 100) if average else 0.0

    return {
        "total_attempts": len(records),
        "total_time_hours": round2(sum(times) / 60),
        "average_score": round2(_mean(scores)),
        "average_percentage": round2(average),
        "best_score": max(scores),
        "best_percentage": round2(max(percentages)),
        "worst_score": min(scores),
        "worst_percentage": round2(min(percentages)),
        "median_percentage": round2(median),
        "standard_deviation": round2(deviation),
        "improvement_rate": round2(improvement_rate(percentages)),
        "consistency_score": round2(consistency),
    }


def _day_key(dt: datetime) -> str:
    return dt.date().isoformat()


def _week_key(dt: datetime) -> str:
    # Weeks start on Sunday
    start = dt.date() - timedelta(days=(dt.weekday() + 1) % 7)
    return start.isoformat()


def _month_key(dt: datetime) -> str:
    return f"{dt.year:04d}-{dt.month:02d}"


PERIOD_KEYS: Dict[str, Callable[[datetime], str]] = {
    "daily": _day_key,
    "weekly": _week_key,
    "monthly": _month_key,
}


def period_trends(records: Sequence[AttemptRecord], period: str) -> List[Dict[str, Any]]:
    """Group attempts by day/week/month (UTC) and compare consecutive periods."""
    key_of = PERIOD_KEYS[period]
    groups: Dict[str, List[AttemptRecord]] = {}
    for record in records:
        key = key_of(record.completed_at.astimezone(timezone.utc))
        groups.setdefault(key, []).append(record)

    trends = []
    for key in sorted(groups):
        group = groups[key]
        percentages = [r.percentage for r in group]
        times = [r.time_taken_minutes for r in group if r.time_taken_minutes]
        trends.append({
            "period": key,
            "attempts": len(group),
            "average_percentage": round2(_mean(percentages)),
            "best_percentage": round2(max(percentages)),
            "total_time_minutes": round2(sum(times)),
            "improvement_from_previous": 0,
        })

    for previous, current in zip(trends, trends[1:]):
        current["improvement_from_previous"] = round2(
            current["average_percentage"] - previous["average_percentage"]
        )
    return trends


def streak_analysis(
    records: Sequence[AttemptRecord], threshold: float = STREAK_THRESHOLD
) -> Dict[str, Any]:
    """
    Runs of consecutive attempts scoring at least `threshold`.

    current_streak is the run still open at the latest attempt;
    streak_history lists closed runs, longest first.
    """
    chronological = sorted(records, key=lambda r: r.completed_at)

    history = []
    run: List[AttemptRecord] = []
    longest = 0

    for record in chronological:
        if record.percentage >= threshold:
            run.append(record)
            continue
        if run:
            history.append({
                "start_date": format_timestamp(run[0].completed_at),
                "end_date": format_timestamp(run[-1].completed_at),
                "length": len(run),
                "average_percentage": round2(_mean([r.percentage for r in run])),
            })
            longest = max(longest, len(run))
            run = []

    current = len(run)
    history.sort(key=lambda item: item["length"], reverse=True)

    return {
        "current_streak": current,
        "longest_streak": max(longest, current),
        "streak_threshold": threshold,
        "streak_history": history,
    }


def compute_enhanced_statistics(records: Sequence[AttemptRecord]) -> Dict[str, Any]:
    """Performance metrics, daily/weekly/monthly trends and streaks."""
    records = list(records)
    return {
        "performance_metrics": performance_metrics(records),
        "trends": {period: period_trends(records, period) for period in PERIOD_KEYS},
        "streak_analysis": streak_analysis(records),
    }
