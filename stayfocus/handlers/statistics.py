"""Statistics view."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from aiogram import Router, F
from aiogram.types import CallbackQuery
from aiogram.fsm.context import FSMContext

from stayfocus.keyboards.main_menu import statistics_keyboard
from stayfocus.services.statistics import compute_enhanced_statistics, compute_statistics
from stayfocus.store.exceptions import StoreError
from stayfocus.store.models import AttemptRecord, HistoryFilters

logger = logging.getLogger(__name__)
router = Router()

UNAVAILABLE_TEXT = (
    "📡 Статистика сейчас недоступна: нет связи с хранилищем.\n"
    "Результаты из очереди будут отправлены автоматически."
)


def _fmt(value, suffix: str = "") -> str:
    if value is None:
        return "—"
    return f"{value:g}{suffix}"


def format_statistics(summary: Dict[str, Any]) -> str:
    """Краткая сводка по всем попыткам."""
    if summary["total_attempts"] == 0:
        return "📊 У вас пока нет завершённых симуляций."

    distribution = summary["performance_distribution"]
    lines = [
        "<b>📊 Ваша статистика</b>",
        "",
        f"Попыток: {summary['total_attempts']}",
        f"Лучший результат: {_fmt(summary['best_percentage'], '%')} "
        f"(баллы: {_fmt(summary['best_score'])})",
        f"Средний результат: {_fmt(summary['average_percentage'], '%')}",
        f"Время всего: {_fmt(summary['total_time_minutes'])} мин, "
        f"в среднем {_fmt(summary['average_time_minutes'])} мин",
    ]

    trend = summary["recent_trend"]
    if trend is not None:
        arrow = "📈" if trend > 0 else "📉" if trend < 0 else "➡️"
        lines.append(f"Тренд последних попыток: {arrow} {trend:+g}%")

    lines.extend([
        "",
        "<b>Распределение:</b>",
        f"🏆 ≥90%: {distribution['excellent']}",
        f"👍 70–89%: {distribution['good']}",
        f"📖 50–69%: {distribution['average']}",
        f"💪 <50%: {distribution['poor']}",
        "",
        "<b>По месяцам:</b>",
    ])
    for month in summary["monthly_progress"]:
        if month["attempts"]:
            lines.append(
                f"{month['month']}: {month['attempts']} попыт., "
                f"среднее {_fmt(month['average_percentage'], '%')}"
            )
        else:
            lines.append(f"{month['month']}: —")
    return "\n".join(lines)


def format_enhanced_statistics(stats: Dict[str, Any]) -> str:
    """Подробные метрики и серии."""
    metrics = stats["performance_metrics"]
    if metrics["total_attempts"] == 0:
        return "📈 Недостаточно данных для подробной статистики."

    streaks = stats["streak_analysis"]
    lines = [
        "<b>📈 Подробная статистика</b>",
        "",
        f"Медиана: {_fmt(metrics['median_percentage'], '%')}",
        f"Худший результат: {_fmt(metrics['worst_percentage'], '%')}",
        f"Стандартное отклонение: {_fmt(metrics['standard_deviation'])}",
        f"Стабильность: {_fmt(metrics['consistency_score'])}/100",
        f"Прогресс за попытку: {metrics['improvement_rate']:+g}%",
        f"Время всего: {_fmt(metrics['total_time_hours'])} ч",
        "",
        f"🔥 Текущая серия (≥{streaks['streak_threshold']:g}%): {streaks['current_streak']}",
        f"🏅 Лучшая серия: {streaks['longest_streak']}",
    ]

    weekly = stats["trends"]["weekly"][-4:]
    if weekly:
        lines.append("")
        lines.append("<b>По неделям:</b>")
        for week in weekly:
            lines.append(
                f"с {week['period']}: {week['attempts']} попыт., "
                f"среднее {_fmt(week['average_percentage'], '%')} "
                f"({week['improvement_from_previous']:+g})"
            )
    return "\n".join(lines)


async def _user_records(store, user_id: str) -> List[AttemptRecord]:
    records, _ = await store.list_history(
        user_id, HistoryFilters(sort_by="completed_at", sort_order="asc")
    )
    return records


@router.callback_query(F.data == "my_statistics")
async def show_statistics(callback: CallbackQuery, state: FSMContext, store):
    await state.clear()
    user_id = str(callback.from_user.id)

    try:
        records = await _user_records(store, user_id)
    except StoreError as e:
        logger.error("Не удалось получить историю пользователя %s: %s", user_id, e)
        await callback.message.edit_text(UNAVAILABLE_TEXT, reply_markup=statistics_keyboard())
        await callback.answer()
        return

    summary = compute_statistics(records, now=datetime.now(timezone.utc))
    await callback.message.edit_text(
        format_statistics(summary),
        reply_markup=statistics_keyboard(),
        parse_mode="HTML",
    )
    await callback.answer()


@router.callback_query(F.data == "my_statistics_detailed")
async def show_enhanced_statistics(callback: CallbackQuery, store):
    user_id = str(callback.from_user.id)

    try:
        records = await _user_records(store, user_id)
    except StoreError as e:
        logger.error("Не удалось получить историю пользователя %s: %s", user_id, e)
        await callback.message.edit_text(UNAVAILABLE_TEXT, reply_markup=statistics_keyboard(detailed=True))
        await callback.answer()
        return

    await callback.message.edit_text(
        format_enhanced_statistics(compute_enhanced_statistics(records)),
        reply_markup=statistics_keyboard(detailed=True),
        parse_mode="HTML",
    )
    await callback.answer()
