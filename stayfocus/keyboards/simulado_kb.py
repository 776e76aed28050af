from typing import Optional

from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from stayfocus.store.models import QuizQuestion


def question_keyboard(
    question: QuizQuestion,
    selected: Optional[str],
    index: int,
    total: int,
) -> InlineKeyboardMarkup:
    """Option buttons for one question plus navigation and finish."""
    buttons = []
    # Positions, not ids: callback_data is capped at 64 bytes
    for position, letter in enumerate(sorted(question.options)):
        mark = "✅ " if letter == selected else ""
        buttons.append([InlineKeyboardButton(
            text=f"{mark}{letter.upper()})",
            callback_data=f"ans:{index}:{position}",
        )])

    nav = []
    if index > 0:
        nav.append(InlineKeyboardButton(text="⬅️ Назад", callback_data="nav:prev"))
    if index < total - 1:
        nav.append(InlineKeyboardButton(text="Вперёд ➡️", callback_data="nav:next"))
    if nav:
        buttons.append(nav)

    buttons.append([InlineKeyboardButton(text="🏁 Завершить", callback_data="finish_simulado")])
    buttons.append([InlineKeyboardButton(text="❌ Отменить", callback_data="cancel_simulado")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def loading_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="❌ Отменить", callback_data="cancel_simulado")],
    ])


def results_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="📋 Разбор ошибок", callback_data="review_mistakes")],
        [InlineKeyboardButton(text="📝 Новая симуляция", callback_data="start_simulado")],
        [InlineKeyboardButton(text="🏠 Главное меню", callback_data="go_home")],
    ])
