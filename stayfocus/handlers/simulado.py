"""Simulation flow: load a simulation, answer questions, finish."""
import html
import logging
from typing import List

from aiogram import Router, F
from aiogram.types import Message, CallbackQuery
from aiogram.fsm.context import FSMContext

from stayfocus.keyboards.main_menu import home_keyboard, main_menu_keyboard
from stayfocus.keyboards.simulado_kb import loading_keyboard, question_keyboard, results_keyboard
from stayfocus.services.offline_queue import OfflineMutationQueue
from stayfocus.services.quiz_session import (
    IncompleteAnswersError, QuizSession, QuizSessionError, QuizStatus,
)
from stayfocus.services.simulado_loader import (
    SimuladoFormatError, build_simulation_payload, load_simulado,
)
from stayfocus.services.statistics import performance_bucket
from stayfocus.states.simulado import SimuladoStates
from stayfocus.store.models import AttemptRecord, format_timestamp

logger = logging.getLogger(__name__)
router = Router()

MAX_FILE_SIZE = 1024 * 1024
MAX_MESSAGE_LENGTH = 4000

LOADING_TEXT = (
    "📥 Пришлите симуляцию в формате JSON — текстом или файлом.\n\n"
    "Поддерживаются документ {\"metadata\": ..., \"questoes\": [...]} "
    "и список вопросов с полями question_text и options."
)

_RESULT_COMMENTS = {
    "excellent": ("🏆", "Отличный результат!"),
    "good": ("👍", "Хороший результат!"),
    "average": ("📖", "Неплохо, но есть над чем поработать."),
    "poor": ("💪", "Нужно ещё потренироваться. Ты справишься!"),
}


# ============================================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ
# ============================================================================

async def _load_session(state: FSMContext) -> QuizSession:
    data = await state.get_data()
    if data.get("session"):
        return QuizSession.from_dict(data["session"])
    return QuizSession()


async def _save_session(state: FSMContext, session: QuizSession) -> None:
    await state.update_data(session=session.to_dict())


def _question_numbers(session: QuizSession, question_ids: List[str]) -> List[str]:
    """1-based positions of the given questions."""
    wanted = set(question_ids)
    return [str(i + 1) for i, q in enumerate(session.questions) if q.id in wanted]


def format_question(session: QuizSession) -> str:
    """Текст текущего вопроса с вариантами ответа."""
    question = session.current_question
    progress = session.progress()

    lines = [
        f"<b>❓ Вопрос {progress['current']} из {progress['total']}</b> "
        f"(отвечено: {progress['answered']})",
        "",
        html.escape(question.statement),
        "",
    ]
    for letter in sorted(question.options):
        lines.append(f"<b>{letter.upper()})</b> {html.escape(question.options[letter])}")

    selected = session.answers.get(question.id)
    if selected:
        lines.append("")
        lines.append(f"✏️ Ваш ответ: {selected.upper()}")
    return "\n".join(lines)


def format_result(record: AttemptRecord, title: str = None) -> str:
    """Итог симуляции."""
    emoji, comment = _RESULT_COMMENTS[performance_bucket(record.percentage)]
    lines = ["<b>📊 Результаты симуляции</b>", ""]
    if title:
        lines.append(f"📚 {html.escape(title)}")
    lines.append(
        f"{emoji} Правильных: {record.score} из {record.total_questions} "
        f"({record.percentage:g}%)"
    )
    if record.time_taken_minutes is not None:
        lines.append(f"⏱ Время: {record.time_taken_minutes:g} мин")
    lines.append("")
    lines.append(comment)
    lines.append("")
    lines.append("💾 Результат поставлен в очередь на сохранение.")
    return "\n".join(lines)


def format_mistakes(session: QuizSession) -> str:
    """Разбор неверных ответов."""
    blocks = []
    for position, question in enumerate(session.questions, start=1):
        given = session.answers.get(question.id)
        if given == question.correct_answer:
            continue
        block = [
            f"<b>{position}.</b> {html.escape(question.statement)}",
            f"❌ Ваш ответ: {given.upper() if given else '—'}) "
            f"{html.escape(question.options.get(given, '')) if given else ''}",
            f"✅ Правильно: {question.correct_answer.upper()}) "
            f"{html.escape(question.options.get(question.correct_answer, ''))}",
        ]
        if question.explanation:
            block.append(f"💡 {html.escape(question.explanation)}")
        blocks.append("\n".join(block))

    if not blocks:
        return "🎉 Ошибок нет — все ответы верные!"

    text = "<b>📋 Разбор ошибок</b>\n\n" + "\n\n".join(blocks)
    if len(text) > MAX_MESSAGE_LENGTH:
        text = text[:MAX_MESSAGE_LENGTH].rsplit("\n", 1)[0] + "\n\n…"
    return text


async def _show_question(callback: CallbackQuery, session: QuizSession) -> None:
    question = session.current_question
    await callback.message.edit_text(
        format_question(session),
        reply_markup=question_keyboard(
            question,
            session.answers.get(question.id),
            session.current_index,
            len(session.questions),
        ),
        parse_mode="HTML",
    )


# ============================================================================
# ЗАГРУЗКА
# ============================================================================

@router.callback_query(F.data == "start_simulado")
async def start_simulado(callback: CallbackQuery, state: FSMContext):
    session = QuizSession()
    session.begin_loading()

    await state.clear()
    await _save_session(state, session)
    await state.set_state(SimuladoStates.loading)

    await callback.message.edit_text(LOADING_TEXT, reply_markup=loading_keyboard())
    await callback.answer()


async def _read_payload(message: Message):
    """Текст сообщения или содержимое JSON-файла; None если ничего нет."""
    if message.document:
        if message.document.file_size and message.document.file_size > MAX_FILE_SIZE:
            raise SimuladoFormatError("Файл слишком большой (максимум 1 МБ)")
        buffer = await message.bot.download(message.document)
        return buffer.read()
    return message.text


@router.message(SimuladoStates.loading)
async def receive_simulado(message: Message, state: FSMContext, queue: OfflineMutationQueue):
    """Пользователь прислал JSON симуляции."""
    session = await _load_session(state)
    if session.status == QuizStatus.IDLE:
        # Previous attempt failed; try again
        session.begin_loading()
    elif session.status != QuizStatus.LOADING:
        session = QuizSession()
        session.begin_loading()

    try:
        raw = await _read_payload(message)
        if not raw:
            await message.answer("Пришлите JSON текстом или файлом.", reply_markup=loading_keyboard())
            return
        metadata, questions = load_simulado(raw)
    except SimuladoFormatError as e:
        logger.info("Некорректная симуляция от %s: %s", message.from_user.id, e)
        session.fail_loading()
        await _save_session(state, session)
        await message.answer(
            f"❌ Не удалось загрузить симуляцию: {e}\n\nПроверьте файл и пришлите его снова.",
            reply_markup=loading_keyboard(),
        )
        return

    user_id = str(message.from_user.id)
    payload = build_simulation_payload(user_id, metadata, questions)
    await queue.enqueue("CREATE", "simulations", payload)

    session.load(questions, payload["id"], title=metadata.title)
    await _save_session(state, session)
    await state.set_state(SimuladoStates.reviewing)

    logger.info("Пользователь %s начал симуляцию %s", user_id, payload["id"])

    await message.answer(
        f"✅ Симуляция «{metadata.title}» загружена.\nВопросов: {len(questions)}"
    )
    question = session.current_question
    await message.answer(
        format_question(session),
        reply_markup=question_keyboard(question, None, 0, len(session.questions)),
        parse_mode="HTML",
    )


# ============================================================================
# ОТВЕТЫ И НАВИГАЦИЯ
# ============================================================================

@router.callback_query(SimuladoStates.reviewing, F.data.startswith("ans:"))
async def answer_option(callback: CallbackQuery, state: FSMContext):
    session = await _load_session(state)

    try:
        _, index, position = callback.data.split(":", 2)
        question = session.questions[int(index)]
        choice = sorted(question.options)[int(position)]
        session.answer(question.id, choice)
    except (ValueError, IndexError, QuizSessionError) as e:
        logger.warning("Некорректный ответ %s: %s", callback.data, e)
        await callback.answer("Этот вариант недоступен", show_alert=True)
        return

    await _save_session(state, session)
    await _show_question(callback, session)
    await callback.answer("Ответ сохранён")


@router.callback_query(SimuladoStates.reviewing, F.data.startswith("nav:"))
async def navigate(callback: CallbackQuery, state: FSMContext):
    direction = callback.data.split(":", 1)[1]
    session = await _load_session(state)

    moved = session.next() if direction == "next" else session.previous()
    if not moved:
        await callback.answer("Дальше вопросов нет")
        return

    await _save_session(state, session)
    await _show_question(callback, session)
    await callback.answer()


# ============================================================================
# ЗАВЕРШЕНИЕ
# ============================================================================

@router.callback_query(SimuladoStates.reviewing, F.data == "finish_simulado")
async def finish_simulado(callback: CallbackQuery, state: FSMContext, queue: OfflineMutationQueue):
    session = await _load_session(state)
    user_id = str(callback.from_user.id)

    try:
        record = session.finalize(user_id)
    except IncompleteAnswersError as e:
        numbers = _question_numbers(session, e.unanswered)
        await callback.answer(f"Не все вопросы отвечены ({len(numbers)})", show_alert=True)
        await callback.message.answer(
            "⚠️ Не все вопросы отвечены.\n"
            f"Без ответа: {', '.join(numbers)}"
        )
        return

    await queue.enqueue("CREATE", "simulation_history", record.to_payload())
    await queue.enqueue("UPDATE", "simulations", {
        "id": session.simulation_id,
        "user_id": user_id,
        "user_answers": dict(session.answers),
        "score": record.score,
        "completed": True,
        "completed_at": format_timestamp(record.completed_at),
    })

    await _save_session(state, session)
    await state.set_state(SimuladoStates.results)

    logger.info(
        "Пользователь %s завершил симуляцию %s: %s/%s",
        user_id, session.simulation_id, record.score, record.total_questions,
    )

    await callback.message.edit_text(
        format_result(record, session.title),
        reply_markup=results_keyboard(),
        parse_mode="HTML",
    )
    await callback.answer()


@router.callback_query(SimuladoStates.results, F.data == "review_mistakes")
async def review_mistakes(callback: CallbackQuery, state: FSMContext):
    session = await _load_session(state)
    await callback.message.answer(
        format_mistakes(session),
        reply_markup=home_keyboard(),
        parse_mode="HTML",
    )
    await callback.answer()


@router.callback_query(F.data == "cancel_simulado")
async def cancel_simulado(callback: CallbackQuery, state: FSMContext):
    """Cancel the current simulation and go home."""
    await state.clear()
    await callback.message.edit_text(
        "Симуляция отменена. Возвращаемся в главное меню.",
        reply_markup=main_menu_keyboard(),
    )
    await callback.answer()
