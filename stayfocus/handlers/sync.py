"""Offline queue status and dropped-operation notifications."""
import logging
from typing import Any, Dict

from aiogram import Bot, Router, F
from aiogram.types import CallbackQuery

from stayfocus.keyboards.main_menu import sync_keyboard
from stayfocus.services.offline_queue import OfflineMutationQueue
from stayfocus.store.models import QueuedOperation

logger = logging.getLogger(__name__)
router = Router()

_TABLE_NAMES = {
    "simulation_history": "результат симуляции",
    "simulations": "симуляция",
}


def format_sync_status(status: Dict[str, Any]) -> str:
    lines = [
        "<b>🔄 Синхронизация</b>",
        "",
        f"Связь с хранилищем: {'🟢 есть' if status['is_online'] else '🔴 нет'}",
        f"В очереди: {status['pending_count']}",
        f"Отправка: {'идёт' if status['is_processing'] else 'не выполняется'}",
    ]
    if status.get("dead_letter_count"):
        lines.append(f"Не удалось отправить: {status['dead_letter_count']}")
    return "\n".join(lines)


async def _show_status(callback: CallbackQuery, queue: OfflineMutationQueue) -> None:
    status = queue.get_queue_status()
    await callback.message.edit_text(
        format_sync_status(status),
        reply_markup=sync_keyboard(status["pending_count"] > 0, status["dead_letter_count"] > 0),
        parse_mode="HTML",
    )


@router.callback_query(F.data == "sync_status")
async def sync_status(callback: CallbackQuery, queue: OfflineMutationQueue):
    await _show_status(callback, queue)
    await callback.answer()


@router.callback_query(F.data == "sync_retry")
async def sync_retry(callback: CallbackQuery, queue: OfflineMutationQueue):
    """Проверить связь и запустить отправку очереди."""
    was_online = queue.connectivity.is_online
    if await queue.connectivity.check():
        # offline → online already ran a pass through the connectivity listener
        if was_online:
            await queue.process_queue()
        await callback.answer("Очередь обработана")
    else:
        await callback.answer("Нет связи с хранилищем", show_alert=True)
    await _show_status(callback, queue)


@router.callback_query(F.data == "sync_clear")
async def sync_clear(callback: CallbackQuery, queue: OfflineMutationQueue):
    await queue.clear_queue()
    logger.info("Пользователь %s очистил офлайн-очередь", callback.from_user.id)
    await _show_status(callback, queue)
    await callback.answer("Очередь очищена")


@router.callback_query(F.data == "sync_clear_dead")
async def sync_clear_dead(callback: CallbackQuery, queue: OfflineMutationQueue):
    await queue.clear_dead_letters()
    logger.info("Пользователь %s очистил список неотправленных операций", callback.from_user.id)
    await _show_status(callback, queue)
    await callback.answer("Список очищен")


async def notify_dropped(bot: Bot, operation: QueuedOperation) -> None:
    """Сообщить владельцу, что операция не была сохранена."""
    user_id = operation.data.get("user_id")
    if not user_id or not str(user_id).isdigit():
        return

    what = _TABLE_NAMES.get(operation.table, operation.table)
    try:
        await bot.send_message(
            int(user_id),
            f"⚠️ Не удалось сохранить {what} после {operation.max_retries} попыток. "
            "Данные не отправлены в хранилище.",
        )
    except Exception as e:
        logger.warning("Не удалось уведомить пользователя %s: %s", user_id, e)
