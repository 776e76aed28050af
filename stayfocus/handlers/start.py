"""Start command, main menu and API token handlers."""
import logging

from aiogram import Router, F
from aiogram.filters import Command, CommandStart
from aiogram.types import Message, CallbackQuery
from aiogram.fsm.context import FSMContext

from stayfocus.keyboards.main_menu import main_menu_keyboard
from stayfocus.store.exceptions import StoreError, UnsupportedOperationError

logger = logging.getLogger(__name__)
router = Router()

WELCOME_TEXT = (
    "👋 Привет! Я StayFocus — помощник для подготовки к конкурсам.\n\n"
    "Загрузи симуляцию, отвечай на вопросы и следи за своей статистикой.\n"
    "Результаты сохраняются даже без связи с сервером и отправляются позже.\n\n"
    "Выбери, что хочешь сделать:"
)


@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext):
    await state.clear()
    await message.answer(WELCOME_TEXT, reply_markup=main_menu_keyboard())


@router.callback_query(F.data == "go_home")
async def go_home(callback: CallbackQuery, state: FSMContext):
    await state.clear()
    await callback.message.edit_text(WELCOME_TEXT, reply_markup=main_menu_keyboard())
    await callback.answer()


@router.message(Command("token"))
async def cmd_token(message: Message, store):
    """Выдать токен для REST API (только локальное хранилище)."""
    user_id = str(message.from_user.id)
    try:
        token = await store.issue_token(user_id)
    except UnsupportedOperationError:
        await message.answer("Токены выдаёт сервис авторизации хранилища.")
        return
    except StoreError as e:
        logger.error("Не удалось выпустить токен для %s: %s", user_id, e)
        await message.answer("Не удалось создать токен. Попробуйте позже.")
        return

    await message.answer(
        "🔑 Ваш токен для API:\n\n"
        f"<code>{token}</code>\n\n"
        "Передавайте его в заголовке <code>Authorization: Bearer ...</code>",
        parse_mode="HTML",
    )
