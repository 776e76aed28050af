from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton


def main_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="📝 Начать симуляцию", callback_data="start_simulado")],
        [InlineKeyboardButton(text="📊 Моя статистика", callback_data="my_statistics")],
        [InlineKeyboardButton(text="🔄 Синхронизация", callback_data="sync_status")],
    ])


def home_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🏠 Главное меню", callback_data="go_home")],
    ])


def sync_keyboard(has_pending: bool, has_dead_letters: bool = False) -> InlineKeyboardMarkup:
    buttons = [[InlineKeyboardButton(text="🔁 Обновить", callback_data="sync_status")]]
    if has_pending:
        buttons.append([InlineKeyboardButton(text="▶️ Отправить сейчас", callback_data="sync_retry")])
        buttons.append([InlineKeyboardButton(text="🗑 Очистить очередь", callback_data="sync_clear")])
    if has_dead_letters:
        buttons.append([InlineKeyboardButton(text="🧹 Забыть неотправленные", callback_data="sync_clear_dead")])
    buttons.append([InlineKeyboardButton(text="🏠 Главное меню", callback_data="go_home")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def statistics_keyboard(detailed: bool = False) -> InlineKeyboardMarkup:
    buttons = []
    if detailed:
        buttons.append([InlineKeyboardButton(text="📊 Кратко", callback_data="my_statistics")])
    else:
        buttons.append([InlineKeyboardButton(text="📈 Подробнее", callback_data="my_statistics_detailed")])
    buttons.append([InlineKeyboardButton(text="🏠 Главное меню", callback_data="go_home")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)
