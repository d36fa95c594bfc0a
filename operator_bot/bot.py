"""
Telegram Bot - Operator Interface

python-telegram-bot binding of the operator dialog:
- Commands and free text are routed to DialogEngine.handle_text
- Inline keyboard callbacks are routed to DialogEngine.handle_selection
- Replies with choices are rendered as one button per row; the button's
  callback data is the selection token
- TelegramNotifier delivers status reports to the operator chat

Access control:
- Only the configured operator chat may drive the dialog
- Updates from any other chat are ignored without a reply
"""

import logging
from typing import List, Optional

from telegram import (
    Bot,
    BotCommand as TelegramBotCommand,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Update,
)
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from task_controller.context import AppContext
from task_controller.errors import StateUnavailableError

from .dialog import COMMAND_DESCRIPTIONS, BotCommand, BotReply, Choice, DialogEngine

logger = logging.getLogger("telegram_bot")

DIALOG_KEY = "dialog"
CONTEXT_KEY = "app_context"


# -----------------------------------------------------------------------------
# Operator Notifier
# -----------------------------------------------------------------------------
class TelegramNotifier:
    """Sends status report notifications to the operator chat."""

    def __init__(self, bot: Bot, chat_id: int):
        self._bot = bot
        self._chat_id = chat_id

    async def send_text(self, text: str) -> None:
        await self._bot.send_message(chat_id=self._chat_id, text=text)

    async def send_photo(self, photo: bytes, caption: Optional[str] = None) -> None:
        await self._bot.send_photo(chat_id=self._chat_id, photo=photo, caption=caption)


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------
def build_keyboard(choices: List[Choice]) -> Optional[InlineKeyboardMarkup]:
    if not choices:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(c.label, callback_data=c.token)] for c in choices]
    )


def get_dialog(context: ContextTypes.DEFAULT_TYPE) -> DialogEngine:
    dialog = context.application.bot_data.get(DIALOG_KEY)
    if dialog is None:
        raise StateUnavailableError("operator dialog")
    return dialog


async def send_reply(update: Update, context: ContextTypes.DEFAULT_TYPE, reply: BotReply) -> None:
    await context.bot.send_message(
        chat_id=update.effective_chat.id,
        text=reply.text,
        reply_markup=build_keyboard(reply.choices),
    )


# -----------------------------------------------------------------------------
# Handlers
# -----------------------------------------------------------------------------
async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle commands and free text."""
    message = update.effective_message
    if message is None or update.effective_chat is None:
        return

    reply = get_dialog(context).handle_text(update.effective_chat.id, message.text or "")
    if reply is None:
        return
    await send_reply(update, context, reply)


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle inline button selections."""
    query = update.callback_query
    if query is None or update.effective_chat is None:
        return

    reply = get_dialog(context).handle_selection(update.effective_chat.id, query.data or "")
    if reply is None:
        return

    await query.answer()
    await send_reply(update, context, reply)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log the error and answer the turn with an internal-error reply."""
    logger.error(f"Update {update} caused error {context.error}", exc_info=context.error)

    if not isinstance(update, Update) or update.effective_chat is None:
        return

    dialog = context.application.bot_data.get(DIALOG_KEY)
    if dialog is not None and not dialog.is_permitted(update.effective_chat.id):
        return

    try:
        if update.callback_query:
            await update.callback_query.answer()
        await context.bot.send_message(
            chat_id=update.effective_chat.id,
            text=f"Internal error: {str(context.error)[:100]}",
        )
    except Exception as e:
        logger.error(f"Failed to send error response: {e}")


# -----------------------------------------------------------------------------
# Application Setup
# -----------------------------------------------------------------------------
async def register_commands(application: Application) -> None:
    """Publish the command menu to Telegram."""
    await application.bot.set_my_commands([
        TelegramBotCommand(command.value, description)
        for command, description in COMMAND_DESCRIPTIONS.items()
    ])


def build_application(token: str, app_context: AppContext) -> Application:
    """
    Build the Telegram application around a shared AppContext.

    Also installs the Telegram notifier on the context so status reports
    reach the operator.
    """
    application = Application.builder().token(token).build()

    application.bot_data[CONTEXT_KEY] = app_context
    application.bot_data[DIALOG_KEY] = DialogEngine(app_context.registry, app_context.operator_id)
    app_context.notifier = TelegramNotifier(application.bot, app_context.operator_id)

    application.add_handler(CommandHandler([c.value for c in BotCommand], handle_message))
    application.add_handler(CallbackQueryHandler(handle_callback))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))
    application.add_error_handler(error_handler)

    logger.info(f"Telegram application built, operator chat {app_context.operator_id}")
    return application
