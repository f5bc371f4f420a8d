import logging
from typing import List, Optional

from telegram import Message, Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes, MessageHandler, filters

from agent_chatops.services.job_controller import JobController
from .util import chunk_text

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 6000
TELEGRAM_MAX_CHARS = 4096

# Telegram only accepts a fixed set of reaction emoji.
_REACTION_MAP = {
    "⏳": "👀",
    "✅": "👍",
    "❌": "👎",
}


class TelegramRequest:
    """Inbound request backed by a Telegram message."""

    def __init__(self, message: Message, text: Optional[str] = None) -> None:
        self._message = message
        self._text = text if text is not None else (message.text or "")

    @property
    def text(self) -> str:
        return self._text

    async def reply(self, text: str) -> None:
        for chunk in chunk_text(text or "(no output)", TELEGRAM_MAX_CHARS):
            await self._message.reply_text(chunk)

    async def react(self, emoji: str) -> None:
        await self._message.set_reaction(_REACTION_MAP.get(emoji, emoji))


def is_allowed(user_id: int, allowlist: Optional[List[int]]) -> bool:
    if allowlist is None:
        return True
    return user_id in allowlist


def _accepts(update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
    message = update.message
    if not message or not update.effective_chat:
        return False
    user = message.from_user
    if user is None or user.is_bot:
        return False
    if not is_allowed(user.id, context.bot_data.get("allowlist")):
        return False
    chat_ids = context.bot_data.get("chat_ids")
    if chat_ids is not None and update.effective_chat.id not in chat_ids:
        return False
    return True


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        if not _accepts(update, context) or not update.message.text:
            return
        text = update.message.text
        if len(text) > MAX_INPUT_CHARS:
            await update.message.reply_text("Input too long.")
            return
        controller: JobController = context.bot_data["controller"]
        await controller.handle(TelegramRequest(update.message))
    except Exception as exc:
        logger.exception("Message handler error: %s", exc)


async def handle_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        if not _accepts(update, context):
            return
        controller: JobController = context.bot_data["controller"]
        await controller.handle(TelegramRequest(update.message, text="help"))
    except Exception as exc:
        logger.exception("Help handler error: %s", exc)


async def handle_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        if not _accepts(update, context):
            return
        controller: JobController = context.bot_data["controller"]
        await update.message.reply_text(controller.status_text())
    except Exception as exc:
        logger.exception("Status handler error: %s", exc)


async def handle_abort(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        if not _accepts(update, context):
            return
        controller: JobController = context.bot_data["controller"]
        await controller.abort(TelegramRequest(update.message))
    except Exception as exc:
        logger.exception("Abort handler error: %s", exc)


async def handle_focus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        if not _accepts(update, context):
            return
        instruction = " ".join(context.args or []).strip()
        if not instruction:
            await update.message.reply_text("Usage: /focus <instruction>")
            return
        controller: JobController = context.bot_data["controller"]
        await controller.focus(TelegramRequest(update.message), instruction)
    except Exception as exc:
        logger.exception("Focus handler error: %s", exc)


async def handle_ping(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        await update.message.reply_text("✅")
    except Exception as exc:
        logger.exception("Ping handler error: %s", exc)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Telegram error: %s", context.error)


def build_application(
    token: str,
    allowlist: Optional[List[int]],
    controller: JobController,
    chat_ids: Optional[List[int]] = None,
) -> Application:
    async def _post_shutdown(application: Application) -> None:
        await controller.shutdown()

    app = (
        ApplicationBuilder()
        .token(token)
        .concurrent_updates(True)
        .post_shutdown(_post_shutdown)
        .build()
    )
    app.bot_data["allowlist"] = allowlist
    app.bot_data["chat_ids"] = chat_ids
    app.bot_data["controller"] = controller

    app.add_handler(CommandHandler("ping", handle_ping))
    app.add_handler(CommandHandler("help", handle_help))
    app.add_handler(CommandHandler("status", handle_status))
    app.add_handler(CommandHandler("abort", handle_abort))
    app.add_handler(CommandHandler("focus", handle_focus))
    # Remaining slash commands (/sre, /qa, /pr ...) belong to the command table.
    app.add_handler(MessageHandler(filters.TEXT, handle_message))
    app.add_error_handler(handle_error)
    return app
