"""Telegram adapter built on python-telegram-bot."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from telegram import BotCommand, LinkPreviewOptions, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..config import ChatConfig
from ..relay import CommandContext, RelayController

LOGGER = logging.getLogger(__name__)

NO_LINK_PREVIEW = LinkPreviewOptions(is_disabled=True)

UpdateCallback = Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]


class TelegramBot:
    """Sends relay notifications and serves the operator commands.

    Outbound sends never raise: a :class:`telegram.error.TelegramError` is
    logged and the message is dropped.
    """

    def __init__(
        self, config: ChatConfig, *, application: Optional[Application] = None
    ) -> None:
        self.config = config
        self._app: Application = application or (
            Application.builder().token(config.bot_token).build()
        )
        self._controller: Optional[RelayController] = None
        self._started = False

    @property
    def application(self) -> Application:
        return self._app

    def attach(self, controller: RelayController) -> None:
        """Register a handler for every controller command and for plain text."""

        self._controller = controller
        for spec in controller.commands():
            self._app.add_handler(CommandHandler(spec.name, self._command_callback(spec.name)))
        self._app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._on_text)
        )
        self._app.add_error_handler(self._on_error)

    async def start(self) -> None:
        LOGGER.info("Starting Telegram bot")
        await self._app.initialize()
        if self._controller is not None:
            await self._publish_commands(self._controller)
        await self._app.start()
        if self._app.updater is not None:
            await self._app.updater.start_polling(allowed_updates=Update.ALL_TYPES)
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        LOGGER.info("Stopping Telegram bot")
        if self._app.updater is not None and self._app.updater.running:
            await self._app.updater.stop()
        await self._app.stop()
        await self._app.shutdown()
        self._started = False

    async def send_message(self, text: str) -> bool:
        try:
            await self._app.bot.send_message(
                chat_id=self.config.chat_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN_V2,
                disable_notification=True,
                link_preview_options=NO_LINK_PREVIEW,
            )
        except TelegramError as exc:
            LOGGER.error("Failed to send message to Telegram: %s", exc)
            return False
        return True

    async def _publish_commands(self, controller: RelayController) -> None:
        commands = [
            BotCommand(spec.name, spec.description)
            for spec in controller.commands()
            if spec.listed
        ]
        try:
            await self._app.bot.set_my_commands(commands)
        except TelegramError as exc:
            LOGGER.warning("Failed to publish bot commands: %s", exc)

    def _command_callback(self, name: str) -> UpdateCallback:
        async def _callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
            controller = self._controller
            ctx = build_context(update, context.args)
            if controller is None or ctx is None:
                return
            LOGGER.debug("Command /%s from chat %s: %s", name, ctx.chat_id, ctx.args)
            await controller.dispatch_command(name, ctx)

        return _callback

    async def _on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        ctx = build_context(update, ())
        if self._controller is None or ctx is None:
            return
        await self._controller.handle_text(ctx)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        LOGGER.error("Telegram update %s failed", update, exc_info=context.error)


def build_context(update: Update, args: Optional[Sequence[str]]) -> Optional[CommandContext]:
    """Translate a Telegram update into a :class:`CommandContext`."""

    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None:
        return None

    async def reply(text: str, *, markdown: bool = False) -> None:
        kwargs: dict[str, Any] = {"link_preview_options": NO_LINK_PREVIEW}
        if markdown:
            kwargs["parse_mode"] = ParseMode.MARKDOWN_V2
        try:
            await message.reply_text(text, **kwargs)
        except TelegramError as exc:
            LOGGER.error("Failed to reply in chat %s: %s", chat.id, exc)

    user = update.effective_user
    return CommandContext(
        chat_id=chat.id,
        reply=reply,
        args=list(args or ()),
        first_name=user.first_name if user is not None else None,
    )
