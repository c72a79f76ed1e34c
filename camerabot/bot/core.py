"""Main Telegram bot class.

Features:
- Startup checks (bot identity, webhook removal)
- Handler registration
- Long polling with rate-limited error logging
- Graceful shutdown
"""

import asyncio
import time
from typing import Any, Dict, Optional

import structlog
from telegram import Update
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from ..config.settings import Settings
from ..exceptions import CameraBotError, StartupError
from .dispatcher import UpdateDispatcher
from .utils.command_menu import build_bot_commands

logger = structlog.get_logger()

_RUN_LOOP_INTERVAL_SECONDS = 2.0
_POLLING_ERROR_LOG_INTERVAL_SECONDS = 30.0
_POLLING_ERROR_WINDOW_SECONDS = 60.0


class CameraBot:
    """Main bot orchestrator."""

    def __init__(self, settings: Settings, dependencies: Dict[str, Any]):
        """Initialize bot with settings and dependencies."""
        self.settings = settings
        self.deps = dependencies
        self.app: Optional[Application] = None
        self.is_running = False
        # Polling error tracking for rate-limited logging
        self._polling_error_count: int = 0
        self._polling_error_window_start: Optional[float] = None
        self._last_polling_error_log: Optional[float] = None

    def _require_app(self) -> Application:
        """Return initialized Telegram application or raise."""
        if self.app is None:
            raise CameraBotError("Telegram application is not initialized")
        return self.app

    def _require_dispatcher(self) -> UpdateDispatcher:
        dispatcher = self.deps.get("dispatcher")
        if not isinstance(dispatcher, UpdateDispatcher):
            raise CameraBotError("Missing or invalid dispatcher dependency")
        return dispatcher

    async def initialize(self) -> None:
        """Build the Telegram application and register handlers."""
        logger.info("Initializing Telegram bot")

        builder = Application.builder()
        builder.token(self.settings.telegram_token_str)

        # Configure connection settings
        builder.connect_timeout(30)
        builder.read_timeout(30)
        builder.write_timeout(30)
        builder.pool_timeout(30)

        # Handlers may run concurrently; the session store lock still
        # serializes the processing of every update.
        builder.concurrent_updates(True)

        self.app = builder.build()
        app = self._require_app()

        dispatcher = self._require_dispatcher()
        app.add_handler(
            MessageHandler(filters.UpdateType.MESSAGE, dispatcher.handle_update)
        )
        app.add_error_handler(self._error_handler)

        logger.info("Bot initialization complete")

    async def _fetch_bot_identity(self) -> None:
        """Query bot identity; failure aborts startup."""
        app = self._require_app()
        try:
            me = await app.bot.get_me()
        except Exception as e:
            raise StartupError(f"Failed to get info of the bot: {e}") from e

        logger.info(
            "Launching bot", username=f"@{me.username}", first_name=me.first_name
        )

    async def _delete_webhook(self) -> None:
        """Remove any webhook; long polling does not work while one is set."""
        app = self._require_app()
        try:
            unhooked = await app.bot.delete_webhook()
        except Exception as e:
            raise StartupError(f"Failed to delete webhook: {e}") from e
        if not unhooked:
            raise StartupError("Failed to delete webhook")

    async def _set_bot_commands(self) -> None:
        """Set bot command menu (non-fatal on failure)."""
        app = self._require_app()
        try:
            commands = build_bot_commands()
            await app.bot.set_my_commands(commands)
            logger.info("Bot commands set", commands=[cmd.command for cmd in commands])
        except Exception as e:
            logger.warning(
                "Failed to set bot commands",
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _start_polling(self) -> None:
        app = self._require_app()
        updater = getattr(app, "updater", None)
        if updater is None:
            raise CameraBotError("Telegram updater is not available")

        await updater.start_polling(
            poll_interval=float(self.settings.monitor_interval),
            allowed_updates=[Update.MESSAGE],
            error_callback=self._polling_error_callback,
        )

    async def start(self) -> None:
        """Start the bot and poll until stopped."""
        if self.is_running:
            logger.warning("Bot is already running")
            return

        await self.initialize()
        app = self._require_app()

        try:
            await app.initialize()
        except Exception as e:
            raise StartupError(f"Failed to initialize Telegram client: {e}") from e

        await self._fetch_bot_identity()
        await self._delete_webhook()
        await self._set_bot_commands()

        logger.info(
            "Starting bot",
            mode="polling",
            poll_interval=self.settings.monitor_interval,
        )

        try:
            self.is_running = True
            await app.start()
            await self._start_polling()

            # Keep running until manually stopped
            while self.is_running:
                await asyncio.sleep(_RUN_LOOP_INTERVAL_SECONDS)
        except Exception as e:
            logger.error("Error running bot", error=str(e))
            raise CameraBotError(f"Failed to start bot: {str(e)}") from e
        finally:
            self.is_running = False

    async def stop(self) -> None:
        """Gracefully stop the bot."""
        if self.app is None:
            logger.warning("Bot is not running")
            return

        logger.info("Stopping bot")
        self.is_running = False

        try:
            app = self._require_app()
            updater = getattr(app, "updater", None)
            if updater and updater.running:
                await updater.stop()

            if app.running:
                await app.stop()
            await app.shutdown()

            logger.info("Bot stopped successfully")
        except Exception as e:
            logger.error("Error stopping bot", error=str(e))
            raise CameraBotError(f"Failed to stop bot: {str(e)}") from e

    def _polling_error_callback(self, error: Exception) -> None:
        """Log errors while receiving updates (sync callback, required by PTB)."""
        now = time.monotonic()

        if (
            self._polling_error_window_start is None
            or now - self._polling_error_window_start > _POLLING_ERROR_WINDOW_SECONDS
        ):
            self._polling_error_count = 0
            self._polling_error_window_start = now

        self._polling_error_count += 1

        # Rate limit: at most one log entry per interval
        if (
            self._last_polling_error_log is not None
            and now - self._last_polling_error_log < _POLLING_ERROR_LOG_INTERVAL_SECONDS
        ):
            return

        self._last_polling_error_log = now
        log_fn = logger.error if self._polling_error_count > 5 else logger.warning
        log_fn(
            "Error while receiving update (PTB will retry automatically)",
            error=str(error),
            error_type=type(error).__name__,
            error_count_in_window=self._polling_error_count,
        )

    async def _error_handler(
        self, update: object, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Log errors that escaped a handler. Nothing is sent to the user."""
        error = context.error
        update_obj = update if isinstance(update, Update) else None
        logger.error(
            "Global error handler triggered",
            error=str(error),
            error_type=type(error).__name__,
            update_id=update_obj.update_id if update_obj else None,
            username=(
                update_obj.effective_user.username
                if update_obj and update_obj.effective_user
                else None
            ),
        )
