"""Per-update dispatch: authorize, route, reply, capture and clean up.

Everything between the session lookup and the temp file cleanup runs while
holding the session store lock, so at most one update is handled at a time.
"""

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Union

import structlog
from telegram import Update
from telegram.constants import ChatAction
from telegram.error import TelegramError

from ..config.settings import Settings
from ..exceptions import CaptureError
from ..security.auth import AuthResult, WhitelistAuthProvider
from ..services.session_store import SessionStore
from .router import Action, Command, route_command
from .utils.telegram_send import (
    build_reply_options,
    describe_telegram_error,
    send_chat_action_best_effort,
)

logger = structlog.get_logger()


class CaptureBackend(Protocol):
    async def capture(
        self, output_dir: Union[str, Path], width: int, height: int
    ) -> Path: ...


class DispatchOutcome(enum.Enum):
    IGNORED = "ignored"
    UNAUTHORIZED_NO_USERNAME = "unauthorized_no_username"
    UNAUTHORIZED = "unauthorized"
    NO_SESSION = "no_session"
    TEXT_SENT = "text_sent"
    TEXT_FAILED = "text_failed"
    PHOTO_SENT = "photo_sent"
    PHOTO_FAILED = "photo_failed"
    CAPTURE_FAILED = "capture_failed"


_SUCCESS_OUTCOMES = frozenset({DispatchOutcome.TEXT_SENT, DispatchOutcome.PHOTO_SENT})

_AUTH_OUTCOMES = {
    AuthResult.MISSING_USERNAME: DispatchOutcome.UNAUTHORIZED_NO_USERNAME,
    AuthResult.NOT_ALLOWED: DispatchOutcome.UNAUTHORIZED,
}


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of processing one update."""

    outcome: DispatchOutcome
    command: Optional[Command] = None

    @property
    def ok(self) -> bool:
        return self.outcome in _SUCCESS_OUTCOMES


class UpdateDispatcher:
    """Process inbound updates for allow-listed users."""

    def __init__(
        self,
        settings: Settings,
        auth_provider: WhitelistAuthProvider,
        session_store: SessionStore,
        capture: CaptureBackend,
        status_text_provider: Callable[[], str],
    ):
        self.settings = settings
        self.auth_provider = auth_provider
        self.session_store = session_store
        self.capture = capture
        self.status_text_provider = status_text_provider

    async def handle_update(self, update: Update, context: Any) -> None:
        """PTB handler callback."""
        await self.process_update(context.bot, update)

    async def process_update(self, bot: Any, update: Update) -> DispatchResult:
        """Handle one update. Expected failures are logged and reported as outcomes."""
        message = getattr(update, "message", None)
        if message is None:
            return DispatchResult(DispatchOutcome.IGNORED)

        auth_result = self.auth_provider.check(getattr(message, "from_user", None))
        if auth_result is not AuthResult.ALLOWED:
            return DispatchResult(_AUTH_OUTCOMES[auth_result])

        user_id: str = message.from_user.username
        chat_id: int = message.chat_id

        async with self.session_store.acquire() as store:
            session = store.get(user_id)
            if session is None:
                return DispatchResult(DispatchOutcome.NO_SESSION)

            decision = route_command(
                session.status, message.text, self.status_text_provider
            )
            logger.debug(
                "Command routed",
                user_id=user_id,
                command=decision.command.value,
                status=session.status.value,
            )

            if decision.action is Action.CAPTURE:
                outcome = await self._capture_and_send(bot, chat_id)
            else:
                outcome = await self._send_text(bot, chat_id, decision.text or "")

            store.set_status(user_id, decision.next_status)

        return DispatchResult(outcome, decision.command)

    async def _send_text(self, bot: Any, chat_id: int, text: str) -> DispatchOutcome:
        try:
            await bot.send_message(chat_id=chat_id, text=text, **build_reply_options())
        except TelegramError as e:
            logger.error(
                "Failed to send message",
                chat_id=chat_id,
                description=describe_telegram_error(e),
            )
            return DispatchOutcome.TEXT_FAILED
        return DispatchOutcome.TEXT_SENT

    async def _capture_and_send(self, bot: Any, chat_id: int) -> DispatchOutcome:
        await send_chat_action_best_effort(
            bot, chat_id=chat_id, action=ChatAction.TYPING
        )

        try:
            image_path = await self.capture.capture(
                self.settings.temp_dir,
                self.settings.image_width,
                self.settings.image_height,
            )
        except CaptureError as e:
            logger.error("Image capture failed", chat_id=chat_id, error=str(e))
            return DispatchOutcome.CAPTURE_FAILED

        try:
            await send_chat_action_best_effort(
                bot, chat_id=chat_id, action=ChatAction.UPLOAD_PHOTO
            )
            return await self._send_photo(bot, chat_id, image_path)
        finally:
            self._remove_temp_file(image_path)

    async def _send_photo(
        self, bot: Any, chat_id: int, image_path: Path
    ) -> DispatchOutcome:
        try:
            await bot.send_photo(
                chat_id=chat_id, photo=image_path, **build_reply_options()
            )
        except (TelegramError, OSError) as e:
            logger.error(
                "Failed to send photo",
                chat_id=chat_id,
                path=str(image_path),
                description=describe_telegram_error(e),
            )
            return DispatchOutcome.PHOTO_FAILED
        return DispatchOutcome.PHOTO_SENT

    @staticmethod
    def _remove_temp_file(image_path: Path) -> None:
        try:
            image_path.unlink()
        except OSError as e:
            logger.error(
                "Failed to delete temp file", path=str(image_path), error=str(e)
            )
