"""Telegram send helpers shared by reply paths."""

from __future__ import annotations

from typing import Any

import structlog
from telegram import ReplyKeyboardMarkup
from telegram.constants import ParseMode

from ...utils.constants import COMMAND_CAPTURE, COMMAND_HELP, COMMAND_STATUS

logger = structlog.get_logger()

REPLY_KEYBOARD_LAYOUT: tuple[tuple[str, ...], ...] = (
    (COMMAND_CAPTURE,),
    (COMMAND_STATUS, COMMAND_HELP),
)


def build_reply_keyboard() -> ReplyKeyboardMarkup:
    """Keyboard attached to every reply."""
    return ReplyKeyboardMarkup(REPLY_KEYBOARD_LAYOUT, resize_keyboard=True)


def build_reply_options() -> dict[str, Any]:
    """Keyword options shared by text and photo replies."""
    return {
        "reply_markup": build_reply_keyboard(),
        "parse_mode": ParseMode.MARKDOWN,
    }


def describe_telegram_error(error: BaseException) -> str:
    """Failure description reported by Telegram (or the local error text)."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) or type(error).__name__


async def send_chat_action_best_effort(bot: Any, *, chat_id: int, action: str) -> bool:
    """Send a chat action; failures are logged at debug level only."""
    send_chat_action = getattr(bot, "send_chat_action", None)
    if not callable(send_chat_action):
        return False

    try:
        await send_chat_action(chat_id=chat_id, action=action)
    except Exception as e:
        logger.debug(
            "Failed to send chat action",
            chat_id=chat_id,
            action=action,
            error=str(e),
        )
        return False
    return True
