"""Telegram command menu shown next to the message input."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from telegram import BotCommand


@dataclass(frozen=True)
class MenuCommandSpec:
    """Static menu command metadata."""

    command: str
    description: str


COMMAND_MENU_SPECS: tuple[MenuCommandSpec, ...] = (
    MenuCommandSpec("capture", "Capture a still image"),
    MenuCommandSpec("status", "Show uptime and memory usage"),
    MenuCommandSpec("help", "Show available commands"),
)


def build_bot_commands() -> List[BotCommand]:
    """Build the command menu."""
    return [BotCommand(spec.command, spec.description) for spec in COMMAND_MENU_SPECS]
