"""Map a session status and message text to the bot's next action.

Routing is a table keyed by ``SessionStatus``. Only ``WAITING`` exists, so
every command is recognized in every session today; multi-step flows add a
status and a row here.
"""

import enum
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from ..services.session_store import SessionStatus
from ..utils.constants import (
    COMMAND_CAPTURE,
    COMMAND_HELP,
    COMMAND_START,
    COMMAND_STATUS,
    MESSAGE_DEFAULT,
    MESSAGE_UNKNOWN_COMMAND,
)

HELP_TEXT = """
Following commands are supported:

*For Raspberry Pi Camera Module*

/capture : capture an still image with *raspistill*

*Others*

/status : show this bot's status
/help : show this help message
"""


class Command(enum.Enum):
    START = "start"
    CAPTURE = "capture"
    STATUS = "status"
    HELP = "help"
    UNKNOWN = "unknown"


class Action(enum.Enum):
    REPLY_TEXT = "reply_text"
    CAPTURE = "capture"


@dataclass(frozen=True)
class RouteDecision:
    """What to do with one message."""

    command: Command
    action: Action
    text: Optional[str] = None
    next_status: SessionStatus = SessionStatus.WAITING


StatusTextProvider = Callable[[], str]

_PREFIX_COMMANDS: Tuple[Tuple[str, Command], ...] = (
    (COMMAND_START, Command.START),
    (COMMAND_CAPTURE, Command.CAPTURE),
    (COMMAND_STATUS, Command.STATUS),
    (COMMAND_HELP, Command.HELP),
)


def parse_command(text: str) -> Command:
    """Match message text against the known command prefixes."""
    for prefix, command in _PREFIX_COMMANDS:
        if text.startswith(prefix):
            return command
    return Command.UNKNOWN


def _route_waiting(
    text: str, status_text_provider: StatusTextProvider
) -> RouteDecision:
    command = parse_command(text)
    if command is Command.START:
        return RouteDecision(command, Action.REPLY_TEXT, MESSAGE_DEFAULT)
    if command is Command.CAPTURE:
        return RouteDecision(command, Action.CAPTURE)
    if command is Command.STATUS:
        return RouteDecision(command, Action.REPLY_TEXT, status_text_provider())
    if command is Command.HELP:
        return RouteDecision(command, Action.REPLY_TEXT, HELP_TEXT)
    return RouteDecision(
        command, Action.REPLY_TEXT, f"*{text}*: {MESSAGE_UNKNOWN_COMMAND}"
    )


_ROUTES: Dict[
    SessionStatus, Callable[[str, StatusTextProvider], RouteDecision]
] = {
    SessionStatus.WAITING: _route_waiting,
}


def route_command(
    status: SessionStatus,
    text: Optional[str],
    status_text_provider: StatusTextProvider,
) -> RouteDecision:
    """Decide the action for ``text`` received while in ``status``."""
    return _ROUTES[status]((text or "").strip(), status_text_provider)
