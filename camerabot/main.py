"""Main entry point for the Raspberry Pi camera bot."""

import argparse
import asyncio
import logging
import re
import signal
import sys
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Dict, List

import structlog

from camerabot import __version__
from camerabot.bot.core import CameraBot
from camerabot.bot.dispatcher import UpdateDispatcher
from camerabot.config import Settings, load_config
from camerabot.exceptions import ConfigurationError, StartupError
from camerabot.security.auth import WhitelistAuthProvider
from camerabot.services.capture import RaspiStillCapture
from camerabot.services.session_store import SessionStore
from camerabot.utils.system_stats import format_uptime, memory_usage

# Bot tokens show up in httpx request lines and in PTB error messages.
_TOKEN_REDACTIONS = (
    (
        re.compile(r"(https?://api\.telegram\.org/(?:file/)?bot)([^/\s]+)"),
        r"\1<redacted>",
    ),
    (re.compile(r"\b\d{6,}:[A-Za-z0-9_-]{20,}\b"), "<redacted_token>"),
)


def redact_sensitive_text(text: str) -> str:
    """Mask Telegram bot tokens in ``text``."""
    for pattern, replacement in _TOKEN_REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class SensitiveLogFilter(logging.Filter):
    """Rewrite stdlib records whose rendered message contains a token."""

    def filter(self, record: logging.LogRecord) -> bool:
        rendered = record.getMessage()
        safe = redact_sensitive_text(rendered)
        if safe != rendered:
            record.msg, record.args = safe, ()
        return True


def _structlog_processors(debug: bool) -> List[Any]:
    renderer = (
        structlog.dev.ConsoleRenderer()
        if debug
        else structlog.processors.JSONRenderer()
    )
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def setup_logging(debug: bool = False) -> None:
    """Route structlog through stdlib logging on stdout.

    JSON lines by default, the console renderer with ``debug``. Every root
    handler gets a :class:`SensitiveLogFilter`.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        stream=sys.stdout,
    )
    token_filter = SensitiveLogFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(token_filter)

    structlog.configure(
        processors=_structlog_processors(debug),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def apply_config_log_levels(config: Settings, debug: bool = False) -> None:
    """Apply configured log level and Telegram transport verbosity."""
    if not debug:
        logging.getLogger().setLevel(config.log_level)

    transport_level = logging.DEBUG if config.is_verbose else logging.WARNING
    for name in ("httpx", "httpcore", "telegram"):
        logging.getLogger(name).setLevel(transport_level)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Telegram bot for the Raspberry Pi camera module",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version", action="version", version=f"rpicam-bot {__version__}"
    )

    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    parser.add_argument("--config-file", type=Path, help="Path to JSON config file")

    return parser.parse_args()


def build_status_text(launched: datetime) -> str:
    """Reply text for /status."""
    return f"Uptime: {format_uptime(launched)}\nMemory Usage: {memory_usage()}"


def create_application(config: Settings, launched: datetime) -> Dict[str, Any]:
    """Create and wire the application components."""
    logger = structlog.get_logger()
    logger.info("Creating application components")

    if not config.available_ids:
        raise ConfigurationError(
            "No authorized users configured. Set AVAILABLE_IDS."
        )

    auth_provider = WhitelistAuthProvider(config.available_ids)
    session_store = SessionStore(config.available_ids)
    capture = RaspiStillCapture(config.capture_command)

    dispatcher = UpdateDispatcher(
        settings=config,
        auth_provider=auth_provider,
        session_store=session_store,
        capture=capture,
        status_text_provider=partial(build_status_text, launched),
    )

    bot = CameraBot(config, {"dispatcher": dispatcher})

    logger.info("Application components created successfully")

    return {
        "bot": bot,
        "dispatcher": dispatcher,
        "session_store": session_store,
        "config": config,
    }


async def run_application(app: Dict[str, Any]) -> None:
    """Run the bot until it exits or SIGINT/SIGTERM arrives, then stop it."""
    logger = structlog.get_logger()
    bot: CameraBot = app["bot"]

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_requested.set)

    logger.info("Starting camera bot")
    bot_task = asyncio.create_task(bot.start())
    stop_task = asyncio.create_task(stop_requested.wait())
    try:
        await asyncio.wait({bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if stop_requested.is_set():
            logger.info("Shutdown signal received")
        else:
            stop_task.cancel()
            # Propagates startup failures so main() exits non-zero.
            bot_task.result()
    except Exception as e:
        logger.error("Application error", error=str(e))
        raise
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
        try:
            await bot.stop()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e))
        if not bot_task.done():
            bot_task.cancel()
            await asyncio.gather(bot_task, return_exceptions=True)
        logger.info("Application shutdown complete")


async def main() -> None:
    """Main application entry point."""
    launched = datetime.now()
    args = parse_args()
    setup_logging(debug=args.debug)

    logger = structlog.get_logger()
    logger.info("Starting camera bot", version=__version__)

    try:
        config = load_config(config_file=args.config_file)
        apply_config_log_levels(config, debug=args.debug)

        logger.info(
            "Configuration loaded",
            allowed_users=len(config.available_ids),
            monitor_interval=config.monitor_interval,
            image_size=f"{config.image_width}x{config.image_height}",
            verbose=config.is_verbose,
        )

        app = create_application(config, launched)
        await run_application(app)

    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except StartupError as e:
        logger.error("Startup error", error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)


def run() -> None:
    """Synchronous entry point for setuptools."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
