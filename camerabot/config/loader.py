"""Load settings from the environment and an optional JSON config file."""

import json
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from camerabot.exceptions import ConfigurationError

from .settings import Settings

logger = structlog.get_logger()

# JSON config keys that differ from the settings field names
_CONFIG_KEY_ALIASES = {
    "api_token": "telegram_bot_token",
}


def _read_config_file(config_file: Path) -> Dict[str, Any]:
    try:
        payload = json.loads(config_file.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_file}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Config file is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ConfigurationError("Config file must contain a JSON object")

    return {_CONFIG_KEY_ALIASES.get(key, key): value for key, value in payload.items()}


def load_config(config_file: Optional[Path] = None) -> Settings:
    """Build settings; values from ``config_file`` override the environment."""
    overrides: Dict[str, Any] = {}
    if config_file is not None:
        overrides = _read_config_file(config_file)
        logger.debug(
            "Config file loaded", config_file=str(config_file), keys=sorted(overrides)
        )

    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
