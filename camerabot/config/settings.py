"""Configuration management using Pydantic Settings.

Features:
- Environment variable loading
- Type validation
- Default values
- Floor clamping of capture dimensions (applied once, at load time)
"""

from pathlib import Path
from typing import Annotated, Any, Tuple

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from camerabot.utils.constants import (
    DEFAULT_CAPTURE_COMMAND,
    DEFAULT_IMAGE_HEIGHT,
    DEFAULT_IMAGE_WIDTH,
    DEFAULT_MONITOR_INTERVAL_SECONDS,
    DEFAULT_TEMP_DIR,
    MIN_IMAGE_HEIGHT,
    MIN_IMAGE_WIDTH,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Bot settings
    telegram_bot_token: SecretStr = Field(
        ..., description="Telegram bot token from BotFather"
    )

    # Security
    available_ids: Annotated[Tuple[str, ...], NoDecode] = Field(
        default=(), description="Telegram usernames allowed to use the bot"
    )

    # Polling
    monitor_interval: int = Field(
        DEFAULT_MONITOR_INTERVAL_SECONDS,
        description="Long-polling interval in seconds",
    )
    is_verbose: bool = Field(
        False, description="Log Telegram transport requests at debug level"
    )

    # Capture
    image_width: int = Field(DEFAULT_IMAGE_WIDTH, description="Captured image width")
    image_height: int = Field(
        DEFAULT_IMAGE_HEIGHT, description="Captured image height"
    )
    temp_dir: Path = Field(
        Path(DEFAULT_TEMP_DIR), description="Directory for temporary captures"
    )
    capture_command: str = Field(
        DEFAULT_CAPTURE_COMMAND, description="Still capture executable"
    )

    # Monitoring
    log_level: str = Field("INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("available_ids", mode="before")
    @classmethod
    def parse_available_ids(cls, v: Any) -> Tuple[str, ...]:
        """Parse comma-separated usernames, dropping a leading '@'."""
        if v is None:
            return ()
        if isinstance(v, str):
            items = v.split(",")
        elif isinstance(v, (list, tuple)):
            items = [str(item) for item in v]
        else:
            return v  # type: ignore[no-any-return]
        return tuple(
            item.strip().lstrip("@") for item in items if item.strip().lstrip("@")
        )

    @field_validator("monitor_interval")
    @classmethod
    def default_monitor_interval(cls, v: int) -> int:
        """Fall back to the default interval for non-positive values."""
        if v <= 0:
            return DEFAULT_MONITOR_INTERVAL_SECONDS
        return v

    @field_validator("image_width")
    @classmethod
    def clamp_image_width(cls, v: int) -> int:
        return max(v, MIN_IMAGE_WIDTH)

    @field_validator("image_height")
    @classmethod
    def clamp_image_height(cls, v: int) -> int:
        return max(v, MIN_IMAGE_HEIGHT)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()  # type: ignore[no-any-return]

    @property
    def telegram_token_str(self) -> str:
        """Get Telegram token as string."""
        return self.telegram_bot_token.get_secret_value()
