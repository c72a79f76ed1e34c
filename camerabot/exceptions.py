"""Exception hierarchy for the camera bot."""


class CameraBotError(Exception):
    """Base error for the camera bot."""


class ConfigurationError(CameraBotError):
    """Configuration is missing or invalid."""


class StartupError(CameraBotError):
    """Bot could not be started (identity lookup or webhook removal failed)."""


class CaptureError(CameraBotError):
    """External image capture failed."""
