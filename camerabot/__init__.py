"""rpicam-telegram-bot.

A Telegram bot that lets a single operator capture still images from a
Raspberry Pi camera module and receive them in chat.

Features:
- Environment/JSON based configuration with Pydantic validation
- Username whitelist authorization
- Serialized per-user session handling
- raspistill capture with guaranteed temp file cleanup
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Development status indicator
__status__ = "Active Development"
