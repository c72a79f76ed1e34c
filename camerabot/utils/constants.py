"""Application-wide constants."""

# Commands recognized as message prefixes
COMMAND_START = "/start"
COMMAND_CAPTURE = "/capture"
COMMAND_STATUS = "/status"
COMMAND_HELP = "/help"

# Reply texts
MESSAGE_DEFAULT = "Input your command:"
MESSAGE_UNKNOWN_COMMAND = "Unrecognizable command."

# Polling
DEFAULT_MONITOR_INTERVAL_SECONDS = 1

# Capture
DEFAULT_TEMP_DIR = "/var/tmp"
DEFAULT_CAPTURE_COMMAND = "raspistill"
MIN_IMAGE_WIDTH = 400
MIN_IMAGE_HEIGHT = 300
DEFAULT_IMAGE_WIDTH = 640
DEFAULT_IMAGE_HEIGHT = 480
