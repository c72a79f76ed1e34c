"""Application services.

Services encapsulate reusable capabilities and keep handlers thin.
"""

from .capture import RaspiStillCapture
from .session_store import Session, SessionStatus, SessionStore

__all__ = [
    "RaspiStillCapture",
    "Session",
    "SessionStatus",
    "SessionStore",
]
