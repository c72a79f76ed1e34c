"""Security framework for the camera bot.

Key Components:
- WhitelistAuthProvider: username allow-list authorization
"""

from .auth import AuthResult, WhitelistAuthProvider

__all__ = [
    "AuthResult",
    "WhitelistAuthProvider",
]
