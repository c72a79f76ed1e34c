"""Username whitelist authorization.

Features:
- Static allow-list loaded once at startup
- Distinct results for missing usernames and unknown usernames
"""

import enum
from typing import Any, Iterable, Optional, Tuple

import structlog

logger = structlog.get_logger()


class AuthResult(enum.Enum):
    ALLOWED = "allowed"
    MISSING_USERNAME = "missing_username"
    NOT_ALLOWED = "not_allowed"


class WhitelistAuthProvider:
    """Whitelist-based authorization on Telegram usernames."""

    def __init__(self, allowed_ids: Iterable[str]):
        self.allowed_ids: Tuple[str, ...] = tuple(allowed_ids)
        logger.info(
            "Whitelist auth provider initialized",
            allowed_users=len(self.allowed_ids),
        )

    def check(self, user: Optional[Any]) -> AuthResult:
        """Classify the sender of an update. Never raises."""
        username = getattr(user, "username", None)
        if not username:
            logger.warning(
                "Not allowed (no user name)",
                first_name=getattr(user, "first_name", None),
            )
            return AuthResult.MISSING_USERNAME

        if username not in self.allowed_ids:
            logger.warning("Id not allowed", username=username)
            return AuthResult.NOT_ALLOWED

        return AuthResult.ALLOWED

    def is_authorized(self, user: Optional[Any]) -> bool:
        """Whether the sender is on the allow-list."""
        return self.check(user) is AuthResult.ALLOWED
