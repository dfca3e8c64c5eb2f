"""
Session credential holder.

Login/logout happen elsewhere in the application; the notification pipeline
only reads the current bearer token from here. Anything with a `get_token()`
method returning an optional string can stand in for this class.
"""

import logging
from typing import Optional

logger = logging.getLogger("session")


class SessionCredentials:
    """In-memory bearer token for the signed-in user."""

    def __init__(self, token: Optional[str] = None):
        self._token = token or None

    def login(self, token: str) -> None:
        """Store the token issued at sign-in."""
        if not token:
            raise ValueError("token must be a non-empty string")
        self._token = token
        logger.info("Session credential set")

    def logout(self) -> None:
        """Forget the token."""
        self._token = None
        logger.info("Session credential cleared")

    def get_token(self) -> Optional[str]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None
