"""
Desktop (OS-level) notification display.

When a notification is pushed while the app is open, the store can also pop
it up as an OS notification. That is best effort: the environment may not
support it, the user may deny permission, and a display call may fail. None
of that is allowed to affect notification state.

Design decisions:
- Permission is requested once per authenticated session by the store
- Displays are logged and tracked so tests can assert on them
- Denial and failures can be simulated for testing
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("desktop_notifier")


@dataclass
class DisplayResult:
    """Outcome of one attempt to show a desktop notification."""
    success: bool
    title: str
    body: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"{status} DESKTOP: {self.title}"


class DesktopNotifier:
    """Interface for showing OS-level notifications."""

    def request_permission(self) -> bool:
        """Ask for permission to display. Returns True if granted."""
        raise NotImplementedError

    def show(self, title: str, body: str) -> DisplayResult:
        """Display one notification."""
        raise NotImplementedError


class NullNotifier(DesktopNotifier):
    """Used where desktop notifications aren't supported."""

    def request_permission(self) -> bool:
        logger.info("Desktop notifications are not supported in this environment")
        return False

    def show(self, title: str, body: str) -> DisplayResult:
        return DisplayResult(success=False, title=title, body=body, error="unsupported")


class LoggingNotifier(DesktopNotifier):
    """
    Desktop notifier that logs instead of drawing anything.

    Tracks everything it was asked to show, which makes it the notifier of
    choice for the CLI and for tests.
    """

    def __init__(self, grant_permission: bool = True, fail: bool = False):
        """
        Args:
            grant_permission: Whether request_permission() succeeds
            fail: Make every show() fail, for testing error handling
        """
        self.grant_permission = grant_permission
        self.fail = fail
        self.permission_granted = False
        self.permission_requests = 0
        self.shown: list[DisplayResult] = []

    def request_permission(self) -> bool:
        self.permission_requests += 1
        self.permission_granted = self.grant_permission
        if not self.permission_granted:
            logger.warning("[DESKTOP] Notification permission denied")
        return self.permission_granted

    def show(self, title: str, body: str) -> DisplayResult:
        if not self.permission_granted:
            result = DisplayResult(success=False, title=title, body=body, error="permission not granted")
        elif self.fail:
            result = DisplayResult(success=False, title=title, body=body, error="Simulated display failure")
            logger.error(f"[DESKTOP FAILED] {title} | Error: {result.error}")
        else:
            result = DisplayResult(success=True, title=title, body=body)
            logger.info(f"[DESKTOP] {title} | {body}")

        self.shown.append(result)
        return result

    def get_shown_count(self) -> int:
        """Number of successful displays."""
        return sum(1 for r in self.shown if r.success)

    def clear_history(self) -> None:
        self.shown.clear()
