"""
Exception types for the notification pipeline.

Failures fall into four groups, each handled differently:
- Transport errors (open failure, dropped stream): retried with backoff
- Protocol errors (malformed frame): never raised, the frame is dropped
- Application errors (REST calls): surfaced to the caller
- Precondition errors (no credential): fail immediately, never retried
"""

from typing import Optional


class NotificationPipelineError(Exception):
    """Base class for all errors raised by the pipeline."""


class MissingCredentialError(NotificationPipelineError):
    """No bearer token is available for the current session."""

    def __init__(self, message: str = "No credential available for the current session"):
        super().__init__(message)


class StreamTransportError(NotificationPipelineError):
    """
    The stream could not be opened or ended unexpectedly.

    Attributes:
        status_code: HTTP status of a rejected open, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StreamAuthorizationError(StreamTransportError):
    """The server rejected the credential. Not retried."""


class NotificationApiError(NotificationPipelineError):
    """
    A REST call to the notification service failed.

    Attributes:
        operation: Which call failed (list, mark_read, mark_all_read, ...)
        status_code: HTTP status, or None for network-level failures
    """

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.status_code = status_code
