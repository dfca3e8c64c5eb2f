"""
Shared infrastructure for the notification pipeline.

This package contains the collaborators the pipeline talks to and the types
they exchange:
- Domain models (Notification, store and connection state)
- Configuration and error types
- REST client for the notification service
- Session credentials and desktop notification display
"""

from shared.config import RetryPolicy, StreamSettings, load_settings
from shared.desktop import DesktopNotifier, LoggingNotifier, NullNotifier
from shared.errors import (
    MissingCredentialError,
    NotificationApiError,
    NotificationPipelineError,
    StreamAuthorizationError,
    StreamTransportError,
)
from shared.models import (
    ConnectionState,
    ConnectionStatus,
    LoadStatus,
    Notification,
    NotificationCategory,
    NotificationPage,
    NotificationStoreState,
)
from shared.rest_client import NotificationApiClient
from shared.session import SessionCredentials

__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "DesktopNotifier",
    "LoadStatus",
    "LoggingNotifier",
    "MissingCredentialError",
    "Notification",
    "NotificationApiClient",
    "NotificationApiError",
    "NotificationCategory",
    "NotificationPage",
    "NotificationPipelineError",
    "NotificationStoreState",
    "NullNotifier",
    "RetryPolicy",
    "SessionCredentials",
    "StreamAuthorizationError",
    "StreamSettings",
    "StreamTransportError",
    "load_settings",
]
