"""
REST client for the notification service.

The store uses this for the authoritative notification list and to persist
read flags. Endpoints (relative to the base URL):

    GET  /api/notifications                 -> {notifications: [...], unreadCount}
    PUT  /api/notifications/{id}/read
    PUT  /api/notifications/read-all
    GET  /api/notifications/stream/status   -> {connected, totalActiveConnections}

Design decisions:
- One shared httpx.AsyncClient, injectable for tests
- Credential is read from the session on every call, never cached
- Every failure is raised as NotificationApiError with the HTTP status
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from shared.config import StreamSettings
from shared.errors import MissingCredentialError, NotificationApiError
from shared.models import NotificationId, NotificationPage
from shared.session import SessionCredentials

logger = logging.getLogger("notification_api_client")


class NotificationApiClient:
    """
    Async client for the notification REST endpoints.

    Example:
        api = NotificationApiClient(settings, credentials)
        page = await api.list_notifications()
        await api.mark_as_read(page.notifications[0].id)
        await api.aclose()
    """

    def __init__(
        self,
        settings: StreamSettings,
        credentials: SessionCredentials,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            settings: Base URL and timeouts
            credentials: Source of the bearer token
            client: HTTP client to use (defaults to a new one owned by this object)
        """
        self.settings = settings
        self.credentials = credentials
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout_s)

    @property
    def base_url(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}{self.settings.api_prefix}"

    async def list_notifications(self) -> NotificationPage:
        """Fetch the full notification list and unread count."""
        data = await self._request("list", "GET", "")
        try:
            page = NotificationPage.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as e:
            raise NotificationApiError("list", f"invalid response body: {e}") from e
        logger.info(f"Loaded {len(page.notifications)} notifications ({page.unread_count} unread)")
        return page

    async def mark_as_read(self, notification_id: NotificationId) -> None:
        """Mark one notification read on the server."""
        await self._request("mark_read", "PUT", f"/{notification_id}/read")

    async def mark_all_as_read(self) -> None:
        """Mark every notification read on the server."""
        await self._request("mark_all_read", "PUT", "/read-all")

    async def connection_status(self) -> dict[str, Any]:
        """Ask the server whether it sees our stream connection."""
        data = await self._request("stream_status", "GET", "/stream/status")
        return data if isinstance(data, dict) else {}

    async def aclose(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, operation: str, method: str, path: str) -> Any:
        token = self.credentials.get_token()
        if not token:
            raise MissingCredentialError()

        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(
                method,
                url,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"{operation}: {method} {url} failed: {e}")
            raise NotificationApiError(operation, str(e)) from e

        if response.is_error:
            logger.error(f"{operation}: {method} {url} returned {response.status_code}")
            raise NotificationApiError(
                operation,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None
