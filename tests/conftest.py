"""
Shared pytest fixtures for the notification pipeline tests.

These fixtures provide fake collaborators (REST service, stream endpoint)
so the pipeline can be exercised without a network.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import httpx
import pytest

from notification_stream.connection import StreamConnection
from notification_stream.dispatcher import EventDispatcher
from shared.config import RetryPolicy, StreamSettings
from shared.desktop import LoggingNotifier
from shared.errors import NotificationApiError
from shared.models import Notification, NotificationPage
from shared.session import SessionCredentials


# =============================================================================
# Helpers
# =============================================================================

def frame(event: Optional[str], data: Any) -> str:
    """Encode one stream frame the way the server does."""
    text = data if isinstance(data, str) else json.dumps(data)
    head = f"event: {event}\n" if event is not None else ""
    return f"{head}data: {text}\n\n"


def pushed(notification_id: Any, title: str = "Order Update", is_read: bool = False, **extra: Any) -> dict:
    """A `notification` event payload as pushed by the server."""
    payload = {
        "id": notification_id,
        "title": title,
        "message": f"Message for {notification_id}",
        "type": "ORDER_UPDATE",
        "isRead": is_read,
        "createdAt": "2024-01-01T00:00:00Z",
    }
    payload.update(extra)
    return payload


def listed(notification_id: Any, is_read: bool = False, created_at: str = "2024-01-01T00:00:00Z") -> dict:
    """A notification as returned by the list endpoint."""
    return {
        "id": notification_id,
        "title": f"Notification {notification_id}",
        "message": "...",
        "notificationType": "ORDER_UPDATE",
        "relatedEntityType": "ORDER",
        "relatedEntityId": 100 + int(notification_id),
        "isRead": is_read,
        "createdAt": created_at,
    }


async def wait_for_status(connection: StreamConnection, *statuses, timeout: float = 2.0) -> None:
    """Wait until the connection reaches one of the given statuses."""
    async def poll():
        while connection.state.status not in statuses:
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Wait until `predicate()` is true."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


# =============================================================================
# Fake Collaborators
# =============================================================================

class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self, block: bool = False):
        self.delays: list[float] = []
        self.block = block

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.block:
            await asyncio.Event().wait()
        await asyncio.sleep(0)


Script = Callable[[httpx.Request], Awaitable[httpx.Response]]


class FakeStreamServer:
    """
    Scripted stream endpoint for httpx.MockTransport.

    Each incoming request consumes the next script. When the scripts run out,
    the endpoint answers 503.
    """

    def __init__(self):
        self.scripts: list[Script] = []
        self.requests: list[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.scripts:
            return await self.scripts.pop(0)(request)
        return httpx.Response(503)

    def respond(self, status_code: int) -> "FakeStreamServer":
        async def script(request):
            return httpx.Response(status_code)
        self.scripts.append(script)
        return self

    def refuse(self) -> "FakeStreamServer":
        async def script(request):
            raise httpx.ConnectError("connection refused", request=request)
        self.scripts.append(script)
        return self

    def stream(self, chunks: list, hold_open: bool = True, delay: float = 0) -> "FakeStreamServer":
        """Answer 200 and send `chunks` after `delay` seconds; then either hang or end the stream."""
        async def body():
            if delay:
                await asyncio.sleep(delay)
            for chunk in chunks:
                yield chunk.encode() if isinstance(chunk, str) else chunk
                await asyncio.sleep(0)
            if hold_open:
                await asyncio.Event().wait()

        async def script(request):
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=body(),
            )
        self.scripts.append(script)
        return self


class FakeNotificationApi:
    """In-memory stand-in for NotificationApiClient."""

    def __init__(self, notifications: Optional[list[dict]] = None, unread_count: int = 0):
        self.page = NotificationPage.model_validate({
            "notifications": notifications or [],
            "unreadCount": unread_count,
        })
        self.fail_list = False
        self.fail_mark = False
        self.list_calls = 0
        self.marked_read: list[Any] = []
        self.mark_all_calls = 0
        self.list_gate: Optional[asyncio.Event] = None
        self.mark_gate: Optional[asyncio.Event] = None

    def set_page(self, notifications: list[dict], unread_count: int) -> None:
        self.page = NotificationPage.model_validate({
            "notifications": notifications,
            "unreadCount": unread_count,
        })

    async def list_notifications(self) -> NotificationPage:
        self.list_calls += 1
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.fail_list:
            raise NotificationApiError("list", "HTTP 500", status_code=500)
        return self.page

    async def mark_as_read(self, notification_id: Any) -> None:
        self.marked_read.append(notification_id)
        if self.mark_gate is not None:
            await self.mark_gate.wait()
        if self.fail_mark:
            raise NotificationApiError("mark_read", "HTTP 500", status_code=500)

    async def mark_all_as_read(self) -> None:
        self.mark_all_calls += 1
        if self.mark_gate is not None:
            await self.mark_gate.wait()
        if self.fail_mark:
            raise NotificationApiError("mark_all_read", "HTTP 500", status_code=500)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings() -> StreamSettings:
    """Stream settings pointing at a fake host, watchdog disabled."""
    return StreamSettings(
        base_url="http://notify.test",
        retry=RetryPolicy(max_retries=5, base_delay_ms=1000, max_delay_ms=30000),
        idle_timeout_s=None,
    )


@pytest.fixture
def credentials() -> SessionCredentials:
    """A signed-in session."""
    return SessionCredentials("test-token")


@pytest.fixture
def stream_server() -> FakeStreamServer:
    """Fresh scripted stream endpoint for each test."""
    return FakeStreamServer()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    """Backoff sleep that records delays without waiting."""
    return RecordingSleep()


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def connection(settings, credentials, stream_server, dispatcher, fake_sleep) -> StreamConnection:
    """Stream connection wired to the fake stream endpoint."""
    client = httpx.AsyncClient(transport=stream_server.transport())
    return StreamConnection(
        settings,
        credentials,
        client=client,
        dispatcher=dispatcher,
        sleep=fake_sleep,
    )


@pytest.fixture
def fake_api() -> FakeNotificationApi:
    """Empty fake REST service."""
    return FakeNotificationApi()


@pytest.fixture
def notifier() -> LoggingNotifier:
    """Desktop notifier that grants permission and records displays."""
    return LoggingNotifier(grant_permission=True)


@pytest.fixture
def sample_notification() -> Notification:
    return Notification.model_validate(listed(1))
