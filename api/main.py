"""
Local notification server for development.

A small in-memory stand-in for the ordering backend's notification endpoints,
so the client pipeline can be run end to end without the real system:

    GET  /health
    GET  /api/notifications                  list + unread count
    PUT  /api/notifications/{id}/read        mark one read
    PUT  /api/notifications/read-all         mark all read
    GET  /api/notifications/stream           text/event-stream
    GET  /api/notifications/stream/status    connection status
    POST /demo/notifications                 push a new notification

Run with:
    uv run uvicorn api.main:app --port 5454

Then in another terminal:
    NOTIFY_TOKEN=dev-token uv run python cli.py listen

Design decisions:
- Single user; every valid token sees the same notifications
- Each stream subscriber gets its own queue; events are broadcast to all
- On connect the stream sends `connected` then the current `unread_count`
- A heartbeat frame every 30s keeps idle connections (and client watchdogs) alive
- Routes that broadcast are async so queue writes happen on the event loop
"""

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from shared.models import Notification, NotificationCategory, RelatedEntity

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("notification_server")

HEARTBEAT_INTERVAL_S = 30.0


def format_sse(event: str, data: Any) -> str:
    """Encode one frame of the event stream."""
    text = data if isinstance(data, str) else json.dumps(data)
    lines = "".join(f"data: {line}\n" for line in text.split("\n"))
    return f"event: {event}\n{lines}\n"


# =============================================================================
# In-memory Notification Hub
# =============================================================================

class NotificationHub:
    """
    Holds notifications and broadcasts changes to stream subscribers.

    Example:
        hub = NotificationHub()
        queue = hub.add_subscriber()
        hub.create("Order Update", "Your order is on its way", NotificationCategory.ORDER_UPDATE)
        event, data = queue.get_nowait()   # ("notification", {...})
    """

    def __init__(self, tokens: Optional[set[str]] = None):
        self.tokens = tokens if tokens is not None else {"dev-token"}
        self._notifications: dict[int, Notification] = {}
        self._next_id = 1
        self._subscribers: list[asyncio.Queue] = []

    # Subscribers

    def add_subscriber(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        logger.info(f"Stream subscriber added ({len(self._subscribers)} active)")
        return queue

    def remove_subscriber(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
            logger.info(f"Stream subscriber removed ({len(self._subscribers)} active)")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def broadcast(self, event: str, data: Any) -> int:
        for queue in self._subscribers:
            queue.put_nowait((event, data))
        return len(self._subscribers)

    # Notifications

    def list_all(self) -> list[Notification]:
        return sorted(self._notifications.values(), key=lambda n: (n.created_at, n.id), reverse=True)

    def unread_count(self) -> int:
        return sum(1 for n in self._notifications.values() if not n.is_read)

    def create(
        self,
        title: str,
        message: str,
        category: NotificationCategory = NotificationCategory.ORDER_UPDATE,
        related_entity: Optional[RelatedEntity] = None,
    ) -> Notification:
        notification = Notification(
            id=self._next_id,
            title=title,
            message=message,
            category=category,
            related_entity=related_entity,
            is_read=False,
            created_at=datetime.now(timezone.utc),
        )
        self._next_id += 1
        self._notifications[notification.id] = notification
        logger.info(f"Created notification {notification}")

        self.broadcast("notification", pushed_payload(notification))
        self.broadcast("unread_count", {"unreadCount": self.unread_count()})
        return notification

    def mark_read(self, notification_id: int) -> Notification:
        notification = self._notifications.get(notification_id)
        if notification is None:
            raise KeyError(notification_id)
        if not notification.is_read:
            notification = notification.mark_read()
            self._notifications[notification_id] = notification
            self.broadcast("notification_read", {"notificationId": notification_id, "isRead": True})
            self.broadcast("unread_count", {"unreadCount": self.unread_count()})
        return notification

    def mark_all_read(self) -> int:
        now = datetime.now(timezone.utc)
        changed = 0
        for notification_id, notification in self._notifications.items():
            if not notification.is_read:
                self._notifications[notification_id] = notification.mark_read(now)
                changed += 1
        self.broadcast("notifications_all_read", {"allRead": True})
        self.broadcast("unread_count", {"unreadCount": 0})
        return changed


def wire_payload(notification: Notification) -> dict[str, Any]:
    """Notification as returned by the list endpoint."""
    entity = notification.related_entity
    return {
        "id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "notificationType": notification.category.value,
        "relatedEntityType": entity.type if entity else None,
        "relatedEntityId": entity.id if entity else None,
        "isRead": notification.is_read,
        "readAt": notification.read_at.isoformat() if notification.read_at else None,
        "createdAt": notification.created_at.isoformat(),
    }


def pushed_payload(notification: Notification) -> dict[str, Any]:
    """Notification as pushed on the stream."""
    entity = notification.related_entity
    return {
        "id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.category.value,
        "relatedEntityType": entity.type if entity else None,
        "relatedEntityId": entity.id if entity else None,
        "isRead": notification.is_read,
        "createdAt": notification.created_at.isoformat(),
    }


async def stream_frames(
    hub: NotificationHub,
    queue: asyncio.Queue,
    heartbeat_s: float = HEARTBEAT_INTERVAL_S,
) -> AsyncIterator[str]:
    """Encoded frames for one subscriber, starting with the connect handshake."""
    yield format_sse("connected", "SSE connection established")
    yield format_sse("unread_count", {"unreadCount": hub.unread_count()})
    while True:
        try:
            event, data = await asyncio.wait_for(queue.get(), heartbeat_s)
        except asyncio.TimeoutError:
            yield format_sse("heartbeat", "ping")
            continue
        yield format_sse(event, data)


# =============================================================================
# FastAPI Application
# =============================================================================

_hub: Optional[NotificationHub] = None


def get_hub() -> NotificationHub:
    """Get the hub instance."""
    global _hub
    if _hub is None:
        raw = os.environ.get("NOTIFY_SERVER_TOKENS", "dev-token")
        _hub = NotificationHub(tokens={t.strip() for t in raw.split(",") if t.strip()})
    return _hub


def reset_server_state(hub: Optional[NotificationHub] = None) -> None:
    """Reset server state (for testing)."""
    global _hub
    _hub = hub


def require_token(
    authorization: Optional[str] = Header(default=None),
    hub: NotificationHub = Depends(get_hub),
) -> str:
    """Validate the bearer token on every request."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or token not in hub.tokens:
        raise HTTPException(status_code=401, detail="Invalid or missing bearer token")
    return token


class PushRequest(BaseModel):
    """Body of POST /demo/notifications."""
    title: str = Field(..., description="Notification title")
    message: str = Field(..., description="Notification body")
    type: NotificationCategory = Field(default=NotificationCategory.ORDER_UPDATE)
    related_entity_type: Optional[str] = Field(default=None, alias="relatedEntityType")
    related_entity_id: Optional[Union[int, str]] = Field(default=None, alias="relatedEntityId")

    model_config = {"populate_by_name": True}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logging.info("Starting local notification server")
    yield
    logging.info("Shutting down")


app = FastAPI(
    title="Local Notification Server",
    description="In-memory notification service for developing the stream client",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "notification-server"}


@app.get("/api/notifications", tags=["Notifications"])
def list_notifications(
    _: str = Depends(require_token),
    hub: NotificationHub = Depends(get_hub),
):
    """All notifications, most recent first, plus the unread count."""
    return {
        "notifications": [wire_payload(n) for n in hub.list_all()],
        "unreadCount": hub.unread_count(),
    }


@app.put("/api/notifications/read-all", tags=["Notifications"])
async def mark_all_read(
    _: str = Depends(require_token),
    hub: NotificationHub = Depends(get_hub),
):
    """Mark every notification read."""
    changed = hub.mark_all_read()
    return {"updated": changed}


@app.put("/api/notifications/{notification_id}/read", tags=["Notifications"])
async def mark_read(
    notification_id: int,
    _: str = Depends(require_token),
    hub: NotificationHub = Depends(get_hub),
):
    """Mark one notification read."""
    try:
        notification = hub.mark_read(notification_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return wire_payload(notification)


@app.get("/api/notifications/stream", tags=["Stream"])
async def notification_stream(
    request: Request,
    _: str = Depends(require_token),
    hub: NotificationHub = Depends(get_hub),
):
    """Server-sent event stream of notification changes."""
    queue = hub.add_subscriber()

    async def body() -> AsyncIterator[str]:
        try:
            async for frame in stream_frames(hub, queue):
                if await request.is_disconnected():
                    break
                yield frame
        finally:
            hub.remove_subscriber(queue)

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/api/notifications/stream/status", tags=["Stream"])
def stream_status(
    _: str = Depends(require_token),
    hub: NotificationHub = Depends(get_hub),
):
    """Whether any stream subscriber is connected."""
    return {
        "connected": hub.subscriber_count > 0,
        "totalActiveConnections": hub.subscriber_count,
    }


@app.post("/demo/notifications", tags=["Demo"])
async def push_notification(
    request: PushRequest,
    _: str = Depends(require_token),
    hub: NotificationHub = Depends(get_hub),
):
    """Create a notification and push it to every stream subscriber."""
    entity = None
    if request.related_entity_type is not None and request.related_entity_id is not None:
        entity = RelatedEntity(type=request.related_entity_type, id=request.related_entity_id)
    notification = hub.create(request.title, request.message, request.type, entity)
    return wire_payload(notification)
