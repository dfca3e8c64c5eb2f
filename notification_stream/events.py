"""
Event definitions for the notification stream.

The server labels each pushed frame with a free-form event name. This module
maps those labels onto a closed set of canonical types and resolves each
frame's payload to a typed value, once, at decode time.

Design decisions:
- Canonical types are a closed enum; unknown or absent labels are treated as
  the liveness/"connected" class
- Payload shape is decided by canonical type, so consumers never re-sniff
  strings to guess whether something is JSON
- A payload that fails validation stays as its raw value (string or dict);
  consumers check the type and drop what they can't use

Wire labels (as sent by the ordering backend):
- connected / message      -> CONNECTED
- unread_count             -> UNREAD_COUNT
- notification             -> NOTIFICATION
- notification_read        -> NOTIFICATION_READ
- notifications_all_read   -> ALL_READ
- heartbeat                -> HEARTBEAT
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from shared.models import Notification, NotificationCategory, NotificationId

logger = logging.getLogger("stream_events")


# =============================================================================
# Canonical Event Types
# =============================================================================

class EventType(str, Enum):
    """Canonical categories of stream events."""
    CONNECTED = "connected"
    UNREAD_COUNT = "unread_count"
    NOTIFICATION = "notification"
    NOTIFICATION_READ = "notification_read"
    ALL_READ = "notifications_all_read"
    HEARTBEAT = "heartbeat"


_LABEL_MAP = {
    "connected": EventType.CONNECTED,
    "message": EventType.CONNECTED,
    "unread_count": EventType.UNREAD_COUNT,
    "notification": EventType.NOTIFICATION,
    "notification_read": EventType.NOTIFICATION_READ,
    "notifications_all_read": EventType.ALL_READ,
    "heartbeat": EventType.HEARTBEAT,
}


def canonicalize(label: Optional[str]) -> EventType:
    """Map a raw `event:` label onto its canonical type."""
    if not label:
        return EventType.CONNECTED
    return _LABEL_MAP.get(label.strip(), EventType.CONNECTED)


# =============================================================================
# Payloads
# =============================================================================

class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class UnreadCountPayload(_Payload):
    """Server-authoritative unread count."""
    unread_count: int


class NotificationPushed(_Payload):
    """
    A notification pushed by the server.

    The id is optional here on purpose: a frame without one is still decoded
    so the store can log and drop it.
    """
    id: Optional[NotificationId] = None
    title: str = ""
    message: str = ""
    type: NotificationCategory = NotificationCategory.OTHER
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[NotificationId] = None
    is_read: Optional[bool] = False
    created_at: Optional[str] = None

    def to_notification(self) -> Notification:
        """Convert into a list entry. Requires an id."""
        if self.id is None:
            raise ValueError("Pushed notification has no id")
        return Notification.model_validate({
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "notificationType": self.type,
            "relatedEntityType": self.related_entity_type,
            "relatedEntityId": self.related_entity_id,
            "isRead": bool(self.is_read),
            "createdAt": self.created_at or datetime.now(timezone.utc),
        })


class NotificationReadPayload(_Payload):
    """One notification was read (possibly on another device)."""
    notification_id: NotificationId
    is_read: bool = True


class AllReadPayload(_Payload):
    """Every notification was marked read."""
    all_read: bool = True


_PAYLOAD_MODELS: dict[EventType, type[_Payload]] = {
    EventType.UNREAD_COUNT: UnreadCountPayload,
    EventType.NOTIFICATION: NotificationPushed,
    EventType.NOTIFICATION_READ: NotificationReadPayload,
    EventType.ALL_READ: AllReadPayload,
}

Payload = Union[
    UnreadCountPayload,
    NotificationPushed,
    NotificationReadPayload,
    AllReadPayload,
    dict,
    list,
    str,
]


# =============================================================================
# Frames and Decoded Events
# =============================================================================

@dataclass(frozen=True)
class Frame:
    """One raw frame: an optional event label plus its accumulated data text."""
    event: Optional[str]
    data: str


@dataclass(frozen=True)
class StreamEvent:
    """
    A decoded stream event.

    Attributes:
        type: Canonical event type
        payload: Typed payload model for the type, or the raw value when the
                 data wasn't structured or failed validation
        label: The raw `event:` label as received
    """
    type: EventType
    payload: Payload
    label: Optional[str] = None

    def __str__(self) -> str:
        return f"StreamEvent({self.type.value}, label={self.label!r})"


def parse_data(data: str) -> Any:
    """
    Parse frame data as JSON when it looks structured.

    Anything that doesn't start with `{` or `[`, or fails to parse, is
    returned as the original string.
    """
    if not data or data[0] not in "{[":
        return data
    try:
        return json.loads(data)
    except ValueError:
        logger.warning(f"Malformed JSON in stream frame, keeping raw text: {data[:80]!r}")
        return data


def decode_frame(frame: Frame) -> StreamEvent:
    """Decode a raw frame into a canonical, typed event. Never raises."""
    event_type = canonicalize(frame.event)
    value = parse_data(frame.data)

    model = _PAYLOAD_MODELS.get(event_type)
    payload: Payload = value
    if model is not None and isinstance(value, dict):
        try:
            payload = model.model_validate(value)
        except ValidationError as e:
            logger.warning(f"Invalid {event_type.value} payload, keeping raw value: {e}")

    return StreamEvent(type=event_type, payload=payload, label=frame.event)
