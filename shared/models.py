"""
Domain models for the notification delivery pipeline.

These models describe the notifications a signed-in user receives from the
ordering backend (new orders, status updates, payments, delivery assignment)
and the client-side state that holds them.

Design decisions:
- Using Pydantic for validation and for reading the server's camelCase JSON
- Notifications are frozen; a read flip produces a copy, never an in-place edit
- Categories are a closed enum; unknown server labels collapse to OTHER
- Store state is an immutable snapshot so observers can't write back into it
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================

class NotificationCategory(str, Enum):
    """
    What a notification is about.

    Mirrors the notification types the ordering backend emits. OTHER absorbs
    any label the client doesn't know yet so a new server-side type never
    breaks the list.
    """
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_UPDATE = "ORDER_UPDATE"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    PAYMENT = "PAYMENT"
    DELIVERY_ASSIGNED = "DELIVERY_ASSIGNED"
    OTHER = "OTHER"

    @classmethod
    def _missing_(cls, value: object) -> "NotificationCategory":
        return cls.OTHER

    @property
    def label(self) -> str:
        """Short human-readable label for display."""
        return CATEGORY_LABELS[self]


CATEGORY_LABELS = {
    NotificationCategory.ORDER_CREATED: "New Order",
    NotificationCategory.ORDER_UPDATE: "Order Update",
    NotificationCategory.ORDER_CANCELLED: "Order Cancelled",
    NotificationCategory.PAYMENT: "Payment Update",
    NotificationCategory.DELIVERY_ASSIGNED: "Delivery Assigned",
    NotificationCategory.OTHER: "Notification",
}


class ConnectionStatus(str, Enum):
    """Lifecycle states of the push connection."""
    IDLE = "IDLE"                     # Never connected, or intentionally disconnected
    CONNECTING = "CONNECTING"         # Open request in flight
    OPEN = "OPEN"                     # Stream established and being read
    RECONNECTING = "RECONNECTING"     # Waiting on the backoff timer
    DISCONNECTED = "DISCONNECTED"     # Gave up; needs an explicit connect()


class LoadStatus(str, Enum):
    """Status of the REST-backed notification list."""
    UNINITIALIZED = "UNINITIALIZED"
    LOADING = "LOADING"
    READY = "READY"
    ERROR = "ERROR"


def normalize_id(value: Union[int, str]) -> Union[int, str]:
    """Numeric ids become ints so 5 and "5" name the same notification."""
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


NotificationId = Annotated[Union[int, str], AfterValidator(normalize_id)]


# =============================================================================
# Notifications
# =============================================================================

class WireModel(BaseModel):
    """Base for models read from the server's camelCase JSON."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class RelatedEntity(WireModel):
    """The order/payment/delivery a notification points at."""
    type: str
    id: NotificationId


class Notification(WireModel):
    """
    A single notification shown to the user.

    Created server-side and observed by the client either through the
    initial REST load or through a pushed stream event. Only ever mutated
    locally by marking it read.
    """
    id: NotificationId = Field(..., description="Stable unique identifier")
    title: str = ""
    message: str = ""
    category: NotificationCategory = Field(
        default=NotificationCategory.OTHER,
        validation_alias="notificationType",
    )
    related_entity: Optional[RelatedEntity] = None
    is_read: bool = False
    created_at: datetime
    read_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _collect_wire_fields(cls, data: Any) -> Any:
        """Fold the server's flat relatedEntity*/type fields into this shape."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "notificationType" not in data:
            for key in ("category", "type"):
                if key in data:
                    data["notificationType"] = data.pop(key)
                    break
        if data.get("isRead") is None and data.get("is_read") is None:
            data["isRead"] = False
        entity_type = data.pop("relatedEntityType", None)
        entity_id = data.pop("relatedEntityId", None)
        if (
            "relatedEntity" not in data
            and "related_entity" not in data
            and entity_type is not None
            and entity_id is not None
        ):
            data["relatedEntity"] = {"type": entity_type, "id": entity_id}
        return data

    def mark_read(self, at: Optional[datetime] = None) -> "Notification":
        """Return a read copy of this notification."""
        if self.is_read:
            return self
        return self.model_copy(update={
            "is_read": True,
            "read_at": at or datetime.now(timezone.utc),
        })

    def __str__(self) -> str:
        flag = " " if self.is_read else "*"
        return f"[{flag}] #{self.id} {self.category.label}: {self.title}"


class NotificationPage(WireModel):
    """Response body of the notification list endpoint."""
    notifications: list[Notification] = Field(default_factory=list)
    unread_count: int = 0

    @field_validator("notifications", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []

    @field_validator("unread_count", mode="before")
    @classmethod
    def _ensure_count(cls, value: Any) -> Any:
        return value or 0


# =============================================================================
# Client State
# =============================================================================

class ConnectionState(BaseModel):
    """
    Where the push connection currently is.

    RECONNECTING carries the retry attempt number and the backoff delay
    before that attempt.
    """
    model_config = ConfigDict(frozen=True)

    status: ConnectionStatus = ConnectionStatus.IDLE
    attempt: int = 0
    delay_ms: int = 0

    @classmethod
    def idle(cls) -> "ConnectionState":
        return cls(status=ConnectionStatus.IDLE)

    @classmethod
    def connecting(cls, attempt: int = 0) -> "ConnectionState":
        return cls(status=ConnectionStatus.CONNECTING, attempt=attempt)

    @classmethod
    def open(cls) -> "ConnectionState":
        return cls(status=ConnectionStatus.OPEN)

    @classmethod
    def reconnecting(cls, attempt: int, delay_ms: int) -> "ConnectionState":
        return cls(status=ConnectionStatus.RECONNECTING, attempt=attempt, delay_ms=delay_ms)

    @classmethod
    def disconnected(cls) -> "ConnectionState":
        return cls(status=ConnectionStatus.DISCONNECTED)

    def __str__(self) -> str:
        if self.status == ConnectionStatus.RECONNECTING:
            return f"RECONNECTING(attempt={self.attempt}, delay={self.delay_ms}ms)"
        return self.status.value


class NotificationStoreState(BaseModel):
    """
    Snapshot of everything the notification store holds.

    Handed to store observers after every change. Notifications are ordered
    most-recent-first and unique by id; unread_count is never negative.
    """
    model_config = ConfigDict(frozen=True)

    notifications: tuple[Notification, ...] = ()
    unread_count: int = Field(default=0, ge=0)
    load_status: LoadStatus = LoadStatus.UNINITIALIZED
    connection_state: ConnectionState = Field(default_factory=ConnectionState.idle)
    error: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.connection_state.status == ConnectionStatus.OPEN

    @property
    def is_loading(self) -> bool:
        return self.load_status == LoadStatus.LOADING

    def get(self, notification_id: NotificationId) -> Optional[Notification]:
        """Find a held notification by id."""
        notification_id = normalize_id(notification_id)
        for notification in self.notifications:
            if notification.id == notification_id:
                return notification
        return None

    def unread(self) -> list[Notification]:
        """Held notifications that are still unread."""
        return [n for n in self.notifications if not n.is_read]
