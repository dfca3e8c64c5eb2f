"""
Notification store for the signed-in user.

The store is the single owner of the notification list, the unread counter,
the list's load status, and the mirrored connection state. REST responses and
pushed stream events both flow through it; nothing else writes that state.

Design decisions:
- Every change produces a new immutable snapshot, pushed to observers
- The REST list and the unread_count channel are authoritative snapshots;
  individual events adjust the counter only when they actually flip a held
  entry from unread to read (or insert a new unread one)
- Pushed notifications are deduplicated by id, so redelivery after a
  reconnect is harmless (delivery is at-least-once)
- A failed load keeps whatever was already held
- Mark-read is optimistic; on failure the store reloads from the server to
  reconcile, then re-raises to the caller

Interleaving:
All reducers run on the event loop without awaiting, so each one is atomic.
Async operations (load, mark-read) can interleave with pushed events across
their await points, which is why every reducer is idempotent and a load
result is discarded if a newer load or a logout happened meanwhile. A
mutation that fails after a logout does not reload.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Optional

from pydantic import ValidationError

from notification_stream.connection import StreamConnection
from notification_stream.events import (
    AllReadPayload,
    EventType,
    NotificationPushed,
    NotificationReadPayload,
    Payload,
    UnreadCountPayload,
)
from shared.desktop import DesktopNotifier, NullNotifier
from shared.errors import NotificationPipelineError
from shared.models import (
    ConnectionState,
    LoadStatus,
    Notification,
    NotificationId,
    NotificationStoreState,
    normalize_id,
)
from shared.rest_client import NotificationApiClient

logger = logging.getLogger("notification_store")


StateObserver = Callable[[NotificationStoreState], None]


def _unique_by_id(notifications: list[Notification]) -> tuple[Notification, ...]:
    seen = set()
    result = []
    for notification in notifications:
        if notification.id in seen:
            continue
        seen.add(notification.id)
        result.append(notification)
    return tuple(result)


class NotificationStore:
    """
    Stateful reducer over REST responses and stream events.

    Example:
        store = NotificationStore(api, connection, notifier=LoggingNotifier())
        store.subscribe(lambda state: print(state.unread_count))

        await store.start()          # load + connect
        await store.mark_as_read(5)
        store.logout()               # disconnect + clear
    """

    def __init__(
        self,
        api: NotificationApiClient,
        connection: StreamConnection,
        notifier: Optional[DesktopNotifier] = None,
        reconcile_on_failure: bool = True,
    ):
        """
        Args:
            api: REST collaborator for list / mark-read / mark-all-read
            connection: Stream connection to subscribe to
            notifier: Desktop notification display (defaults to none)
            reconcile_on_failure: Reload from the server after a failed mutation
        """
        self.api = api
        self.connection = connection
        self.notifier = notifier or NullNotifier()
        self.reconcile_on_failure = reconcile_on_failure

        self._state = NotificationStoreState()
        self._observers: list[StateObserver] = []
        self._tasks: set[asyncio.Task] = set()
        self._load_generation = 0
        self._session = 0
        self._permission_requested = False
        self._desktop_enabled = False
        self._started = False

        self._handlers: dict[EventType, Callable[[Payload], None]] = {
            EventType.CONNECTED: self._on_connected,
            EventType.UNREAD_COUNT: self._on_unread_count,
            EventType.NOTIFICATION: self._on_notification,
            EventType.NOTIFICATION_READ: self._on_notification_read,
            EventType.ALL_READ: self._on_all_read,
            EventType.HEARTBEAT: self._on_heartbeat,
        }

        self.connection.add_state_listener(self._on_connection_state)

    # =========================================================================
    # State and Observers
    # =========================================================================

    @property
    def state(self) -> NotificationStoreState:
        return self._state

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return self._state.notifications

    @property
    def unread_count(self) -> int:
        return self._state.unread_count

    def subscribe(self, observer: StateObserver) -> None:
        """Call `observer` with a fresh snapshot after every change."""
        self._observers.append(observer)

    def unsubscribe(self, observer: StateObserver) -> bool:
        try:
            self._observers.remove(observer)
            return True
        except ValueError:
            return False

    def _update(self, **changes: Any) -> None:
        if "unread_count" in changes:
            changes["unread_count"] = max(0, changes["unread_count"])
        self._state = self._state.model_copy(update=changes)
        for observer in list(self._observers):
            try:
                observer(self._state)
            except Exception as e:
                logger.error(f"Store observer raised exception: {e}")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Bring the store up for an authenticated session.

        Requests desktop-notification permission (once per session), loads
        the list, and connects the stream.
        """
        if self._started:
            logger.warning("NotificationStore already started")
            return
        self._started = True
        session = self._session

        self._request_permission()
        await self.load_notifications()
        if session != self._session:
            logger.info("Logged out while starting, not connecting")
            return
        self.connection.connect(self.handle_event)
        logger.info("NotificationStore started")

    def logout(self) -> None:
        """Disconnect the stream and clear all state."""
        self.connection.disconnect()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._load_generation += 1
        self._session += 1
        self._permission_requested = False
        self._desktop_enabled = False
        self._started = False
        self._update(
            notifications=(),
            unread_count=0,
            load_status=LoadStatus.UNINITIALIZED,
            connection_state=self.connection.state,
            error=None,
        )
        logger.info("NotificationStore cleared")

    async def wait_for_pending(self) -> None:
        """Wait for background work (reloads triggered by events) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _request_permission(self) -> None:
        if self._permission_requested:
            return
        self._permission_requested = True
        try:
            self._desktop_enabled = bool(self.notifier.request_permission())
        except Exception as e:
            logger.warning(f"Desktop notification permission request failed: {e}")
            self._desktop_enabled = False
        if not self._desktop_enabled:
            logger.info("Desktop notifications disabled for this session")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # REST-backed Operations
    # =========================================================================

    async def load_notifications(self) -> bool:
        """
        Replace the list and unread count with the server's.

        On failure the held list is kept and the error is recorded in the
        state. Never raises for API failures.

        Returns:
            True if the load succeeded and was applied
        """
        self._load_generation += 1
        generation = self._load_generation
        session = self._session
        self._update(load_status=LoadStatus.LOADING, error=None)

        try:
            page = await self.api.list_notifications()
        except NotificationPipelineError as e:
            logger.error(f"Failed to load notifications: {e}")
            if generation == self._load_generation and session == self._session:
                self._update(load_status=LoadStatus.ERROR, error=str(e))
            return False

        if generation != self._load_generation or session != self._session:
            logger.debug("Discarding stale notification load")
            return False

        self._update(
            notifications=_unique_by_id(page.notifications),
            unread_count=page.unread_count,
            load_status=LoadStatus.READY,
            error=None,
        )
        return True

    async def mark_as_read(self, notification_id: NotificationId) -> None:
        """
        Mark one notification read, locally first, then on the server.

        Raises:
            NotificationPipelineError: if the server call fails
        """
        session = self._session
        self._apply_read(notification_id)
        try:
            await self.api.mark_as_read(notification_id)
        except NotificationPipelineError as e:
            logger.error(f"Failed to mark notification {notification_id} as read: {e}")
            await self._reconcile(session)
            raise

    async def mark_all_as_read(self) -> None:
        """
        Mark every notification read, locally first, then on the server.

        Raises:
            NotificationPipelineError: if the server call fails
        """
        session = self._session
        self._apply_all_read()
        try:
            await self.api.mark_all_as_read()
        except NotificationPipelineError as e:
            logger.error(f"Failed to mark all notifications as read: {e}")
            await self._reconcile(session)
            raise

    async def _reconcile(self, session: int) -> None:
        # A logout since the mutation started leaves the cleared state alone
        if session != self._session:
            logger.debug("Session ended during update, skipping reconcile")
            return
        if self.reconcile_on_failure:
            logger.info("Reloading notifications to reconcile after a failed update")
            await self.load_notifications()

    # =========================================================================
    # Reducers
    # =========================================================================

    def _apply_read(self, notification_id: NotificationId) -> bool:
        """Flip one held, unread entry to read. Returns True if it changed."""
        notification_id = normalize_id(notification_id)
        held = self._state.notifications
        for index, notification in enumerate(held):
            if notification.id != notification_id:
                continue
            if notification.is_read:
                return False
            updated = held[:index] + (notification.mark_read(),) + held[index + 1:]
            self._update(notifications=updated, unread_count=self._state.unread_count - 1)
            return True
        return False

    def _apply_all_read(self) -> None:
        now = datetime.now(timezone.utc)
        self._update(
            notifications=tuple(n.mark_read(now) for n in self._state.notifications),
            unread_count=0,
        )

    # =========================================================================
    # Stream Event Handlers
    # =========================================================================

    def handle_event(self, event_type: EventType, payload: Payload) -> None:
        """Apply one decoded stream event. Registered with the dispatcher."""
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.warning(f"No handler for {event_type}")
            return
        handler(payload)

    def _on_connection_state(self, state: ConnectionState) -> None:
        self._update(connection_state=state)

    def _on_connected(self, payload: Payload) -> None:
        self._update(connection_state=ConnectionState.open())
        # Catch up on anything missed while disconnected
        self._spawn(self.load_notifications())

    def _on_unread_count(self, payload: Payload) -> None:
        if not isinstance(payload, UnreadCountPayload):
            logger.warning(f"Dropping malformed unread_count event: {payload!r}")
            return
        self._update(unread_count=payload.unread_count)

    def _on_notification(self, payload: Payload) -> None:
        if not isinstance(payload, NotificationPushed) or payload.id is None:
            logger.error(f"Invalid notification data received, dropping: {payload!r}")
            return

        if self._state.get(payload.id) is not None:
            logger.debug(f"Notification {payload.id} already held, skipping")
            return

        try:
            notification = payload.to_notification()
        except (ValidationError, ValueError) as e:
            logger.error(f"Could not build notification {payload.id}: {e}")
            return

        self._update(
            notifications=(notification,) + self._state.notifications,
            unread_count=self._state.unread_count + (0 if notification.is_read else 1),
        )
        logger.info(f"New notification: {notification}")
        self._show_desktop(notification)

    def _on_notification_read(self, payload: Payload) -> None:
        if not isinstance(payload, NotificationReadPayload):
            logger.warning(f"Dropping malformed notification_read event: {payload!r}")
            return
        if not payload.is_read:
            logger.debug(f"Ignoring unread flip for notification {payload.notification_id}")
            return
        self._apply_read(payload.notification_id)

    def _on_all_read(self, payload: Payload) -> None:
        if isinstance(payload, AllReadPayload) and not payload.all_read:
            logger.debug("Ignoring notifications_all_read with allRead=false")
            return
        self._apply_all_read()

    def _on_heartbeat(self, payload: Payload) -> None:
        logger.debug("Heartbeat")

    def _show_desktop(self, notification: Notification) -> None:
        if not self._desktop_enabled:
            return
        try:
            result = self.notifier.show(notification.title, notification.message)
        except Exception as e:
            logger.warning(f"Failed to show desktop notification: {e}")
            return
        if not result.success:
            logger.warning(f"Desktop notification not shown: {result.error}")
