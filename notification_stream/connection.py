"""
Long-lived push connection to the notification stream.

StreamConnection owns exactly one physical connection at a time. It opens the
stream with the session's bearer token, feeds raw bytes through the frame
parser, hands decoded events to the dispatcher, and reconnects with bounded
exponential backoff when the transport fails.

Lifecycle:
    connection = StreamConnection(settings, credentials)   # create
    connection.connect(on_event)                           # start (idempotent)
    connection.disconnect()                                # stop, no retry
    await connection.aclose()                              # release

State machine:
    IDLE -> CONNECTING -> OPEN
    CONNECTING/OPEN --transport failure--> RECONNECTING(attempt, delay) -> CONNECTING
    RECONNECTING after max_retries failures --> DISCONNECTED
    any --missing credential / 401 / 403--> DISCONNECTED
    any --disconnect()--> IDLE

Design decisions:
- Cancellation is the only intentional stop; it never triggers a retry
- At most one connection task and one retry timer exist at any time; every
  new attempt tears down the previous ones first
- Authorization rejections are terminal, retrying a bad token is pointless
- An idle watchdog treats a silent stream (no heartbeat) as a dropped one
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from notification_stream.dispatcher import EventCallback, EventDispatcher
from notification_stream.events import EventType
from notification_stream.frame_parser import FrameParser
from shared.config import StreamSettings
from shared.errors import (
    MissingCredentialError,
    StreamAuthorizationError,
    StreamTransportError,
)
from shared.models import ConnectionState, ConnectionStatus
from shared.session import SessionCredentials

logger = logging.getLogger("stream_connection")


StateListener = Callable[[ConnectionState], None]
SleepFunc = Callable[[float], Awaitable[None]]

_ACTIVE = (ConnectionStatus.CONNECTING, ConnectionStatus.OPEN, ConnectionStatus.RECONNECTING)


class StreamConnection:
    """
    Connection manager for the notification event stream.

    Example:
        connection = StreamConnection(settings, credentials)
        connection.add_state_listener(lambda s: print(f"state: {s}"))
        connection.connect(lambda event_type, payload: print(event_type, payload))
    """

    def __init__(
        self,
        settings: StreamSettings,
        credentials: SessionCredentials,
        client: Optional[httpx.AsyncClient] = None,
        dispatcher: Optional[EventDispatcher] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Args:
            settings: Stream URL, retry policy and watchdog timeout
            credentials: Source of the bearer token
            client: HTTP client to use (defaults to a new one owned by this object)
            dispatcher: Subscriber registry (defaults to a new one)
            sleep: Coroutine used for backoff waits, replaceable in tests
        """
        self.settings = settings
        self.credentials = credentials
        self.dispatcher = dispatcher or EventDispatcher()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._sleep = sleep

        self._parser = FrameParser()
        self._state = ConnectionState.idle()
        self._attempt = 0
        self._connection_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._state_listeners: list[StateListener] = []

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        """Consecutive automatic retries since the last successful open."""
        return self._attempt

    @property
    def is_connected(self) -> bool:
        return self._state.status == ConnectionStatus.OPEN

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> bool:
        try:
            self._state_listeners.remove(listener)
            return True
        except ValueError:
            return False

    def connect(self, on_event: Optional[EventCallback] = None) -> None:
        """
        Register a subscriber and make sure the stream is connecting or open.

        If an attempt is already in progress, open, or waiting on a retry
        timer, only the subscriber is added. Otherwise the retry counter is
        reset and a fresh attempt starts. Must be called from a running loop.
        """
        if on_event is not None:
            self.dispatcher.subscribe(on_event)

        if self._state.status in _ACTIVE:
            logger.debug(f"connect() while {self._state}; subscriber added only")
            return

        if not self._check_credential():
            return

        self._attempt = 0
        self._start_attempt()

    def disconnect(self) -> None:
        """
        Stop the stream without retrying.

        Cancels the in-flight read and any pending retry timer, drops all
        subscribers, and resets to IDLE. Safe to call repeatedly.
        """
        self._cancel_retry()
        self._cancel_connection()
        self.dispatcher.clear()
        self._parser.reset()
        self._attempt = 0
        if self._state.status != ConnectionStatus.IDLE:
            logger.info("Stream disconnected")
            self._set_state(ConnectionState.idle())

    async def aclose(self) -> None:
        """Disconnect, wait for background tasks to finish, release the client."""
        tasks = [t for t in (self._connection_task, self._retry_task) if t is not None]
        self.disconnect()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # Attempts
    # =========================================================================

    def _check_credential(self) -> bool:
        if self.credentials.get_token():
            return True
        logger.error("No credential available for the notification stream; not connecting")
        self._cancel_retry()
        self._set_state(ConnectionState.disconnected())
        return False

    def _start_attempt(self) -> None:
        self._cancel_retry()
        self._cancel_connection()
        self._set_state(ConnectionState.connecting(self._attempt))
        loop = asyncio.get_running_loop()
        self._connection_task = loop.create_task(self._run(), name="notification-stream")

    async def _run(self) -> None:
        try:
            await self._open_and_read()
        except asyncio.CancelledError:
            logger.debug("Stream read cancelled")
            raise
        except MissingCredentialError as e:
            logger.error(f"Stream not opened: {e}")
            self._set_state(ConnectionState.disconnected())
        except StreamAuthorizationError as e:
            logger.error(f"Stream rejected the credential, not retrying: {e}")
            self._set_state(ConnectionState.disconnected())
        except Exception as e:
            logger.warning(f"Stream connection failed: {e}")
            self._schedule_retry()
        finally:
            if self._connection_task is asyncio.current_task():
                self._connection_task = None

    async def _open_and_read(self) -> None:
        token = self.credentials.get_token()
        if not token:
            raise MissingCredentialError()

        self._parser.reset()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        # No read timeout on the stream itself; the idle watchdog covers it
        timeout = httpx.Timeout(self.settings.request_timeout_s, read=None)

        async with self._client.stream("GET", self.settings.stream_url, headers=headers, timeout=timeout) as response:
            if response.status_code in (401, 403):
                raise StreamAuthorizationError(
                    f"HTTP {response.status_code} opening stream",
                    status_code=response.status_code,
                )
            if not response.is_success:
                raise StreamTransportError(
                    f"HTTP {response.status_code} opening stream",
                    status_code=response.status_code,
                )

            self._attempt = 0
            self._set_state(ConnectionState.open())
            logger.info("Notification stream connection established")
            self.dispatcher.notify(EventType.CONNECTED, "stream connection established")

            await self._read(response)

        raise StreamTransportError("Stream ended")

    async def _read(self, response: httpx.Response) -> None:
        chunks = response.aiter_bytes()
        while True:
            try:
                chunk = await self._next_chunk(chunks)
            except StopAsyncIteration:
                return
            for event in self._parser.feed(chunk):
                logger.debug(f"Received {event}")
                self.dispatcher.dispatch(event)

    async def _next_chunk(self, chunks) -> bytes:
        timeout = self.settings.idle_timeout_s
        if timeout is None:
            return await chunks.__anext__()
        try:
            return await asyncio.wait_for(chunks.__anext__(), timeout)
        except asyncio.TimeoutError:
            raise StreamTransportError(f"No data received for {timeout:g}s")

    # =========================================================================
    # Retry
    # =========================================================================

    def _schedule_retry(self) -> None:
        policy = self.settings.retry
        if self._attempt >= policy.max_retries:
            logger.error(f"Max reconnection attempts reached ({policy.max_retries}); giving up")
            self._set_state(ConnectionState.disconnected())
            return

        self._attempt += 1
        delay_ms = policy.delay_ms(self._attempt)
        self._cancel_retry()
        self._set_state(ConnectionState.reconnecting(self._attempt, delay_ms))
        loop = asyncio.get_running_loop()
        self._retry_task = loop.create_task(self._retry_after(delay_ms), name="notification-stream-retry")

    async def _retry_after(self, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000)
        self._retry_task = None
        logger.info(
            f"Attempting stream reconnection ({self._attempt}/{self.settings.retry.max_retries})..."
        )
        if self._check_credential():
            self._start_attempt()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _cancel_connection(self) -> None:
        task, self._connection_task = self._connection_task, None
        if task is not None and not task.done():
            task.cancel()

    def _cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Connection state: {self._state} -> {state}")
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener raised exception: {e}")
