"""
Duplex channel to a sandbox container.

A SandboxWebSocket owns one physical websocket to the container and
multiplexes three kinds of traffic over it:

    Correlated requests:
        {"messageId": "<id>", "payload": {"eventType": "...", ...}}
        The reply carries the same messageId.

    Unsolicited events (e.g. ContainerServerReady):
        {"payload": {"eventType": "ContainerServerReady"}} or a bare
        {"eventType": "ContainerServerReady"}; delivered to one-shot waiters.

    Streaming task events:
        {"payload": {"eventType": "StreamLongRunningTaskEvent",
                     "uniqueTaskId": "...", "eventDetails": {"type": "io" | "close", ...}}}
        Routed to the handler registered for uniqueTaskId.

Messages sent while the socket is not open are queued and flushed in order on
(re)connection. An unexpected close triggers a single reconnect attempt.
"""

import asyncio
import json
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable
from urllib.parse import quote

import websockets
from pydantic import ValidationError as PydanticValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from fermion_sandbox.channel.models import (
    STREAM_EVENT_TYPE,
    CloseEventDetails,
    HealthPingRequest,
    IoEventDetails,
    OutboundMessage,
    StreamLongRunningTaskEvent,
    WireModel,
)
from fermion_sandbox.errors import (
    ChannelClosedError,
    ConnectionFailedError,
    RequestTimeoutError,
    SupersededError,
)
from fermion_sandbox.logger import get_logger

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
HEALTH_PING_INITIAL_DELAY = 5.0
HEALTH_PING_INTERVAL = 30.0
RECONNECT_DELAY = 2.0

# Stream events that arrive before their task handler is registered
MAX_UNCLAIMED_STREAM_EVENTS = 1000

_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class StreamingTaskHandler:
    """
    Callbacks for one streaming task.

    ``on_stdout``/``on_stderr`` fire for each incremental chunk, ``on_close``
    fires exactly once with the terminal event, after which the handler is
    removed. ``on_error`` fires instead of ``on_close`` when the channel is
    torn down first.
    """

    on_stdout: Callable[[str], None] | None = None
    on_stderr: Callable[[str], None] | None = None
    on_close: Callable[[CloseEventDetails], None] | None = None
    on_error: Callable[[Exception], None] | None = None


class SandboxWebSocket:
    """
    Websocket client for a single sandbox container.

    Args:
        url: ``wss://`` URL of the container server.
        token: Container access token, sent as the ``token`` query parameter.
        request_timeout: Default timeout for ``send`` and ``wait_for_event``.
        health_ping_initial_delay: Delay before the first HealthPing.
        health_ping_interval: Delay between subsequent HealthPings.
        reconnect_delay: Backoff before the single reconnect attempt.
        connector: Coroutine function opening the socket; defaults to
            ``websockets.connect``.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        health_ping_initial_delay: float = HEALTH_PING_INITIAL_DELAY,
        health_ping_interval: float = HEALTH_PING_INTERVAL,
        reconnect_delay: float = RECONNECT_DELAY,
        connector: Callable[..., Any] | None = None,
    ):
        self.url = url
        self.token = token
        self.request_timeout = request_timeout
        self.health_ping_initial_delay = health_ping_initial_delay
        self.health_ping_interval = health_ping_interval
        self.reconnect_delay = reconnect_delay
        self._connector = connector or websockets.connect

        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._should_auto_reconnect = True
        self._connect_lock = asyncio.Lock()

        self._pending: dict[str, asyncio.Future] = {}
        self._waiters: dict[str, asyncio.Future] = {}
        self._streaming_handlers: dict[str, StreamingTaskHandler] = {}
        self._unclaimed_stream_events: deque[StreamLongRunningTaskEvent] = deque(
            maxlen=MAX_UNCLAIMED_STREAM_EVENTS
        )
        self._outbox: deque[str] = deque()

        self._reader_task: asyncio.Task | None = None
        self._ping_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def connect(self) -> None:
        """
        Open the websocket. No-op if already connected.

        Flushes queued messages in order and starts the health ping cycle.

        Raises:
            ConnectionFailedError: If the socket could not be opened.
        """
        async with self._connect_lock:
            if self._state is ConnectionState.CONNECTED:
                return

            self._should_auto_reconnect = True
            self._state = ConnectionState.CONNECTING
            try:
                ws = await self._connector(self._connection_target())
            except _CONNECT_ERRORS as e:
                self._state = ConnectionState.DISCONNECTED
                logger.error(f"Failed to connect to {self.url}: {e}")
                raise ConnectionFailedError(f"Failed to connect to WebSocket: {e}") from e

            self._ws = ws
            self._state = ConnectionState.CONNECTED
            logger.info(f"Connected to {self.url}")

            self._reader_task = asyncio.create_task(self._read_loop(ws))
            await self._flush_outbox()
            self._start_health_ping()

    def disable_auto_reconnect(self) -> None:
        self._should_auto_reconnect = False

    async def disconnect(self) -> None:
        """
        Close the websocket for good.

        Fails every pending request, event waiter and streaming task handler
        with ChannelClosedError and drops queued messages.
        """
        self._should_auto_reconnect = False
        ws = self._ws
        self._ws = None
        self._state = ConnectionState.DISCONNECTED

        await self._cancel_task(self._reconnect_task)
        await self._cancel_task(self._ping_task)
        await self._cancel_task(self._reader_task)
        self._reconnect_task = self._ping_task = self._reader_task = None

        self._fail_outstanding("WebSocket closed")
        self._outbox.clear()

        if ws is not None:
            try:
                await ws.close()
            except _CONNECT_ERRORS as e:
                logger.debug(f"Error while closing websocket: {e}")
        logger.info(f"Disconnected from {self.url}")

    # ─── Requests, waiters, streaming handlers ───────────────────────

    async def send(
        self, payload: WireModel | dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        """
        Send a request and wait for the reply with the same message id.

        Args:
            payload: Request payload (model or raw dict with ``eventType``).
            timeout: Seconds to wait for the reply; defaults to ``request_timeout``.

        Returns:
            The raw reply payload.

        Raises:
            RequestTimeoutError: If no reply arrives in time.
            ChannelClosedError: If the channel is torn down first, or was
                already closed with ``disconnect``.
        """
        if self._is_closed():
            raise ChannelClosedError("WebSocket closed")

        timeout = self.request_timeout if timeout is None else timeout
        data = payload.to_wire() if isinstance(payload, WireModel) else dict(payload)
        event_type = data.get("eventType")

        message_id = uuid.uuid4().hex
        raw = OutboundMessage(message_id=message_id, payload=data).model_dump_json(
            by_alias=True
        )
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future

        try:
            await self._send_raw(raw)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"Request timeout for {event_type} after {timeout}s"
            ) from None
        finally:
            if self._pending.get(message_id) is future:
                del self._pending[message_id]
            # Never deliver a request whose caller has stopped waiting
            try:
                self._outbox.remove(raw)
            except ValueError:
                pass

    async def wait_for_event(
        self, event_type: str, timeout: float | None = None
    ) -> dict[str, Any]:
        """
        Wait for the next unsolicited message with ``eventType == event_type``.

        A newer wait for the same event type fails this one with SupersededError.
        """
        timeout = self.request_timeout if timeout is None else timeout
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        previous = self._waiters.get(event_type)
        if previous is not None and not previous.done():
            previous.set_exception(SupersededError(f"Replaced by new wait for {event_type}"))
        self._waiters[event_type] = future

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(f"Timeout waiting for event: {event_type}") from None
        finally:
            if self._waiters.get(event_type) is future:
                del self._waiters[event_type]

    def add_streaming_task_handler(self, task_id: str, handler: StreamingTaskHandler) -> None:
        """
        Register callbacks for a streaming task.

        Events for ``task_id`` that arrived before registration are replayed
        immediately, in arrival order. If the channel is not connected the
        task's connection is already gone and ``on_error`` fires at once.
        """
        if not self.is_connected():
            self._invoke_callback(handler.on_error, ChannelClosedError("WebSocket closed"))
            return
        self._streaming_handlers[task_id] = handler

        early = [e for e in self._unclaimed_stream_events if e.unique_task_id == task_id]
        if not early:
            return
        self._unclaimed_stream_events = deque(
            (e for e in self._unclaimed_stream_events if e.unique_task_id != task_id),
            maxlen=MAX_UNCLAIMED_STREAM_EVENTS,
        )
        for event in early:
            if self._streaming_handlers.get(task_id) is not handler:
                break
            self._dispatch_stream_event(handler, event)

    def remove_streaming_task_handler(self, task_id: str) -> None:
        """Stop delivering events for ``task_id`` to its handler."""
        self._streaming_handlers.pop(task_id, None)

    # ─── Inbound routing ─────────────────────────────────────────────

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    self._on_message(raw)
                except Exception:
                    logger.exception("Dropping message that could not be routed")
        except ConnectionClosed as e:
            logger.warning(f"Connection to {self.url} closed: {e}")
        except OSError as e:
            logger.warning(f"Connection to {self.url} failed: {e}")
        await self._on_close(ws)

    def _on_message(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropping non-JSON message from container")
            return
        if not isinstance(message, dict):
            logger.warning("Dropping message that is not a JSON object")
            return

        payload = message.get("payload")
        if not isinstance(payload, dict):
            payload = message
        message_id = message.get("messageId")
        if not isinstance(message_id, str):
            message_id = None
        event_type = payload.get("eventType")
        if not isinstance(event_type, str):
            event_type = None
        if message_id is None and event_type is None:
            logger.warning("Dropping message without a usable messageId or eventType")
            return

        if event_type == STREAM_EVENT_TYPE and payload.get("uniqueTaskId"):
            self._route_stream_event(payload)
            return

        future = self._pending.pop(message_id, None) if message_id else None
        if future is not None:
            if not future.done():
                future.set_result(payload)
            return

        waiter = self._waiters.pop(event_type, None) if event_type else None
        if waiter is not None:
            if not waiter.done():
                waiter.set_result(payload)
            return

        logger.debug(f"No handler for message (eventType={event_type}, messageId={message_id})")

    def _route_stream_event(self, payload: dict[str, Any]) -> None:
        try:
            event = StreamLongRunningTaskEvent.model_validate(payload)
        except PydanticValidationError:
            logger.warning(f"Malformed stream event for task {payload.get('uniqueTaskId')}")
            return

        handler = self._streaming_handlers.get(event.unique_task_id)
        if handler is None:
            self._unclaimed_stream_events.append(event)
            return
        self._dispatch_stream_event(handler, event)

    def _dispatch_stream_event(
        self, handler: StreamingTaskHandler, event: StreamLongRunningTaskEvent
    ) -> None:
        details = event.event_details
        if isinstance(details, IoEventDetails):
            if details.stdout is not None:
                self._invoke_callback(handler.on_stdout, details.stdout)
            if details.stderr is not None:
                self._invoke_callback(handler.on_stderr, details.stderr)
        elif isinstance(details, CloseEventDetails):
            self._streaming_handlers.pop(event.unique_task_id, None)
            self._invoke_callback(handler.on_close, details)

    @staticmethod
    def _invoke_callback(callback, value) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Streaming task callback raised")

    # ─── Outbound ────────────────────────────────────────────────────

    async def _send_raw(self, raw: str) -> None:
        if self._state is not ConnectionState.CONNECTED or self._ws is None or self._outbox:
            self._outbox.append(raw)
            return
        await self._deliver(raw)

    async def _flush_outbox(self) -> None:
        while self._outbox and self._state is ConnectionState.CONNECTED:
            raw = self._outbox.popleft()
            if not await self._deliver(raw, requeue_front=True):
                break

    async def _deliver(self, raw: str, requeue_front: bool = False) -> bool:
        ws = self._ws
        try:
            await ws.send(raw)
            return True
        except (ConnectionClosed, OSError) as e:
            logger.error(f"Error sending message: {e}")
            # Once the close has been handled the outstanding requests are failed
            if ws is self._ws:
                if requeue_front:
                    self._outbox.appendleft(raw)
                else:
                    self._outbox.append(raw)
            return False

    # ─── Health ping ─────────────────────────────────────────────────

    def _start_health_ping(self) -> None:
        if self._ping_task is not None:
            self._ping_task.cancel()
        self._ping_task = asyncio.create_task(self._health_ping_loop())

    async def _health_ping_loop(self) -> None:
        await asyncio.sleep(self.health_ping_initial_delay)
        while self._state is ConnectionState.CONNECTED:
            try:
                await self.send(HealthPingRequest())
            except (RequestTimeoutError, ChannelClosedError) as e:
                logger.warning(f"Health ping failed: {e}")
            await asyncio.sleep(self.health_ping_interval)

    # ─── Close handling ──────────────────────────────────────────────

    async def _on_close(self, ws) -> None:
        if ws is not self._ws:
            return

        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None

        self._fail_outstanding("WebSocket closed")
        self._outbox.clear()

        if self._should_auto_reconnect:
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        if not self._should_auto_reconnect:
            return
        logger.info(f"Reconnecting to {self.url}")
        try:
            await self.connect()
        except ConnectionFailedError as e:
            logger.error(f"Reconnect failed: {e}")

    def _fail_outstanding(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ChannelClosedError(reason))
        self._pending.clear()

        for future in self._waiters.values():
            if not future.done():
                future.set_exception(ChannelClosedError(reason))
        self._waiters.clear()

        handlers = list(self._streaming_handlers.values())
        self._streaming_handlers.clear()
        self._unclaimed_stream_events.clear()
        for handler in handlers:
            self._invoke_callback(handler.on_error, ChannelClosedError(reason))

    # ─── Helpers ─────────────────────────────────────────────────────

    def _connection_target(self) -> str:
        return f"{self.url}?token={quote(self.token, safe='')}"

    def _is_closed(self) -> bool:
        return self._state is ConnectionState.DISCONNECTED and not self._should_auto_reconnect

    @staticmethod
    async def _cancel_task(task: asyncio.Task | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
