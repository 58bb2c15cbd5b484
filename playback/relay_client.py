"""WebSocket client connecting a device to the realtime relay.

Provides the send capability injected into the synchronizer and stream
sender, and a type-keyed subscription table for inbound messages.
"""

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from typing import Any, Callable, Optional

import websockets

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]


class ConnectionState:
    """Connection state constants."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class RelayClient:
    """Device-side relay connection with message subscriptions."""

    def __init__(
        self,
        url: str,
        reconnect_delay: float = 2.0,
        on_state_change: Optional[Callable[[str], None]] = None,
    ):
        """Initialize relay client.

        Args:
            url: Relay endpoint (e.g. "ws://localhost:8000/ws")
            reconnect_delay: Seconds between reconnection attempts in run()
            on_state_change: Callback when connection state changes
        """
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._on_state_change = on_state_change

        self._state = ConnectionState.DISCONNECTED
        self._websocket: Any = None
        self._message_task: Optional[asyncio.Task] = None
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._should_reconnect = False

        # Re-sent after every reconnect
        self._binding: Optional[tuple[str, str]] = None

        self.messages_sent = 0
        self.messages_received = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def _set_state(self, state: str) -> None:
        if state == self._state:
            return
        self._state = state
        logger.info(f"Relay connection {state}")
        if self._on_state_change:
            self._on_state_change(state)

    # Subscriptions

    def subscribe(self, message_type: str, handler: Handler) -> Callable[[], None]:
        """Register a handler for one inbound message type.

        Args:
            message_type: Envelope ``type`` to match
            handler: Called with the decoded envelope; may be a coroutine
                function

        Returns:
            Function removing the subscription
        """
        self._handlers[message_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(message_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def dispatch(self, raw: Any) -> int:
        """Deliver one inbound frame to its subscribers.

        Handler errors are logged and do not affect other handlers.

        Returns:
            Number of handlers that ran successfully
        """
        self.messages_received += 1
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            logger.warning(f"Ignoring non-JSON frame from relay: {e}")
            return 0

        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            logger.warning("Ignoring relay frame without a message type")
            return 0

        message_type = message["type"]
        delivered = 0
        for handler in list(self._handlers.get(message_type, ())):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Handler for {message_type} failed: {e}",
                    extra={"message_type": message_type},
                    exc_info=True,
                )
        return delivered

    # Sending

    async def send(self, message: dict[str, Any]) -> bool:
        """Send a message to the relay.

        Returns:
            True if sent, False if disconnected or the write failed
        """
        if not self.is_connected or self._websocket is None:
            logger.debug(
                f"Dropping {message.get('type')} while disconnected",
                extra={"message_type": message.get("type")},
            )
            return False

        try:
            await self._websocket.send(json.dumps(message))
            self.messages_sent += 1
            return True
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"Send failed, connection closed: {e}")
            return False

    async def join_room(self, room_id: str, device_id: str) -> bool:
        """Bind this connection to a (room, device) pair.

        The binding is remembered and re-sent after reconnects.
        """
        self._binding = (room_id, device_id)
        return await self.send({"type": "join-room", "roomId": room_id, "deviceId": device_id})

    # Connection lifecycle

    async def connect(self) -> None:
        """Open the connection and start the message loop."""
        self._set_state(ConnectionState.CONNECTING)
        try:
            self._websocket = await websockets.connect(self.url, ping_interval=30, ping_timeout=10)
        except Exception:
            self._set_state(ConnectionState.DISCONNECTED)
            raise

        self._set_state(ConnectionState.CONNECTED)
        self._message_task = asyncio.create_task(self._message_loop())

        if self._binding is not None:
            await self.join_room(*self._binding)

    async def _message_loop(self) -> None:
        """Main message processing loop."""
        try:
            async for raw in self._websocket:
                await self.dispatch(raw)
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"Relay connection closed: {e}")
        finally:
            self._websocket = None
            self._set_state(ConnectionState.DISCONNECTED)

    async def run(self) -> None:
        """Stay connected, reconnecting after failures until disconnect()."""
        self._should_reconnect = True
        while self._should_reconnect:
            try:
                await self.connect()
                await self._message_task
            except asyncio.CancelledError:
                break
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.error(f"Relay connection error: {e}")

            if self._should_reconnect:
                logger.info(f"Reconnecting in {self.reconnect_delay:.1f} seconds...")
                await asyncio.sleep(self.reconnect_delay)

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        self._should_reconnect = False

        websocket = self._websocket
        if websocket is not None:
            await websocket.close()

        if self._message_task is not None:
            try:
                await self._message_task
            except asyncio.CancelledError:
                pass
            self._message_task = None

        self._websocket = None
        self._set_state(ConnectionState.DISCONNECTED)
