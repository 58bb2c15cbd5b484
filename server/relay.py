"""Realtime relay binding WebSocket sessions to rooms.

Each connection is a session that becomes bound to one (room, device) pair
after a join message. Control events from a bound session are persisted
through the registry when they carry durable state and fanned out to every
other session in the same room.
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

from server import schemas
from server.exceptions import MalformedMessageError
from server.interfaces.metrics import IMetricsCollector
from server.interfaces.registry import IRoomRegistry
from server.spatial import SpatialAssignment, assign_positions

logger = logging.getLogger(__name__)


class RelaySession:
    """Represents one realtime connection."""

    def __init__(self, session_id: str, websocket: Any):
        """Initialize session.

        Args:
            session_id: Unique session identifier
            websocket: Connection exposing ``async send_text(str)``
        """
        self.session_id = session_id
        self.websocket = websocket
        self.room_id: Optional[str] = None
        self.device_id: Optional[str] = None
        self.connected_at = time.time()
        self.messages_received = 0
        self.messages_sent = 0
        self._send_lock = asyncio.Lock()

    @property
    def is_bound(self) -> bool:
        """Whether a join message has bound this session."""
        return self.room_id is not None and self.device_id is not None

    async def send_message(self, message: dict) -> bool:
        """Send a JSON message to the device.

        Args:
            message: Envelope to send

        Returns:
            True if sent successfully, False on error
        """
        try:
            async with self._send_lock:
                await self.websocket.send_text(json.dumps(message))
            self.messages_sent += 1
            return True
        except Exception as e:
            logger.warning(
                f"Error sending {message.get('type')} to session {self.session_id}: {e}",
                extra={"session_id": self.session_id, "room_id": self.room_id},
            )
            return False

    def get_connection_duration(self) -> float:
        """Get connection duration in seconds."""
        return time.time() - self.connected_at


class RoomRelay:
    """Room-indexed broadcast table and realtime message handling."""

    def __init__(self, registry: IRoomRegistry, metrics: Optional[IMetricsCollector] = None):
        """Initialize relay.

        Args:
            registry: Room/device registry used for durable updates
            metrics: Optional metrics collector
        """
        self.registry = registry
        self.metrics = metrics
        self.sessions: dict[str, RelaySession] = {}
        # room_id -> ids of sessions bound to that room
        self.rooms: dict[str, set[str]] = {}
        self.next_session_id = 0
        self._lock = asyncio.Lock()

        logger.info("Room relay initialized")

    def _generate_session_id(self) -> str:
        session_id = f"session_{self.next_session_id}"
        self.next_session_id += 1
        return session_id

    # Connection lifecycle

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Handle a WebSocket connection until it closes.

        Args:
            websocket: WebSocket connection instance
        """
        await websocket.accept()
        session = await self.open_session(websocket)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"]
                if raw is None:
                    continue

                await self.handle_raw(session, raw)

        except WebSocketDisconnect:
            logger.info(
                f"Session {session.session_id} disconnected normally",
                extra={"session_id": session.session_id},
            )
        except Exception as e:
            logger.error(
                f"Error handling session {session.session_id}: {e}",
                extra={"session_id": session.session_id},
                exc_info=True,
            )
        finally:
            await self.close_session(session)

    async def open_session(self, websocket: Any) -> RelaySession:
        """Register a new, unbound session for a connection."""
        async with self._lock:
            session = RelaySession(self._generate_session_id(), websocket)
            self.sessions[session.session_id] = session

        logger.info(
            f"Session opened: {session.session_id} (total sessions: {len(self.sessions)})",
            extra={"session_id": session.session_id},
        )
        return session

    async def close_session(self, session: RelaySession) -> None:
        """Unregister a session, marking its device disconnected."""
        async with self._lock:
            self.sessions.pop(session.session_id, None)

        if session.is_bound:
            await self._unbind(session)

        if self.metrics:
            self.metrics.increment_disconnect()

        logger.info(
            f"Session {session.session_id} closed "
            f"(duration: {session.get_connection_duration():.1f}s, "
            f"received: {session.messages_received}, sent: {session.messages_sent}, "
            f"remaining sessions: {len(self.sessions)})",
            extra={"session_id": session.session_id},
        )

    # Message handling

    async def handle_raw(self, session: RelaySession, raw: Any) -> None:
        """Parse and handle one inbound frame; malformed input is dropped."""
        session.messages_received += 1
        try:
            message = schemas.parse_client_message(raw)
        except MalformedMessageError as e:
            if self.metrics:
                self.metrics.increment_malformed_message()
            logger.warning(
                f"Dropping malformed message from {session.session_id}: {e}",
                extra={"session_id": session.session_id, "room_id": session.room_id},
            )
            return

        try:
            await self.handle_message(session, message)
        except Exception as e:
            logger.error(
                f"Error handling {message.type} from {session.session_id}: {e}",
                extra={"session_id": session.session_id, "message_type": message.type},
                exc_info=True,
            )

    async def handle_message(self, session: RelaySession, message: schemas.ClientMessage) -> None:
        """Dispatch a validated message.

        Args:
            session: Sending session
            message: Parsed message
        """
        if isinstance(message, schemas.JoinRoomMessage):
            await self._join(session, message.room_id, message.device_id)
            return

        if not session.is_bound:
            logger.debug(
                f"Ignoring {message.type} from unbound session {session.session_id}",
                extra={"session_id": session.session_id, "message_type": message.type},
            )
            return

        room_id = session.room_id
        device_id = session.device_id

        # Deleted or expired rooms lose their bindings on the next message
        if not self.registry.has_room(room_id):
            logger.info(
                f"Dropping {message.type}: room no longer exists",
                extra={"session_id": session.session_id, "room_id": room_id},
            )
            await self.drop_room(room_id)
            return

        if isinstance(message, schemas.DevicePositionMessage):
            updates: dict[str, Any] = {"position_x": message.x, "position_y": message.y}
            if message.audio_role is not None:
                updates["audio_role"] = message.audio_role
            device = self.registry.update_device(device_id, **updates)
            if device is None:
                logger.warning(
                    "Position update for unknown device",
                    extra={"room_id": room_id, "device_id": device_id},
                )
                return
            await self.broadcast(
                room_id,
                schemas.position_update(device_id, message.x, message.y, device.audio_role),
                exclude=session,
            )

        elif isinstance(message, schemas.VolumeChangeMessage):
            device = self.registry.update_device(
                device_id, volume=message.volume, is_muted=message.is_muted
            )
            if device is None:
                logger.warning(
                    "Volume update for unknown device",
                    extra={"room_id": room_id, "device_id": device_id},
                )
                return
            await self.broadcast(
                room_id,
                schemas.device_update(device_id, device.volume, device.is_muted),
                exclude=session,
            )

        elif isinstance(message, schemas.ModeChangeMessage):
            room = self.registry.update_room(room_id, audio_mode=message.mode)
            if room is None:
                logger.warning("Mode change for absent room", extra={"room_id": room_id})
                return
            await self.broadcast(room_id, message.to_wire(), exclude=session)
            if room.audio_mode == "stereo":
                await self.rebalance(room_id)

        else:
            # Transient events are relayed without persistence
            if isinstance(message, schemas.AudioStreamDataMessage) and self.metrics:
                self.metrics.record_stream_latency(time.time() * 1000.0 - message.timestamp)
            await self.broadcast(room_id, message.to_wire(), exclude=session)

    async def _join(self, session: RelaySession, room_id: str, device_id: str) -> None:
        """Bind a session to a (room, device) pair."""
        room = self.registry.get_room_by_id(room_id)
        device = self.registry.get_device(device_id)
        if room is None or device is None or device.room_id != room_id:
            logger.warning(
                f"Join rejected for session {session.session_id}: unknown room or device",
                extra={"session_id": session.session_id, "room_id": room_id, "device_id": device_id},
            )
            return

        if session.is_bound:
            if (session.room_id, session.device_id) == (room_id, device_id):
                return
            await self._unbind(session)

        async with self._lock:
            session.room_id = room_id
            session.device_id = device_id
            self.rooms.setdefault(room_id, set()).add(session.session_id)

        self.registry.update_device(device_id, is_connected=True)

        logger.info(
            f"Session {session.session_id} joined room",
            extra={"session_id": session.session_id, "room_id": room_id, "device_id": device_id},
        )

        await self.broadcast(room_id, schemas.device_connected(device_id), exclude=session)

        if room.audio_mode == "stereo":
            await self.rebalance(room_id)

    async def _unbind(self, session: RelaySession) -> None:
        """Detach a session from its room and announce the device as gone."""
        async with self._lock:
            room_id, device_id = session.room_id, session.device_id
            session.room_id = None
            session.device_id = None

            members = self.rooms.get(room_id)
            if members is not None:
                members.discard(session.session_id)
                if not members:
                    del self.rooms[room_id]

            # Another live session may still speak for the same device
            still_bound = any(
                s.device_id == device_id for s in self.sessions.values() if s is not session
            )

        if still_bound:
            return

        self.registry.update_device(device_id, is_connected=False)
        await self.broadcast(room_id, schemas.device_disconnected(device_id))

        logger.info(
            f"Session {session.session_id} left room",
            extra={"session_id": session.session_id, "room_id": room_id, "device_id": device_id},
        )

    async def drop_room(self, room_id: str) -> int:
        """Unbind every session of a room that has been deleted.

        Sessions stay open and may join another room. No disconnect notices
        are sent since the room's devices no longer exist.

        Returns:
            Number of sessions unbound
        """
        async with self._lock:
            members = self.rooms.pop(room_id, set())
            for sid in members:
                session = self.sessions.get(sid)
                if session is not None and session.room_id == room_id:
                    session.room_id = None
                    session.device_id = None

        if members:
            logger.info(
                f"Unbound {len(members)} sessions from deleted room", extra={"room_id": room_id}
            )
        return len(members)

    # Fan-out

    async def broadcast(
        self, room_id: str, message: dict, exclude: Optional[RelaySession] = None
    ) -> int:
        """Send a message to every session bound to a room.

        Args:
            room_id: Target room
            message: Envelope to send
            exclude: Session to skip (the sender)

        Returns:
            Number of sessions the message was delivered to
        """
        async with self._lock:
            recipients = [
                self.sessions[sid]
                for sid in self.rooms.get(room_id, ())
                if sid in self.sessions and (exclude is None or sid != exclude.session_id)
            ]

        if not recipients:
            return 0

        results = await asyncio.gather(*(s.send_message(message) for s in recipients))

        failed = [s for s, ok in zip(recipients, results) if not ok]
        if failed:
            async with self._lock:
                members = self.rooms.get(room_id)
                for s in failed:
                    if members is not None:
                        members.discard(s.session_id)
            if self.metrics:
                for _ in failed:
                    self.metrics.increment_send_failure()

        delivered = len(recipients) - len(failed)
        if self.metrics:
            self.metrics.increment_relayed(delivered)

        logger.debug(
            f"Relayed {message.get('type')} to {delivered}/{len(recipients)} sessions",
            extra={"room_id": room_id, "message_type": message.get("type")},
        )
        return delivered

    async def rebalance(self, room_id: str) -> list[SpatialAssignment]:
        """Recompute, persist and announce spatial roles for a stereo room.

        Args:
            room_id: Room to rebalance

        Returns:
            Assignments applied (empty in monopoly mode or for absent rooms)
        """
        room = self.registry.get_room_by_id(room_id)
        if room is None or room.audio_mode != "stereo":
            return []

        assignments = assign_positions(self.registry.get_devices_by_room(room_id))
        for a in assignments:
            if self.registry.update_device(
                a.device_id, position_x=a.x, position_y=a.y, audio_role=a.audio_role
            ) is None:
                continue
            await self.broadcast(
                room_id, schemas.position_update(a.device_id, a.x, a.y, a.audio_role)
            )

        logger.info(
            f"Rebalanced {len(assignments)} devices",
            extra={"room_id": room_id},
        )
        return assignments

    # Introspection

    def get_active_connections(self) -> int:
        """Get number of open sessions."""
        return len(self.sessions)

    def get_room_session_counts(self) -> dict[str, int]:
        """Get number of bound sessions per room."""
        return {room_id: len(members) for room_id, members in self.rooms.items()}

    def get_session_stats(self) -> list[dict]:
        """Get statistics for all open sessions."""
        return [
            {
                "session_id": s.session_id,
                "room_id": s.room_id,
                "device_id": s.device_id,
                "duration_sec": s.get_connection_duration(),
                "messages_received": s.messages_received,
                "messages_sent": s.messages_sent,
            }
            for s in self.sessions.values()
        ]
