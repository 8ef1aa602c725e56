"""
WebSocket connection management for real-time fan-out.

Each live viewer is a Connection with an identity, a set of joined rooms
(one room per log source) and its own outbox drained by a dedicated writer
task. Broadcasting only enqueues into outboxes, so one slow subscriber can
never stall ingestion or the other subscribers.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from .file_store import safe_source_name

logger = logging.getLogger(__name__)


def encode_frame(event: str, data: Any) -> str:
    """Encode a channel message as ``{"event": ..., "data": ...}`` JSON text."""
    return json.dumps({'event': event, 'data': data}, ensure_ascii=False, default=str)


class Connection:
    """A single subscriber connection and its room memberships."""

    def __init__(self, websocket: WebSocket, outbox_size: int = 256):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.rooms: Set[str] = set()
        self.closed = False
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self._writer: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._writer = asyncio.get_running_loop().create_task(self._drain_outbox())

    def enqueue(self, message: str) -> bool:
        """Queue a message for this connection; returns False if it was dropped."""
        if self.closed:
            return False
        try:
            self._outbox.put_nowait(message)
            return True
        except asyncio.QueueFull:
            return False

    async def _drain_outbox(self) -> None:
        while True:
            message = await self._outbox.get()
            try:
                await self.websocket.send_text(message)
            except Exception as e:
                logger.warning(f"Failed to send message to WebSocket {self.id}: {e}")
                self.closed = True
                return

    async def close(self) -> None:
        self.closed = True
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass


class ConnectionHub:
    """Manages subscriber connections, rooms and broadcasting."""

    def __init__(self, max_connections: int = 100, outbox_size: int = 256):
        self.max_connections = max_connections
        self.outbox_size = outbox_size
        self._connections: Dict[str, Connection] = {}

    def connect(self, websocket: WebSocket) -> Connection:
        """
        Register an accepted WebSocket and announce the new online count.

        Args:
            websocket: The accepted WebSocket connection

        Returns:
            Connection: The registered connection
        """
        connection = Connection(websocket, self.outbox_size)
        connection.start()
        self._connections[connection.id] = connection
        logger.info(f"WebSocket connection added. Total connections: {len(self._connections)}")
        self.broadcast('online-users', len(self._connections))
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """
        Remove a connection, drop its room memberships and announce the new count.

        Args:
            connection: The connection to remove
        """
        if self._connections.pop(connection.id, None) is None:
            return
        connection.rooms.clear()
        await connection.close()
        logger.info(f"WebSocket connection removed. Total connections: {len(self._connections)}")
        self.broadcast('online-users', len(self._connections))

    def join(self, connection: Connection, room: str) -> None:
        # Rooms are keyed like source directories so listed names and raw names meet
        room = safe_source_name(room)
        connection.rooms.add(room)
        logger.debug(f"Connection {connection.id} joined room {room}")

    def leave(self, connection: Connection, room: str) -> None:
        room = safe_source_name(room)
        connection.rooms.discard(room)
        logger.debug(f"Connection {connection.id} left room {room}")

    def send(self, connection: Connection, event: str, data: Any) -> bool:
        """Send one frame to a single connection."""
        return self._deliver([connection], encode_frame(event, data)) > 0

    def broadcast(self, event: str, data: Any) -> int:
        """
        Broadcast a frame to every connection.

        Returns:
            int: Number of connections the frame was queued for
        """
        return self._deliver(list(self._connections.values()), encode_frame(event, data))

    def broadcast_to_room(self, room: str, event: str, data: Any) -> int:
        """Broadcast a frame to the connections that joined ``room``."""
        room = safe_source_name(room)
        members = [c for c in self._connections.values() if room in c.rooms]
        return self._deliver(members, encode_frame(event, data))

    def _deliver(self, connections: List[Connection], message: str) -> int:
        delivered = 0
        for connection in connections:
            if connection.enqueue(message):
                delivered += 1
            elif not connection.closed:
                logger.warning(f"Outbox full for WebSocket {connection.id}, dropping message")
        return delivered

    def get_connection_count(self) -> int:
        return len(self._connections)

    def rooms_of(self, connection_id: str) -> Set[str]:
        connection = self._connections.get(connection_id)
        return set(connection.rooms) if connection else set()

    def is_connection_limit_reached(self) -> bool:
        """
        Check if the connection limit has been reached.

        Returns:
            bool: True if connection limit is reached
        """
        return len(self._connections) >= self.max_connections

    def get_connection_info(self) -> dict:
        """
        Get information about WebSocket connections.

        Returns:
            dict: Connection information
        """
        return {
            'active_connections': len(self._connections),
            'max_connections': self.max_connections,
            'connection_limit_reached': self.is_connection_limit_reached(),
            'rooms': sorted({room for c in self._connections.values() for room in c.rooms}),
        }
