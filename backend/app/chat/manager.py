"""WebSocket connection registry for the realtime chat channel.

This module tracks live WebSocket connections and the user identity each one
announced at handshake time, and fans messages out to them.

Key features:
    - Global broadcast to every live connection
    - Targeted delivery to all connections of one user
    - Concurrent delivery with asyncio.gather()
    - Automatic dead connection cleanup

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent message delivery
    - Failed connections are automatically removed during broadcast
    - Uvicorn handles ping/pong at the protocol level (default 20s interval)
"""
import asyncio
import logging
from typing import Dict, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages live WebSocket connections and their user identities.

    A connection without an identity still receives broadcasts; it just
    cannot be addressed by user id.
    """

    def __init__(self) -> None:
        """Initialize empty connection manager."""
        # Connections in accept order
        self.active_connections: List[WebSocket] = []

        # websocket -> userId announced at handshake (None if anonymous)
        self.connection_users: Dict[WebSocket, Optional[str]] = {}

        # userId -> set of that user's live connections
        self.user_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: Optional[str] = None) -> None:
        """Accept a WebSocket connection and register it.

        Args:
            websocket: The WebSocket connection to accept.
            user_id: Identity from the handshake query, if any.
        """
        await websocket.accept()
        self.register(websocket, user_id)

    def register(self, websocket: WebSocket, user_id: Optional[str] = None) -> None:
        self.active_connections.append(websocket)
        self.connection_users[websocket] = user_id
        if user_id:
            self.user_connections.setdefault(user_id, set()).add(websocket)
        logger.info(
            f"[Manager] Connection registered for user={user_id or 'anonymous'}. "
            f"{len(self.active_connections)} live connections"
        )

    def disconnect(self, websocket: WebSocket) -> Optional[str]:
        """Forget a connection. Returns the user id it carried, if any."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        user_id = self.connection_users.pop(websocket, None)
        if user_id:
            sockets = self.user_connections.get(user_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self.user_connections[user_id]
        return user_id

    def get_user_id(self, websocket: WebSocket) -> Optional[str]:
        return self.connection_users.get(websocket)

    def is_online(self, user_id: str) -> bool:
        return bool(self.user_connections.get(user_id))

    def get_connection_count(self) -> int:
        return len(self.active_connections)

    async def broadcast(self, message: dict) -> None:
        """Broadcast a message to every live connection concurrently.

        Connections that fail to receive the message are removed.

        Args:
            message: JSON-serializable message to broadcast.
        """
        await self._deliver(list(self.active_connections), message)

    async def send_to_user(self, user_id: str, message: dict) -> int:
        """Send a message to every live connection of one user.

        Returns:
            Number of connections that received the message. Zero means the
            user is offline (or all of their connections just died).
        """
        connections = list(self.user_connections.get(user_id, ()))
        return await self._deliver(connections, message)

    async def send_personal(self, websocket: WebSocket, message: dict) -> bool:
        """Send a message to one connection, dropping it if the send fails."""
        delivered = await self._safe_send(websocket, message)
        if not delivered:
            self.disconnect(websocket)
        return delivered

    async def _deliver(self, connections: List[WebSocket], message: dict) -> int:
        if not connections:
            return 0

        # Send to all connections concurrently
        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in connections],
            return_exceptions=True
        )

        # Remove failed connections
        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        for conn in failed_connections:
            self.disconnect(conn)
            logger.debug("Removed dead connection")
        return len(connections) - len(failed_connections)

    async def _safe_send(self, connection: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Args:
            connection: The WebSocket to send to.
            message: JSON-serializable message to send.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False
