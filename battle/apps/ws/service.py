"""
service.py — Connections & Broadcast Fanout
============================================
Delivers JSON events to the live connections of a lobby.

RESPONSIBILITIES:
-----------------
✅ Wrap a FastAPI WebSocket behind an opaque connection id
✅ Broadcast (every active participant of a lobby)
✅ Unicast (a single connection)
✅ Skip connections that are no longer open

USAGE:
------
    fanout = BroadcastFanout()

    # Everyone except the originator
    await fanout.broadcast("abc", connections, {"type": "playerJoined", ...}, exclude=conn.id)

    # Only one connection
    await fanout.send(conn, {"type": "joinError", "message": "..."})
"""

import logging
import uuid
from typing import Iterable

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """
    Opaque handle for one client connection.

    Participants keep a reference to this object; identity comparisons use
    `id`, never the object itself.
    """

    def __init__(self, websocket: WebSocket, connection_id: str | None = None):
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, message: dict) -> None:
        await self.websocket.send_json(message)

    def __repr__(self) -> str:
        return f"<WebSocketConnection {self.id[:8]}>"


class BroadcastFanout:
    """Sends events to connections; never closes them."""

    async def send(self, connection, message: dict) -> bool:
        """
        Unicast a single event.

        Returns:
            bool: True if the event was written to the connection
        """
        if connection is None or not connection.is_open:
            logger.debug(f"⚠️  Skipping closed connection for {message.get('type')}")
            return False

        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.error(f"❌ Failed to send {message.get('type')} to {connection!r}: {e}")
            return False

    async def broadcast(
        self,
        cid: str,
        connections: Iterable,
        message: dict,
        exclude: str | None = None,
    ) -> int:
        """
        Deliver an event to every open connection, optionally excluding one.

        Args:
            cid: Lobby id (for logging)
            connections: Live connections of the lobby's active participants
            message: JSON-serialisable event
            exclude: Connection id of the originator, if it must not get an echo

        Returns:
            int: Number of connections the event was delivered to
        """
        sent_count = 0
        for connection in list(connections):
            if exclude is not None and connection.id == exclude:
                continue
            if await self.send(connection, message):
                sent_count += 1

        logger.info(f"📢 Broadcasted \"{message.get('type')}\" to {sent_count} player(s) in lobby: {cid}")
        return sent_count


# ═══════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════

fanout = BroadcastFanout()
