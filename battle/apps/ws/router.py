"""
router.py — Battle WebSocket Router
====================================
Transport adapter: accepts a socket, feeds every text or binary frame to the
MessageRouter, and reports the close to the LobbyRegistry.

ENDPOINT:
---------
WS /ws   (also served on / for clients of the original server)

FLOW:
-----
1. Client connects
2. Loop: each message → MessageRouter.dispatch
3. On close → LobbyRegistry.handle_disconnect (starts grace timers)
"""

import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from battle.apps.ws.service import WebSocketConnection

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════
# ROUTER SETUP
# ═══════════════════════════════════════════════════

router = APIRouter(tags=["websocket"])


# ═══════════════════════════════════════════════════
# WEBSOCKET ENDPOINT
# ═══════════════════════════════════════════════════

@router.websocket("/")
@router.websocket("/ws")
async def battle_websocket(websocket: WebSocket):
    """
    Battle-mode socket.

    Client message format:
        {"type": "join", "cid": "abc", "username": "userA"}

    Server message format:
        {"type": "playerJoined", "player": {...}}
    """
    registry = websocket.app.state.registry
    message_router = websocket.app.state.message_router

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    logger.info(f"🔗 New WebSocket connection established: {connection.id[:8]}")

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))

            # text and binary frames both carry JSON
            raw = frame.get("text") or frame.get("bytes")
            if raw is None:
                continue
            try:
                await message_router.dispatch(connection, raw)
            except Exception:
                logger.exception(f"❌ Failed to process message on {connection.id[:8]}")

    except WebSocketDisconnect:
        logger.info(f"🔌 WebSocket connection closed: {connection.id[:8]}")

    except Exception as e:
        logger.error(f"❌ WebSocket error on {connection.id[:8]}: {e}")

    finally:
        await registry.handle_disconnect(connection.id)
