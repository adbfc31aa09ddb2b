"""
registry.py — Lobby Registry
=============================
Owns every Lobby of the process, keyed by challenge id.

A lobby is created lazily by `get_or_create` on the first event naming an
unseen cid, and removed through `delete` (inactivity closure, empty WAITING
lobby, or post-end retention expiry).
"""

import logging

from battle.apps.lobby.service import Lobby
from battle.apps.ws.service import BroadcastFanout, fanout as default_fanout
from battle.core.config import Settings, get_settings
from battle.services.backend_client import BackendGateway

logger = logging.getLogger(__name__)


class LobbyRegistry:
    def __init__(
        self,
        gateway: BackendGateway,
        fanout: BroadcastFanout | None = None,
        settings: Settings | None = None,
    ):
        self._gateway = gateway
        self._fanout = fanout or default_fanout
        self._settings = settings or get_settings()
        self._lobbies: dict[str, Lobby] = {}

    def get(self, cid: str) -> Lobby | None:
        return self._lobbies.get(cid)

    def get_or_create(self, cid: str) -> Lobby:
        """Return the lobby for `cid`, creating a WAITING one if none exists."""
        lobby = self._lobbies.get(cid)
        if lobby is None:
            lobby = Lobby(
                cid,
                gateway=self._gateway,
                fanout=self._fanout,
                settings=self._settings,
                on_close=self.delete,
            )
            self._lobbies[cid] = lobby
            logger.info(f"🏠 Created new lobby: {cid}")
            logger.info(f"📋 Active lobbies: {len(self._lobbies)}")
        return lobby

    def delete(self, cid: str) -> bool:
        lobby = self._lobbies.pop(cid, None)
        if lobby is None:
            return False
        lobby.dispose()
        logger.info(f"🗑️ Lobby deleted: {cid}")
        return True

    async def handle_disconnect(self, connection_id: str) -> int:
        """
        Route a closed connection to every lobby it is bound in.

        Returns:
            int: Number of lobbies that had a participant on this connection
        """
        affected = 0
        for lobby in list(self._lobbies.values()):
            if await lobby.disconnect(connection_id):
                affected += 1
        if not affected:
            logger.debug(f"🔌 Connection {connection_id[:8]} closed without an active participant")
        return affected

    def lobbies(self) -> list[Lobby]:
        return list(self._lobbies.values())

    def shutdown(self) -> None:
        for cid in list(self._lobbies):
            self.delete(cid)

    def __contains__(self, cid: str) -> bool:
        return cid in self._lobbies

    def __len__(self) -> int:
        return len(self._lobbies)
