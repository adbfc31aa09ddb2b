"""
router.py — Lobby Inspection Endpoints
=======================================
Read-only view of the in-memory lobbies (debug/admin).
"""

import logging
from fastapi import APIRouter, Depends

from battle.apps.lobby.registry import LobbyRegistry
from battle.apps.lobby.schema import LobbyDetail, LobbyListResponse, LobbySummary
from battle.core.dependencies import get_registry
from battle.core.errors import LobbyNotFoundError

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════
# ROUTER SETUP
# ═══════════════════════════════════════════════════

router = APIRouter(prefix="/api/lobbies", tags=["lobby"])


# ═══════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════

@router.get("/", response_model=LobbyListResponse)
async def list_lobbies_endpoint(registry: LobbyRegistry = Depends(get_registry)):
    """
    All lobbies currently held in memory.
    """
    lobbies = [LobbySummary(**lobby.summary()) for lobby in registry.lobbies()]
    return LobbyListResponse(lobbies=lobbies, total=len(lobbies))


@router.get("/{cid}", response_model=LobbyDetail)
async def get_lobby_endpoint(cid: str, registry: LobbyRegistry = Depends(get_registry)):
    """
    Detailed lobby state.

    Returns:
        200: Lobby snapshot
        404: Lobby not found
    """
    lobby = registry.get(cid)
    if lobby is None:
        raise LobbyNotFoundError(cid)
    return lobby.snapshot()
