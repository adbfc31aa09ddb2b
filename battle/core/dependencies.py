from fastapi import Request

from battle.apps.lobby.registry import LobbyRegistry


def get_registry(request: Request) -> LobbyRegistry:
    """LobbyRegistry attached to the running app by create_app()."""
    return request.app.state.registry
