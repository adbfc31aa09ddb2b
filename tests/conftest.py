import asyncio
import itertools

import pytest
import pytest_asyncio

from battle.apps.lobby.registry import LobbyRegistry
from battle.apps.ws.service import BroadcastFanout
from battle.core.config import Settings
from battle.services.backend_client import AccessDecision, BackendGateway, BackendServiceError

_ids = itertools.count(1)


class FakeConnection:
    """Stands in for a WebSocketConnection; records every event it receives."""

    def __init__(self, name: str = "client") -> None:
        self.id = f"{name}-{next(_ids)}"
        self.is_open = True
        self.sent: list[dict] = []

    async def send_json(self, message: dict) -> None:
        # yield like a real socket write so handlers can interleave
        await asyncio.sleep(0)
        self.sent.append(message)

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, event_type: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == event_type]

    def count(self, event_type: str) -> int:
        return len(self.of_type(event_type))


class FakeGateway(BackendGateway):
    def __init__(
        self,
        denied: dict[str, str] | None = None,
        start_delay: float = 0.0,
        fail_validate: bool = False,
        fail_start: bool = False,
        fail_end: bool = False,
    ) -> None:
        self.denied = denied or {}
        self.start_delay = start_delay
        self.fail_validate = fail_validate
        self.fail_start = fail_start
        self.fail_end = fail_end
        self.validate_calls: list[tuple[str, str]] = []
        self.start_calls: list[str] = []
        self.end_calls: list[tuple[str, list[dict]]] = []

    async def validate_access(self, cid: str, username: str) -> AccessDecision:
        self.validate_calls.append((cid, username))
        await asyncio.sleep(0)
        if self.fail_validate:
            raise BackendServiceError("validateAccess", "backend unreachable")
        if username in self.denied:
            return AccessDecision(False, self.denied[username])
        return AccessDecision(True)

    async def start_challenge(self, cid: str) -> dict | None:
        self.start_calls.append(cid)
        await asyncio.sleep(self.start_delay)
        if self.fail_start:
            raise BackendServiceError("startChallenge", "backend unreachable")
        return {"cid": cid, "status": "IN_PROGRESS"}

    async def end_challenge(self, cid: str, ranked_scores: list[dict]) -> dict | None:
        self.end_calls.append((cid, ranked_scores))
        await asyncio.sleep(0)
        if self.fail_end:
            raise BackendServiceError("endChallenge", "backend unreachable")
        return {"cid": cid, "status": "ENDED", "participants": ranked_scores}


def fast_settings(**overrides) -> Settings:
    values = {
        "DISCONNECT_GRACE_MS": 100,
        "INACTIVITY_TIMEOUT_MS": 60_000,
        "RESULT_RETENTION_MS": 60_000,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def make_registry(gateway):
    created: list[LobbyRegistry] = []

    def _make(gateway_override: BackendGateway | None = None, **overrides) -> LobbyRegistry:
        registry = LobbyRegistry(
            gateway_override or gateway,
            fanout=BroadcastFanout(),
            settings=fast_settings(**overrides),
        )
        created.append(registry)
        return registry

    yield _make

    for registry in created:
        registry.shutdown()
    await asyncio.sleep(0)


@pytest_asyncio.fixture
async def registry(make_registry):
    return make_registry()


async def start_battle(lobby, *names: str) -> dict[str, FakeConnection]:
    """Join every name, toggle everyone ready, return their connections."""
    connections = {}
    for name in names:
        conn = FakeConnection(name)
        await lobby.join(name, conn)
        connections[name] = conn
    for name in names:
        await lobby.toggle_ready(name)
    return connections
