"""Time-driven lobby behaviour: grace periods, inactivity, countdown, retention."""

import asyncio

import pytest

from battle.apps.lobby.models import LobbyStatus
from conftest import FakeConnection, start_battle


@pytest.mark.asyncio
async def test_reconnect_within_grace_keeps_progress(registry):
    lobby = registry.get_or_create("abc")
    conns = await start_battle(lobby, "userA", "userB")
    await lobby.record_submission("userB", 70, 6)

    assert await registry.handle_disconnect(conns["userB"].id) == 1
    assert "userB" in lobby.table.disconnected
    await asyncio.sleep(0.02)

    again = FakeConnection("b2")
    assert await lobby.join("userB", again)
    await asyncio.sleep(0.15)

    a = conns["userA"]
    notice = a.of_type("playerDisconnected")[0]
    assert notice["temporary"] is True
    assert notice["gracePeriod"] == 100
    assert a.count("playerReconnected") == 1
    assert a.count("playerLeft") == 0
    assert again.count("playerReconnected") == 0
    assert again.of_type("lobbyState")[0]["status"] == "IN_PROGRESS"

    participant = lobby.table.active["userB"]
    assert participant.connection is again
    assert participant.submitted_results == 70
    assert participant.submitted_tests_passed == 6
    assert participant.ready is True


@pytest.mark.asyncio
async def test_grace_expiry_of_last_player_ends_challenge(registry, gateway):
    lobby = registry.get_or_create("abc")
    conns = await start_battle(lobby, "userA", "userB")
    await lobby.record_submission("userA", 150, 12)
    await lobby.end_for_user("userA")

    await registry.handle_disconnect(conns["userB"].id)
    await asyncio.sleep(0.2)

    assert lobby.status is LobbyStatus.ENDED
    assert lobby.end_reason == "All players disconnected"
    assert gateway.end_calls == [("abc", [{"username": "userA", "score": 150, "rank": 1}])]


@pytest.mark.asyncio
async def test_pending_player_is_ranked_as_disconnected(make_registry, gateway):
    registry = make_registry(DISCONNECT_GRACE_MS=200)
    lobby = registry.get_or_create("abc")
    conns = await start_battle(lobby, "userA", "userB", "userC")
    await lobby.record_submission("userA", 150, 12)
    await lobby.record_submission("userB", 50, 4)
    await lobby.record_submission("userC", 80, 7)
    await lobby.end_for_user("userA")

    await registry.handle_disconnect(conns["userB"].id)
    await asyncio.sleep(0.1)
    await registry.handle_disconnect(conns["userC"].id)
    await asyncio.sleep(0.15)

    assert lobby.end_reason == "All players disconnected"
    assert [(s.username, s.rank, s.status) for s in lobby.final_scores] == [
        ("userA", 1, "completed"),
        ("userC", 2, "disconnected"),
    ]
    assert gateway.end_calls[0][1][1] == {"username": "userC", "score": 80, "rank": 2}


@pytest.mark.asyncio
async def test_empty_waiting_lobby_removed_after_grace(registry):
    lobby = registry.get_or_create("abc")
    conn = FakeConnection("a")
    await lobby.join("userA", conn)

    await registry.handle_disconnect(conn.id)
    assert "abc" in registry
    await asyncio.sleep(0.2)

    assert "abc" not in registry
    assert lobby.disposed


@pytest.mark.asyncio
async def test_waiting_lobby_survives_while_someone_remains(registry):
    lobby = registry.get_or_create("abc")
    a, b = FakeConnection("a"), FakeConnection("b")
    await lobby.join("userA", a)
    await lobby.join("userB", b)

    await registry.handle_disconnect(b.id)
    await asyncio.sleep(0.2)

    assert "abc" in registry
    assert a.count("playerLeft") == 1
    assert not lobby.table.knows("userB")


@pytest.mark.asyncio
async def test_inactive_waiting_lobby_is_closed(make_registry):
    registry = make_registry(INACTIVITY_TIMEOUT_MS=100)
    lobby = registry.get_or_create("abc")
    conn = FakeConnection("a")
    await lobby.join("userA", conn)

    await asyncio.sleep(0.2)

    closed = conn.of_type("lobbyClosed")
    assert closed == [{"type": "lobbyClosed", "cid": "abc", "reason": "Lobby closed due to inactivity"}]
    assert "abc" not in registry


@pytest.mark.asyncio
async def test_activity_postpones_inactivity_closure(make_registry):
    registry = make_registry(INACTIVITY_TIMEOUT_MS=150)
    lobby = registry.get_or_create("abc")
    await lobby.join("userA", FakeConnection("a"))

    for _ in range(5):
        await asyncio.sleep(0.06)
        lobby.touch()

    assert "abc" in registry
    await asyncio.sleep(0.25)
    assert "abc" not in registry


@pytest.mark.asyncio
async def test_started_lobby_is_never_closed_for_inactivity(make_registry):
    registry = make_registry(INACTIVITY_TIMEOUT_MS=100)
    lobby = registry.get_or_create("abc")
    await start_battle(lobby, "userA")

    await asyncio.sleep(0.2)

    assert "abc" in registry
    assert lobby.status is LobbyStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_countdown_expiry_ends_once(make_registry, gateway):
    registry = make_registry(CHALLENGE_DURATION_MS=150, TIMER_TICK_MS=50)
    lobby = registry.get_or_create("abc")
    conns = await start_battle(lobby, "userA")

    await asyncio.sleep(0.3)

    conn = conns["userA"]
    assert lobby.end_reason == "Timer expired"
    assert len(gateway.end_calls) == 1
    assert conn.count("challengeEnded") == 1
    assert conn.count("timerUpdate") >= 1
    updates_at_end = conn.count("timerUpdate")
    await asyncio.sleep(0.12)
    assert conn.count("timerUpdate") == updates_at_end


@pytest.mark.asyncio
async def test_ended_lobby_removed_after_retention(make_registry):
    registry = make_registry(RESULT_RETENTION_MS=100)
    lobby = registry.get_or_create("abc")
    await start_battle(lobby, "userA")
    await lobby.request_end("userA")

    assert "abc" in registry
    await asyncio.sleep(0.2)

    assert "abc" not in registry
    assert lobby.disposed
    assert lobby.timers.pending == []


@pytest.mark.asyncio
async def test_disconnect_after_end_changes_nothing(registry):
    lobby = registry.get_or_create("abc")
    conns = await start_battle(lobby, "userA", "userB")
    await lobby.request_end("userA")

    assert await registry.handle_disconnect(conns["userB"].id) == 1

    assert "userB" in lobby.table.active
    assert lobby.table.disconnected == {}
    assert conns["userA"].count("playerDisconnected") == 0


@pytest.mark.asyncio
async def test_completed_player_cannot_rejoin(registry):
    lobby = registry.get_or_create("abc")
    await start_battle(lobby, "userA", "userB")
    await lobby.record_submission("userA", 150, 12)
    await lobby.end_for_user("userA")

    again = FakeConnection("a2")
    assert not await lobby.join("userA", again)
    assert again.of_type("joinError")[0]["message"] == "You have already completed this challenge"
    assert "userA" not in lobby.table.active
