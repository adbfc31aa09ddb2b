"""
service.py — Lobby State Machine
=================================
One battle lobby: membership, readiness, timed challenge, submissions,
disconnect grace and final ranking.

STATES:
-------
WAITING → IN_PROGRESS → ENDED (terminal)

All methods run on the single event loop. Any method that awaits a remote
call re-checks `started` / `challenge_ended` / `disposed` after resuming,
since other events for the same lobby may have been processed meanwhile.
"""

from __future__ import annotations

import logging
from typing import Callable

from battle.apps.lobby.models import (
    ChallengeTimer,
    LobbyStatus,
    Participant,
    ParticipantTable,
    now_ms,
)
from battle.apps.lobby.scoring import RankedScore, rank_participants
from battle.apps.lobby.timers import TimerHandle, TimerService
from battle.apps.ws.schema import OutboundType
from battle.apps.ws.service import BroadcastFanout
from battle.core.config import Settings
from battle.services.backend_client import AccessDecision, BackendGateway, BackendServiceError

logger = logging.getLogger(__name__)


class Lobby:
    def __init__(
        self,
        cid: str,
        gateway: BackendGateway,
        fanout: BroadcastFanout,
        settings: Settings,
        on_close: Callable[[str], None] | None = None,
    ):
        self.cid = cid
        self.status = LobbyStatus.WAITING
        self.started = False
        self.challenge_ended = False
        self.disposed = False
        self.created_at = now_ms()
        self.end_reason: str | None = None
        self.final_scores: list[RankedScore] = []

        self.table = ParticipantTable()
        self.timers = TimerService(cid)
        self.challenge_timer: ChallengeTimer | None = None
        self.inactivity_timer: TimerHandle | None = None
        self.retention_timer: TimerHandle | None = None

        self._gateway = gateway
        self._fanout = fanout
        self._settings = settings
        self._on_close = on_close

        self.touch()

    # ═══════════════════════════════════════════════════
    # MESSAGING
    # ═══════════════════════════════════════════════════

    async def broadcast(self, message: dict, exclude: str | None = None) -> int:
        return await self._fanout.broadcast(self.cid, self.table.active_connections(), message, exclude=exclude)

    async def send(self, connection, message: dict) -> bool:
        return await self._fanout.send(connection, message)

    def lobby_state(self) -> dict:
        return {
            "type": OutboundType.LOBBY_STATE,
            "cid": self.cid,
            "players": [p.public_view(self.cid) for p in self.table.active.values()],
            "status": self.status.value,
            "timer": self.challenge_timer.to_dict() if self.challenge_timer else None,
        }

    # ═══════════════════════════════════════════════════
    # INACTIVITY
    # ═══════════════════════════════════════════════════

    def touch(self) -> None:
        """Restart the inactivity window. No-op outside WAITING."""
        if self.status is not LobbyStatus.WAITING or self.disposed:
            return
        if self.inactivity_timer is not None:
            self.inactivity_timer.cancel()
        self.inactivity_timer = self.timers.start_inactivity_timer(
            self._settings.INACTIVITY_TIMEOUT_MS, self._on_inactivity
        )

    def _cancel_inactivity(self) -> None:
        if self.inactivity_timer is not None:
            self.inactivity_timer.cancel()
            self.inactivity_timer = None

    async def _on_inactivity(self) -> None:
        self.inactivity_timer = None
        if self.status is not LobbyStatus.WAITING or self.disposed:
            return

        logger.info(f"💤 Lobby {self.cid} inactive for {self._settings.INACTIVITY_TIMEOUT_MS}ms, closing")
        await self.broadcast({
            "type": OutboundType.LOBBY_CLOSED,
            "cid": self.cid,
            "reason": "Lobby closed due to inactivity",
        })
        self._close()

    # ═══════════════════════════════════════════════════
    # MEMBERSHIP
    # ═══════════════════════════════════════════════════

    async def join(self, username: str, connection) -> bool:
        """
        Admit a participant, validating unseen usernames remotely.

        Returns:
            bool: True if the connection is now bound to an active participant
        """
        rejection = self._join_rejection(username)
        if rejection:
            await self._reject_join(connection, rejection)
            return False

        if not self.table.knows(username):
            try:
                decision = await self._gateway.validate_access(self.cid, username)
            except BackendServiceError as e:
                logger.error(f"❌ Error validating challenge access for {username} in {self.cid}: {e}")
                decision = AccessDecision(False, "Error validating challenge access")
            except Exception:
                logger.exception(f"❌ Unexpected error validating {username} in {self.cid}")
                decision = AccessDecision(False, "Error validating challenge access")

            if not decision.allowed:
                await self._reject_join(connection, decision.reason or "Access denied")
                return False

            # state may have moved while validating
            rejection = self._join_rejection(username)
            if rejection:
                await self._reject_join(connection, rejection)
                return False

        if username in self.table.disconnected:
            await self._reconnect(username, connection)
        elif username in self.table.active:
            participant = self.table.active[username]
            participant.connection = connection
            logger.info(f"🔁 User \"{username}\" rejoined lobby {self.cid} from a new connection")
            await self.send(connection, self.lobby_state())
        else:
            participant = self.table.add(Participant(username=username, connection=connection))
            logger.info(f"👤 User \"{username}\" joined lobby: {self.cid}")
            logger.info(f"📊 Lobby {self.cid} now has {len(self.table.active)} player(s)")
            await self.send(connection, self.lobby_state())
            await self.broadcast(
                {"type": OutboundType.PLAYER_JOINED, "player": participant.public_view(self.cid)},
                exclude=connection.id,
            )
        return True

    def _join_rejection(self, username: str) -> str | None:
        if self.disposed:
            return "Lobby has been closed"
        if self.challenge_ended:
            return "Challenge has already ended"
        if username in self.table.completed:
            return "You have already completed this challenge"
        return None

    async def _reject_join(self, connection, reason: str) -> None:
        logger.info(f"🚫 Join rejected in {self.cid}: {reason}")
        await self.send(connection, {"type": OutboundType.JOIN_ERROR, "message": reason})

    async def _reconnect(self, username: str, connection) -> None:
        entry = self.table.restore(username)
        if entry.grace_timer is not None:
            entry.grace_timer.cancel()
            entry.grace_timer = None
        participant = entry.participant
        participant.connection = connection

        away_ms = now_ms() - entry.disconnected_at
        logger.info(f"🔌 User \"{username}\" reconnected to lobby {self.cid} after {away_ms}ms")

        await self.send(connection, self.lobby_state())
        await self.broadcast(
            {"type": OutboundType.PLAYER_RECONNECTED, "player": participant.public_view(self.cid)},
            exclude=connection.id,
        )

    async def disconnect(self, connection_id: str) -> bool:
        """
        Handle a closed connection.

        Returns:
            bool: True if the connection belonged to an active participant here
        """
        participant = self.table.find_by_connection(connection_id)
        if participant is None:
            return False

        username = participant.username
        if self.challenge_ended or self.disposed:
            logger.info(f"👋 User \"{username}\" disconnected from finished lobby: {self.cid}")
            return True

        if self.status is LobbyStatus.IN_PROGRESS:
            logger.info(f"📊 Last known score for disconnected user \"{username}\": {participant.latest_score}")

        grace_ms = self._settings.DISCONNECT_GRACE_MS
        entry = self.table.mark_disconnected(username, now_ms())
        entry.grace_timer = self.timers.start_grace_timer(
            username, grace_ms, lambda: self._on_grace_expired(username)
        )
        logger.info(f"👋 User \"{username}\" disconnected from lobby {self.cid}, {grace_ms}ms grace")

        await self.broadcast({
            "type": OutboundType.PLAYER_DISCONNECTED,
            "player": {"username": username, "cid": self.cid},
            "temporary": True,
            "gracePeriod": grace_ms,
        })
        return True

    async def _on_grace_expired(self, username: str) -> None:
        if self.challenge_ended or self.disposed:
            return
        entry = self.table.remove_disconnected(username)
        if entry is None:
            return

        logger.info(f"🚪 User \"{username}\" did not return, removed from lobby: {self.cid}")
        logger.info(f"📊 Lobby {self.cid} now has {len(self.table.active)} player(s)")
        await self.broadcast({
            "type": OutboundType.PLAYER_LEFT,
            "player": {"username": username, "cid": self.cid},
        })

        if self.challenge_ended or self.disposed:
            return
        if self.status is LobbyStatus.IN_PROGRESS and not self.table.active:
            logger.info(f"🏁 All players disconnected from {self.cid}, ending challenge")
            await self.finalize("All players disconnected")
        elif self.status is LobbyStatus.WAITING and self.table.total_count() == 0:
            logger.info(f"🗑️ Empty waiting lobby {self.cid} removed")
            self._close()

    # ═══════════════════════════════════════════════════
    # READINESS & START
    # ═══════════════════════════════════════════════════

    async def toggle_ready(self, username: str) -> None:
        participant = self.table.active.get(username)
        if participant is None or self.status is not LobbyStatus.WAITING:
            return

        participant.ready = not participant.ready
        ready_count = sum(1 for p in self.table.active.values() if p.ready)
        logger.info(f"{'✅' if participant.ready else '❌'} User \"{username}\" is {'ready' if participant.ready else 'not ready'} in lobby: {self.cid}")
        logger.info(f"🎯 Ready players in {self.cid}: {ready_count}/{len(self.table.active)}")

        await self.broadcast({
            "type": OutboundType.PLAYER_READY_TOGGLE,
            "player": participant.public_view(self.cid),
        })
        await self._maybe_start()

    async def _maybe_start(self) -> None:
        if self.started or self.status is not LobbyStatus.WAITING or self.disposed:
            return
        if not self.table.all_ready():
            return

        self.started = True
        self.status = LobbyStatus.IN_PROGRESS
        self._cancel_inactivity()
        logger.info(f"🚀 All players ready in {self.cid}. Starting challenge...")

        snapshot = None
        confirmed = False
        try:
            snapshot = await self._gateway.start_challenge(self.cid)
        except BackendServiceError as e:
            logger.error(f"❌ Failed to start challenge for {self.cid}: {e}")
        except Exception:
            logger.exception(f"❌ Unexpected error starting challenge for {self.cid}")
        else:
            confirmed = True

        if self.challenge_ended or self.disposed:
            logger.info(f"⏭️ Challenge {self.cid} finished before start completed")
            return

        if confirmed:
            await self.broadcast({"type": OutboundType.CHALLENGE_STARTED, "data": snapshot})
            if self.challenge_ended or self.disposed:
                return

        self.challenge_timer = self.timers.start_challenge_timer(
            self._settings.CHALLENGE_DURATION_MS,
            self._settings.TIMER_TICK_MS,
            on_tick=self._on_timer_tick,
            on_expire=self._on_timer_expired,
        )
        await self.broadcast({
            "type": OutboundType.TIMER_STARTED,
            "startTime": self.challenge_timer.start_time,
            "endTime": self.challenge_timer.end_time,
            "duration": self.challenge_timer.duration,
        })

    async def _on_timer_tick(self) -> None:
        if self.challenge_ended or self.challenge_timer is None:
            return
        remaining = self.challenge_timer.remaining_ms()
        await self.broadcast({"type": OutboundType.TIMER_UPDATE, "remainingTime": remaining})
        if remaining <= 0:
            await self.finalize("Timer expired")

    async def _on_timer_expired(self) -> None:
        await self.finalize("Timer expired")

    # ═══════════════════════════════════════════════════
    # IN-PROGRESS EVENTS
    # ═══════════════════════════════════════════════════

    def _mutable_participant(self, username: str) -> Participant | None:
        if self.challenge_ended or self.disposed:
            return None
        return self.table.active.get(username)

    async def set_running(self, username: str, running: bool) -> None:
        participant = self._mutable_participant(username)
        if participant is None:
            return

        participant.running = running
        logger.info(f"{'🏃' if running else '✅'} User \"{username}\" {'started' if running else 'finished'} running code in lobby: {self.cid}")
        await self.broadcast({
            "type": OutboundType.PLAYER_CODE_RUNNING if running else OutboundType.PLAYER_CODE_FINISHED,
            "player": {"username": username, "cid": self.cid, "running": running},
        })

    async def record_test_results(self, username: str, tests_passed: int | None) -> None:
        participant = self._mutable_participant(username)
        if participant is None or tests_passed is None:
            return

        participant.tests_passed = tests_passed
        participant.latest_score = tests_passed
        logger.info(f"📊 User \"{username}\" passed {tests_passed} tests in lobby: {self.cid}")
        await self.broadcast({
            "type": OutboundType.PLAYER_TEST_RESULTS,
            "player": {"username": username, "cid": self.cid, "testsPassed": tests_passed},
        })

    async def record_submission(
        self,
        username: str,
        submitted_results: int | float | None,
        tests_passed: int | None,
    ) -> None:
        participant = self._mutable_participant(username)
        if participant is None or submitted_results is None or tests_passed is None:
            return

        participant.submitted = True
        participant.submitted_results = submitted_results
        participant.submitted_tests_passed = tests_passed
        participant.latest_score = submitted_results
        logger.info(f"🎯 User \"{username}\" submitted code with {tests_passed} tests passed and score {submitted_results} in lobby: {self.cid}")

        await self.broadcast({
            "type": OutboundType.PLAYER_CODE_SUBMITTED,
            "player": {
                "username": username,
                "cid": self.cid,
                "submitted": True,
                "submittedResults": submitted_results,
                "submittedTestsPassed": tests_passed,
            },
        })

        if tests_passed == self._settings.FULL_PASS_THRESHOLD:
            logger.info(f"🏆 User \"{username}\" passed all {tests_passed} tests, may end early")
            await self.broadcast({
                "type": OutboundType.CAN_END_CHALLENGE,
                "player": {"username": username, "cid": self.cid},
            })

    async def end_for_user(self, username: str) -> None:
        participant = self.table.active.get(username)
        if participant is None:
            return

        threshold = self._settings.FULL_PASS_THRESHOLD
        if participant.submitted_tests_passed != threshold:
            await self.send(participant.connection, {
                "type": OutboundType.CANNOT_END_YET,
                "message": (
                    f"You must pass all {threshold} test cases before ending your participation "
                    f"(currently passed: {participant.submitted_tests_passed or 0}/{threshold})"
                ),
                "testsPassed": participant.submitted_tests_passed or 0,
                "required": threshold,
            })
            return

        if self.status is not LobbyStatus.IN_PROGRESS or self.challenge_ended or self.disposed:
            return

        completed = self.table.mark_completed(username, now_ms())
        logger.info(f"🏆 User \"{username}\" completed challenge {self.cid} with final score {completed.final_score}")
        logger.info(f"📊 Lobby {self.cid} now has {len(self.table.active)} player(s) remaining")

        await self.broadcast(
            {
                "type": OutboundType.PLAYER_COMPLETED_AND_LEFT,
                "player": {
                    "username": username,
                    "cid": self.cid,
                    "finalScore": completed.final_score,
                    "testsPassed": participant.submitted_tests_passed,
                    "reason": "Completed all test cases",
                },
            },
            exclude=participant.connection_id,
        )
        await self.send(participant.connection, {
            "type": OutboundType.CHALLENGE_ENDED_FOR_USER,
            "message": "You have successfully completed the challenge!",
            "finalScore": completed.final_score,
            "testsPassed": participant.submitted_tests_passed,
        })

        if not self.table.active and not self.challenge_ended:
            logger.info(f"🏁 All players have completed in {self.cid}, ending challenge")
            await self.finalize("All players completed")

    async def request_end(self, username: str) -> None:
        if self.status is not LobbyStatus.IN_PROGRESS or self.challenge_ended:
            return
        logger.info(f"🏁 User \"{username}\" requested to end challenge: {self.cid}")
        await self.finalize(f"Ended by {username}")

    # ═══════════════════════════════════════════════════
    # END OF CHALLENGE
    # ═══════════════════════════════════════════════════

    async def finalize(self, reason: str) -> None:
        """Rank, broadcast, mirror to the backend, then schedule disposal. Runs once."""
        if self.challenge_ended or self.disposed or self.status is not LobbyStatus.IN_PROGRESS:
            return

        self.challenge_ended = True
        self.status = LobbyStatus.ENDED
        self.end_reason = reason
        logger.info(f"🏁 Ending challenge {self.cid}. Reason: {reason}")

        if self.challenge_timer is not None:
            self.challenge_timer.cancel()
        self._cancel_inactivity()
        for pending in self.table.disconnected.values():
            if pending.grace_timer is not None:
                pending.grace_timer.cancel()

        self.final_scores = rank_participants(self.table)
        logger.info(f"📊 Final scores for {self.cid}: {[s.to_backend() for s in self.final_scores]}")

        await self.broadcast({
            "type": OutboundType.CHALLENGE_ENDED,
            "reason": reason,
            "finalScores": [s.to_payload() for s in self.final_scores],
        })

        try:
            snapshot = await self._gateway.end_challenge(self.cid, [s.to_backend() for s in self.final_scores])
        except BackendServiceError as e:
            logger.error(f"❌ Failed to end challenge in backend for {self.cid}: {e}")
        except Exception:
            logger.exception(f"❌ Unexpected error ending challenge in backend for {self.cid}")
        else:
            if not self.disposed:
                await self.broadcast({"type": OutboundType.CHALLENGE_ENDED_CONFIRMED, "data": snapshot})

        if not self.disposed:
            self.retention_timer = self.timers.call_later(
                "retention", self._settings.RESULT_RETENTION_MS, self._on_retention_expired
            )

    async def _on_retention_expired(self) -> None:
        logger.info(f"🗑️ Cleaned up lobby: {self.cid}")
        self._close()

    # ═══════════════════════════════════════════════════
    # DISPOSAL
    # ═══════════════════════════════════════════════════

    def _close(self) -> None:
        if self._on_close is not None:
            self._on_close(self.cid)
        else:
            self.dispose()

    def dispose(self) -> None:
        """Cancel every timer. Connections are left open."""
        if self.disposed:
            return
        self.disposed = True
        self.timers.cancel_all()
        self.challenge_timer = None
        self.inactivity_timer = None
        self.retention_timer = None

    # ═══════════════════════════════════════════════════
    # INSPECTION
    # ═══════════════════════════════════════════════════

    def summary(self) -> dict:
        return {
            "cid": self.cid,
            "status": self.status.value,
            "started": self.started,
            "challenge_ended": self.challenge_ended,
            "created_at": self.created_at,
            "active_count": len(self.table.active),
            "disconnected_count": len(self.table.disconnected),
            "completed_count": len(self.table.completed),
        }

    def snapshot(self) -> dict:
        return {
            **self.summary(),
            "players": [p.public_view(self.cid) for p in self.table.active.values()],
            "disconnected": [
                {"username": name, "disconnected_at": entry.disconnected_at}
                for name, entry in self.table.disconnected.items()
            ],
            "completed": [
                {"username": name, "completed_at": entry.completed_at, "final_score": entry.final_score}
                for name, entry in self.table.completed.items()
            ],
            "timer": self.challenge_timer.to_dict() if self.challenge_timer else None,
            "end_reason": self.end_reason,
            "final_scores": [s.to_payload() for s in self.final_scores],
        }
