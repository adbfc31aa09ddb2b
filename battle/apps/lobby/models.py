"""
In-memory lobby records.

A username lives in exactly one of the three participant maps of a
ParticipantTable at any instant: active, disconnected (grace pending) or
completed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from battle.apps.lobby.timers import TimerHandle
    from battle.apps.ws.service import WebSocketConnection


def now_ms() -> int:
    return int(time.time() * 1000)


class LobbyStatus(str, Enum):
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    ENDED = "ENDED"


@dataclass
class Participant:
    """Live participant record. The connection is referenced, never owned."""
    username: str
    connection: WebSocketConnection | None = None
    ready: bool = False
    running: bool = False
    tests_passed: int = 0
    submitted: bool = False
    submitted_results: int | float = 0
    submitted_tests_passed: int = 0
    latest_score: int | float = 0

    @property
    def connection_id(self) -> str | None:
        return self.connection.id if self.connection else None

    def public_view(self, cid: str) -> dict:
        return {
            "username": self.username,
            "cid": cid,
            "ready": self.ready,
            "running": self.running,
            "testsPassed": self.tests_passed,
            "submitted": self.submitted,
            "submittedResults": self.submitted_results,
            "submittedTestsPassed": self.submitted_tests_passed,
        }


@dataclass
class DisconnectedParticipant:
    participant: Participant
    disconnected_at: int
    grace_timer: TimerHandle | None = None


@dataclass
class CompletedParticipant:
    participant: Participant
    completed_at: int
    final_score: int | float


@dataclass
class ChallengeTimer:
    start_time: int
    end_time: int
    tick: TimerHandle | None = None
    backstop: TimerHandle | None = None

    @property
    def duration(self) -> int:
        return self.end_time - self.start_time

    def remaining_ms(self, now: int | None = None) -> int:
        return max(0, self.end_time - (now if now is not None else now_ms()))

    def cancel(self) -> None:
        for handle in (self.tick, self.backstop):
            if handle is not None:
                handle.cancel()

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "remainingTime": self.remaining_ms(),
        }


@dataclass
class ParticipantTable:
    active: dict[str, Participant] = field(default_factory=dict)
    disconnected: dict[str, DisconnectedParticipant] = field(default_factory=dict)
    completed: dict[str, CompletedParticipant] = field(default_factory=dict)

    def knows(self, username: str) -> bool:
        return username in self.active or username in self.disconnected or username in self.completed

    def total_count(self) -> int:
        """Active plus grace-pending participants."""
        return len(self.active) + len(self.disconnected)

    def all_ready(self) -> bool:
        return bool(self.active) and all(p.ready for p in self.active.values())

    def find_by_connection(self, connection_id: str) -> Participant | None:
        for participant in self.active.values():
            if participant.connection_id == connection_id:
                return participant
        return None

    def active_connections(self) -> Iterator[WebSocketConnection]:
        for participant in list(self.active.values()):
            if participant.connection is not None:
                yield participant.connection

    def add(self, participant: Participant) -> Participant:
        if self.knows(participant.username):
            raise ValueError(f"Participant already tracked: {participant.username}")
        self.active[participant.username] = participant
        return participant

    def mark_disconnected(self, username: str, at: int) -> DisconnectedParticipant:
        participant = self.active.pop(username)
        entry = DisconnectedParticipant(participant=participant, disconnected_at=at)
        self.disconnected[username] = entry
        return entry

    def restore(self, username: str) -> DisconnectedParticipant:
        entry = self.disconnected.pop(username)
        self.active[username] = entry.participant
        return entry

    def remove_disconnected(self, username: str) -> DisconnectedParticipant | None:
        return self.disconnected.pop(username, None)

    def mark_completed(self, username: str, at: int) -> CompletedParticipant:
        participant = self.active.pop(username)
        entry = CompletedParticipant(
            participant=participant,
            completed_at=at,
            final_score=participant.submitted_results or 0,
        )
        self.completed[username] = entry
        return entry
