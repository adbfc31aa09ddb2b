"""Final ranking for a finished battle."""

from __future__ import annotations

from dataclasses import dataclass

from battle.apps.lobby.models import ParticipantTable


@dataclass(slots=True)
class RankedScore:
    username: str
    score: int | float
    rank: int
    status: str  # active | disconnected | completed

    def to_payload(self) -> dict:
        return {"username": self.username, "score": self.score, "rank": self.rank, "status": self.status}

    def to_backend(self) -> dict:
        return {"username": self.username, "score": self.score, "rank": self.rank}


def rank_participants(table: ParticipantTable) -> list[RankedScore]:
    """Stable descending sort by score; rank is the 1-based position.

    Equal scores keep concatenation order: active, then grace-pending, then
    completed participants, each in table order.
    """
    entries: list[tuple[str, int | float, str]] = []
    for username, participant in table.active.items():
        entries.append((username, participant.submitted_results or 0, "active"))
    for username, pending in table.disconnected.items():
        entries.append((username, pending.participant.submitted_results or 0, "disconnected"))
    for username, completed in table.completed.items():
        entries.append((username, completed.final_score or 0, "completed"))

    ordered = sorted(entries, key=lambda entry: entry[1], reverse=True)
    return [
        RankedScore(username=username, score=score, rank=idx, status=status)
        for idx, (username, score, status) in enumerate(ordered, start=1)
    ]
