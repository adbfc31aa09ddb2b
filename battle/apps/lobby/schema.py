"""
schema.py — Lobby Inspection Models
====================================
Pydantic response models for the read-only lobby endpoints.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Union


class LobbyPlayer(BaseModel):
    """
    An active participant as seen by other players.
    """
    username: str
    cid: str
    ready: bool
    running: bool
    testsPassed: int
    submitted: bool
    submittedResults: Union[int, float]
    submittedTestsPassed: int


class DisconnectedPlayer(BaseModel):
    username: str
    disconnected_at: int = Field(..., description="Epoch ms of the disconnect")


class CompletedPlayer(BaseModel):
    username: str
    completed_at: int = Field(..., description="Epoch ms of early completion")
    final_score: Union[int, float]


class TimerInfo(BaseModel):
    startTime: int
    endTime: int
    remainingTime: int


class FinalScore(BaseModel):
    username: str
    score: Union[int, float]
    rank: int
    status: str


class LobbySummary(BaseModel):
    """
    Lobby overview row.
    """
    cid: str = Field(..., description="Challenge id")
    status: str = Field(..., description="WAITING | IN_PROGRESS | ENDED")
    started: bool
    challenge_ended: bool
    created_at: int = Field(..., description="Epoch ms")
    active_count: int
    disconnected_count: int
    completed_count: int

    class Config:
        json_schema_extra = {
            "example": {
                "cid": "abc",
                "status": "IN_PROGRESS",
                "started": True,
                "challenge_ended": False,
                "created_at": 1760774400000,
                "active_count": 2,
                "disconnected_count": 0,
                "completed_count": 1,
            }
        }


class LobbyDetail(LobbySummary):
    players: List[LobbyPlayer]
    disconnected: List[DisconnectedPlayer]
    completed: List[CompletedPlayer]
    timer: Optional[TimerInfo] = None
    end_reason: Optional[str] = None
    final_scores: List[FinalScore] = Field(default_factory=list)


class LobbyListResponse(BaseModel):
    lobbies: List[LobbySummary]
    total: int
