"""
schema.py — Battle Socket Message Schemas
==========================================
Message shapes exchanged over the battle-mode socket.

MESSAGE FORMAT:
---------------
Client → Server:
{
    "type": "codeSubmitted",
    "cid": "abc",
    "username": "userA",
    "testsPassed": 12,
    "submittedResults": 150
}

Server → Client:
{
    "type": "playerCodeSubmitted",
    "player": {...}
}
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════
# CLIENT → SERVER
# ═══════════════════════════════════════════════════

class ClientMessage(BaseModel):
    """
    Inbound event. `cid` and `username` are mandatory on every type.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    type: str = Field(description="Event type")
    cid: str = Field(min_length=1, description="Challenge id")
    username: str = Field(min_length=1, description="Participant username")
    tests_passed: Optional[int] = Field(default=None, alias="testsPassed")
    submitted_results: Optional[Union[int, float]] = Field(default=None, alias="submittedResults")


class InboundType:
    JOIN = "join"
    READY = "ready"
    CODE_RUNNING = "codeRunning"
    CODE_FINISHED = "codeFinished"
    TEST_RESULTS = "testResults"
    CODE_SUBMITTED = "codeSubmitted"
    END_CHALLENGE = "endChallenge"
    END_CHALLENGE_FOR_USER = "endChallengeForUser"


# ═══════════════════════════════════════════════════
# SERVER → CLIENT
# ═══════════════════════════════════════════════════

class OutboundType:
    LOBBY_STATE = "lobbyState"
    PLAYER_JOINED = "playerJoined"
    PLAYER_READY_TOGGLE = "playerReadyToggle"
    PLAYER_CODE_RUNNING = "playerCodeRunning"
    PLAYER_CODE_FINISHED = "playerCodeFinished"
    PLAYER_TEST_RESULTS = "playerTestResults"
    PLAYER_CODE_SUBMITTED = "playerCodeSubmitted"
    CAN_END_CHALLENGE = "canEndChallenge"
    PLAYER_COMPLETED_AND_LEFT = "playerCompletedAndLeft"
    CHALLENGE_ENDED_FOR_USER = "challengeEndedForUser"
    CANNOT_END_YET = "cannotEndYet"
    PLAYER_DISCONNECTED = "playerDisconnected"
    PLAYER_RECONNECTED = "playerReconnected"
    PLAYER_LEFT = "playerLeft"
    CHALLENGE_STARTED = "challengeStarted"
    TIMER_STARTED = "timerStarted"
    TIMER_UPDATE = "timerUpdate"
    CHALLENGE_ENDED = "challengeEnded"
    CHALLENGE_ENDED_CONFIRMED = "challengeEndedConfirmed"
    LOBBY_CLOSED = "lobbyClosed"
    JOIN_ERROR = "joinError"
