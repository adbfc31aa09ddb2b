"""
backend_client.py — Challenge System-of-Record Gateway
=======================================================
Remote calls to the MeetCode backend (GraphQL over HTTP).

The lobby never trusts these calls for its own correctness: failures are
raised as BackendServiceError, logged by the caller, and the in-process
state machine carries on.

Usage:
    from battle.services.backend_client import GraphQLBackendGateway

    gateway = GraphQLBackendGateway("https://.../graphql")
    decision = await gateway.validate_access("abc", "userA")
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


# ── Exception ──────────────────────────────────────
class BackendServiceError(Exception):
    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"[{operation}] {message}")


# ── Return Types ───────────────────────────────────
@dataclass
class AccessDecision:
    allowed: bool
    reason: str | None = None


# ── GraphQL Documents ──────────────────────────────
_CHALLENGE_FIELDS = """
    cid
    pid
    status
    startDate
    endDate
    participants {
      username
      cid
      rank
      score
      time
    }
"""


def _to_graphql_literal(value) -> str:
    """Render a Python value as an inline GraphQL input literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if isinstance(value, str):
        # JSON string escaping is valid GraphQL string syntax
        return json.dumps(value)
    if isinstance(value, dict):
        fields = ", ".join(f"{key}: {_to_graphql_literal(item)}" for key, item in value.items())
        return "{" + fields + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_to_graphql_literal(item) for item in value) + "]"
    raise TypeError(f"Unsupported GraphQL literal: {type(value).__name__}")


# ═══════════════════════════════════════════════════
#  INTERFACE
# ═══════════════════════════════════════════════════

class BackendGateway:
    """Collaborator interface the lobby calls into."""

    async def validate_access(self, cid: str, username: str) -> AccessDecision:
        raise NotImplementedError

    async def start_challenge(self, cid: str) -> dict | None:
        raise NotImplementedError

    async def end_challenge(self, cid: str, ranked_scores: list[dict]) -> dict | None:
        raise NotImplementedError


# ═══════════════════════════════════════════════════
#  GRAPHQL IMPLEMENTATION
# ═══════════════════════════════════════════════════

class GraphQLBackendGateway(BackendGateway):
    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self._timeout = httpx.Timeout(timeout, connect=min(timeout, 10.0))
        self._transport = transport

    async def _execute(self, operation: str, query: str) -> dict:
        logger.debug(f"🌐 GraphQL {operation} → {self.url}")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.url,
                    headers={"Content-Type": "application/json"},
                    json={"query": query},
                )
                resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as e:
            raise BackendServiceError(operation, f"HTTP {e.response.status_code}: {e.response.text[:200]}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise BackendServiceError(operation, str(e) or type(e).__name__) from e

        if not isinstance(payload, dict):
            raise BackendServiceError(operation, "Malformed response body")

        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(err.get("message", err)) for err in errors if isinstance(err, dict))
            raise BackendServiceError(operation, messages or "GraphQL error")

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise BackendServiceError(operation, "Malformed response body")
        return data

    # ── validateAccess ─────────────────────────────
    async def validate_access(self, cid: str, username: str) -> AccessDecision:
        query = f"""
          query {{
            getChallengeById(cid: {_to_graphql_literal(cid)}) {{
              cid
              status
              participants {{
                username
              }}
            }}
          }}
        """
        data = await self._execute("validateAccess", query)
        challenge = data.get("getChallengeById")

        if not challenge:
            return AccessDecision(False, "Challenge not found")
        if not isinstance(challenge, dict):
            raise BackendServiceError("validateAccess", "Malformed response body")

        if challenge.get("status") == "ENDED":
            return AccessDecision(False, "Challenge has already ended")

        participants = challenge.get("participants") or []
        if not isinstance(participants, list) or not all(isinstance(p, dict) for p in participants):
            raise BackendServiceError("validateAccess", "Malformed response body")
        if not any(p.get("username") == username for p in participants):
            return AccessDecision(False, "You are not a participant in this challenge")

        return AccessDecision(True)

    # ── startChallenge ─────────────────────────────
    async def start_challenge(self, cid: str) -> dict | None:
        query = f"""
          mutation {{
            startChallenge(cid: {_to_graphql_literal(cid)}) {{{_CHALLENGE_FIELDS}}}
          }}
        """
        data = await self._execute("startChallenge", query)
        snapshot = data.get("startChallenge")
        logger.info(f"✅ Challenge started in backend for {cid}: {snapshot}")
        return snapshot

    # ── endChallenge ───────────────────────────────
    async def end_challenge(self, cid: str, ranked_scores: list[dict]) -> dict | None:
        query = f"""
          mutation {{
            endChallenge(
              cid: {_to_graphql_literal(cid)}
              participantScores: {_to_graphql_literal(ranked_scores)}
            ) {{{_CHALLENGE_FIELDS}}}
          }}
        """
        data = await self._execute("endChallenge", query)
        snapshot = data.get("endChallenge")
        logger.info(f"✅ Challenge ended in backend for {cid}: {snapshot}")
        return snapshot
