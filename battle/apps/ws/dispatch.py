"""
dispatch.py — Inbound Message Router
=====================================
Validates one inbound socket message and hands it to the right Lobby
operation.

Malformed messages (bad JSON, missing cid/username) and unknown types are
logged and dropped; the connection stays open.
"""

import json
import logging
from typing import Awaitable, Callable

from pydantic import ValidationError

from battle.apps.lobby.registry import LobbyRegistry
from battle.apps.lobby.service import Lobby
from battle.apps.ws.schema import ClientMessage, InboundType

logger = logging.getLogger(__name__)

Handler = Callable[[Lobby, object, ClientMessage], Awaitable[None]]


class MessageRouter:
    def __init__(self, registry: LobbyRegistry):
        self.registry = registry
        self._handlers: dict[str, Handler] = {
            InboundType.JOIN: self._on_join,
            InboundType.READY: self._on_ready,
            InboundType.CODE_RUNNING: self._on_code_running,
            InboundType.CODE_FINISHED: self._on_code_finished,
            InboundType.TEST_RESULTS: self._on_test_results,
            InboundType.CODE_SUBMITTED: self._on_code_submitted,
            InboundType.END_CHALLENGE: self._on_end_challenge,
            InboundType.END_CHALLENGE_FOR_USER: self._on_end_for_user,
        }

    @staticmethod
    def parse(raw: str | bytes | dict) -> ClientMessage | None:
        try:
            data = raw if isinstance(raw, dict) else json.loads(raw)
            return ClientMessage.model_validate(data)
        except (ValueError, TypeError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"⚠️ Discarding malformed message: {e}")
            return None

    async def dispatch(self, connection, raw: str | bytes | dict) -> bool:
        """
        Process one inbound message.

        Returns:
            bool: True if the message reached a lobby handler
        """
        message = self.parse(raw)
        if message is None:
            return False

        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning(f"⚠️ Unknown message type: {message.type}")
            return False

        lobby = self.registry.get_or_create(message.cid)
        lobby.touch()
        await handler(lobby, connection, message)
        return True

    # ═══════════════════════════════════════════════════
    # HANDLERS
    # ═══════════════════════════════════════════════════

    async def _on_join(self, lobby: Lobby, connection, message: ClientMessage) -> None:
        await lobby.join(message.username, connection)

    async def _on_ready(self, lobby: Lobby, connection, message: ClientMessage) -> None:
        await lobby.toggle_ready(message.username)

    async def _on_code_running(self, lobby: Lobby, connection, message: ClientMessage) -> None:
        await lobby.set_running(message.username, True)

    async def _on_code_finished(self, lobby: Lobby, connection, message: ClientMessage) -> None:
        await lobby.set_running(message.username, False)

    async def _on_test_results(self, lobby: Lobby, connection, message: ClientMessage) -> None:
        await lobby.record_test_results(message.username, message.tests_passed)

    async def _on_code_submitted(self, lobby: Lobby, connection, message: ClientMessage) -> None:
        await lobby.record_submission(message.username, message.submitted_results, message.tests_passed)

    async def _on_end_challenge(self, lobby: Lobby, connection, message: ClientMessage) -> None:
        await lobby.request_end(message.username)

    async def _on_end_for_user(self, lobby: Lobby, connection, message: ClientMessage) -> None:
        await lobby.end_for_user(message.username)
