"""
timers.py — Lobby Timers
========================
Asyncio task backed timers for a single lobby.

TIMER TYPES:
------------
✅ Challenge countdown (recurring tick + backstop timeout)
✅ Inactivity timeout (WAITING lobbies only)
✅ Per-participant disconnect grace
✅ Post-end retention before disposal

Every handle is returned to the caller, which stores it on the record it
belongs to and cancels it when a newer event supersedes it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from battle.apps.lobby.models import ChallengeTimer, now_ms

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle:
    def __init__(self, name: str):
        self.name = name
        self.cancelled = False
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return not self.cancelled and self._task is not None and not self._task.done()

    def cancel(self) -> None:
        self.cancelled = True
        if self._task is None or self._task.done():
            return
        # A callback cancelling its own timer lets itself finish; the flag
        # stops any further repetition.
        if self._task is asyncio.current_task():
            return
        self._task.cancel()

    def __repr__(self) -> str:
        return f"<TimerHandle {self.name} active={self.active}>"


class TimerService:
    """Creates and tracks the timers of one lobby."""

    def __init__(self, owner: str):
        self.owner = owner
        self._handles: set[TimerHandle] = set()

    # ═══════════════════════════════════════════════════
    # PRIMITIVES
    # ═══════════════════════════════════════════════════

    def call_later(self, name: str, delay_ms: int, callback: TimerCallback) -> TimerHandle:
        handle = TimerHandle(name)
        self._spawn(handle, self._run_once(handle, delay_ms / 1000, callback))
        return handle

    def call_every(self, name: str, interval_ms: int, callback: TimerCallback) -> TimerHandle:
        handle = TimerHandle(name)
        self._spawn(handle, self._run_repeating(handle, interval_ms / 1000, callback))
        return handle

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()

    @property
    def pending(self) -> list[str]:
        return sorted(h.name for h in self._handles if h.active)

    # ═══════════════════════════════════════════════════
    # LOBBY TIMERS
    # ═══════════════════════════════════════════════════

    def start_challenge_timer(
        self,
        duration_ms: int,
        tick_ms: int,
        on_tick: TimerCallback,
        on_expire: TimerCallback,
    ) -> ChallengeTimer:
        start = now_ms()
        timer = ChallengeTimer(start_time=start, end_time=start + duration_ms)
        timer.tick = self.call_every("challenge:tick", tick_ms, on_tick)
        timer.backstop = self.call_later("challenge:backstop", duration_ms, on_expire)
        logger.info(f"⏰ Started {duration_ms // 1000}s timer for challenge: {self.owner}")
        return timer

    def start_inactivity_timer(self, timeout_ms: int, on_timeout: TimerCallback) -> TimerHandle:
        return self.call_later("inactivity", timeout_ms, on_timeout)

    def start_grace_timer(self, username: str, grace_ms: int, on_expire: TimerCallback) -> TimerHandle:
        return self.call_later(f"grace:{username}", grace_ms, on_expire)

    # ═══════════════════════════════════════════════════
    # INTERNALS
    # ═══════════════════════════════════════════════════

    def _spawn(self, handle: TimerHandle, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=f"{self.owner}:{handle.name}")
        handle._task = task
        self._handles.add(handle)
        task.add_done_callback(lambda _t: self._handles.discard(handle))

    async def _run_once(self, handle: TimerHandle, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        if handle.cancelled:
            return
        await self._invoke(handle, callback)

    async def _run_repeating(self, handle: TimerHandle, interval: float, callback: TimerCallback) -> None:
        while not handle.cancelled:
            await asyncio.sleep(interval)
            if handle.cancelled:
                return
            await self._invoke(handle, callback)

    async def _invoke(self, handle: TimerHandle, callback: TimerCallback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"❌ Timer {handle.name} failed in lobby: {self.owner}")
