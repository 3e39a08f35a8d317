"""
Refresh Scheduler — periodic background refresh of the account cache.

States:
  IDLE    → no session, nothing scheduled
  POLLING → session active, refresh every ``interval`` seconds

Entered once per session start, left on session end.  A tick that finds a
refresh already in flight is skipped rather than stacking a second request.
Failed ticks are logged and counted; they never end the session themselves.
An auth rejection does, but through the Session Store, which then stops the
scheduler.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any

from bankdash.accounts import AccountCache
from bankdash.errors import AuthError, BankdashError
from bankdash.session import Session, SessionListener, SessionStore

logger = logging.getLogger(__name__)


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"


class RefreshScheduler(SessionListener):
    """
    Args:
        session:  Session Store to follow
        cache:    Account Cache to refresh
        interval: Seconds between ticks
    """

    def __init__(self, session: SessionStore, cache: AccountCache, interval: float = 30.0):
        self._cache = cache
        self._interval = interval

        self._state = SchedulerState.IDLE
        self._task: asyncio.Task | None = None
        self._generation = 0

        self._ticks = 0
        self._skipped = 0
        self._failures = 0

        session.subscribe(self)

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        """IDLE → POLLING.  A no-op when already polling."""
        if self._state == SchedulerState.POLLING:
            return
        self._state = SchedulerState.POLLING
        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation))
        logger.info("Refresh scheduler → POLLING (every %.0fs)", self._interval)

    def stop(self) -> None:
        """POLLING → IDLE.  A no-op when already idle."""
        if self._state == SchedulerState.IDLE:
            return
        self._state = SchedulerState.IDLE
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        logger.info("Refresh scheduler → IDLE")

    async def tick(self) -> bool:
        """
        Run one refresh unless one is already in flight.
        Returns True if a refresh was attempted.
        """
        if self._cache.is_refreshing:
            self._skipped += 1
            logger.debug("Refresh already in flight, skipping tick")
            return False

        self._ticks += 1
        try:
            await self._cache.refresh()
        except AuthError as e:
            self._failures += 1
            logger.warning("Background refresh rejected: %s", e)
        except BankdashError as e:
            self._failures += 1
            logger.warning("Background refresh failed: %s", e)
        return True

    async def _run(self, generation: int) -> None:
        while self._generation == generation:
            await asyncio.sleep(self._interval)
            if self._generation != generation:
                break
            await self.tick()

    # ── SessionListener ──────────────────────────────────────────────────

    def session_started(self, session: Session) -> None:
        self.start()

    def session_ended(self) -> None:
        self.stop()

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "interval": self._interval,
            "ticks": self._ticks,
            "skipped": self._skipped,
            "failures": self._failures,
        }
