"""
Circuit Breaker — fails fast while the banking API is unreachable.

States:
  CLOSED    → requests pass through, consecutive faults are counted
  OPEN      → API is down, requests are rejected with CircuitOpenError
  HALF_OPEN → recovery window elapsed, exactly one probe request is let
              through; everyone else is still rejected until it lands

Only transport faults count against the circuit: network errors and 5xx
responses. A declined transfer or a rejected token is a valid answer from a
healthy server and leaves the circuit alone. Nothing here retries.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, Callable, Coroutine

from bankdash.errors import CircuitOpenError, NetworkError, ServerError

logger = logging.getLogger(__name__)


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def counts_as_failure(exc: BaseException) -> bool:
    """True for faults that say the server is unhealthy."""
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, NetworkError):
        return True
    return isinstance(exc, ServerError) and exc.is_server_fault


class CircuitBreaker:
    """
    Args:
        failure_threshold: Consecutive faults before opening
        recovery_timeout:  Seconds OPEN before a probe is allowed
        clock:             Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_faults = 0
        self._opened_at = 0.0
        self._probe_in_flight = False
        self._last_fault: str | None = None
        self._lock = asyncio.Lock()

        self._calls = 0
        self._faults = 0
        self._rejected = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(self, func: Callable[..., Coroutine], *args: Any, **kwargs: Any) -> Any:
        """Run ``func`` unless the circuit says the server is down."""
        async with self._lock:
            self._calls += 1
            self._admit()
            probing = self._state == CircuitState.HALF_OPEN
            if probing:
                self._probe_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            # cancellation says nothing about the server; free the slot
            if probing:
                self._probe_in_flight = False
            raise
        except Exception as e:
            await self._record(e if counts_as_failure(e) else None, probing)
            raise
        await self._record(None, probing)
        return result

    def reset(self) -> None:
        """Force CLOSED, e.g. after the user fixed the base URL."""
        self._state = CircuitState.CLOSED
        self._consecutive_faults = 0
        self._probe_in_flight = False
        self._last_fault = None

    # ── internals ────────────────────────────────────────────────────────

    def _admit(self) -> None:
        # caller holds the lock
        if self._state == CircuitState.CLOSED:
            return
        remaining = self._recovery_timeout - (self._clock() - self._opened_at)
        if self._state == CircuitState.OPEN and remaining <= 0:
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit breaker → HALF_OPEN (probing)")
            return
        if self._state == CircuitState.HALF_OPEN and not self._probe_in_flight:
            return
        self._rejected += 1
        if self._state == CircuitState.HALF_OPEN:
            raise CircuitOpenError("Server unavailable, checking whether it is back")
        raise CircuitOpenError(f"Server unavailable, retry in {max(remaining, 0):.0f}s")

    async def _record(self, fault: BaseException | None, probing: bool) -> None:
        async with self._lock:
            if probing:
                self._probe_in_flight = False

            if fault is None:
                if self._state == CircuitState.HALF_OPEN and probing:
                    logger.info("Circuit breaker → CLOSED (recovered)")
                    self._state = CircuitState.CLOSED
                if self._state == CircuitState.CLOSED:
                    self._consecutive_faults = 0
                return

            self._faults += 1
            self._consecutive_faults += 1
            self._last_fault = str(fault) or type(fault).__name__

            if self._state == CircuitState.HALF_OPEN and probing:
                self._trip("probe failed")
            elif self._state == CircuitState.CLOSED and self._consecutive_faults >= self._failure_threshold:
                self._trip(f"{self._consecutive_faults} consecutive faults")

    def _trip(self, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning("Circuit breaker → OPEN (%s): %s", reason, self._last_fault)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "consecutive_faults": self._consecutive_faults,
            "last_fault": self._last_fault,
            "calls": self._calls,
            "faults": self._faults,
            "rejected": self._rejected,
        }
