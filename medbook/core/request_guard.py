"""
Per-key request guard for polling the messaging gateway
(QR code refreshes, connection state checks).

Per key it allows a single in-flight request, enforces a minimum interval
between request starts and opens a breaker after too many starts in a rolling
window or too many consecutive failures. While open, every request for that
key is refused until the cool-down elapses.
"""

import logging
import time
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from threading import Lock

from pydantic import BaseModel

from medbook.core import config

logger = logging.getLogger(__name__)

REFUSED_IN_FLIGHT = 'in_flight'
REFUSED_TOO_SOON = 'too_soon'
REFUSED_CIRCUIT_OPEN = 'circuit_open'


class GuardDecision(BaseModel):
    allowed: bool
    reason: str | None = None
    retry_after_s: float = 0.0


class _KeyState:
    def __init__(self) -> None:
        self.in_flight = False
        self.last_started_s: float | None = None
        self.recent_starts: deque[float] = deque()
        self.consecutive_failures = 0
        self.open_until_s: float | None = None


class RequestRefused(Exception):
    def __init__(self, key: str, decision: GuardDecision):
        super().__init__(f'Request for {key!r} refused: {decision.reason}')
        self.key = key
        self.decision = decision


class RequestGuard:
    def __init__(
        self,
        min_interval_s: float,
        max_requests: int,
        window_s: float,
        cooldown_s: float,
        max_failures: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval_s = min_interval_s
        self.max_requests = max_requests
        self.window_s = window_s
        self.cooldown_s = cooldown_s
        self.max_failures = max_failures
        self._clock = clock
        self._states: dict[str, _KeyState] = {}
        self._lock = Lock()

    def acquire(self, key: str, now: float | None = None) -> GuardDecision:
        """Try to start a request for ``key``; the caller must release it if allowed."""
        now = self._clock() if now is None else now

        with self._lock:
            state = self._states.setdefault(key, _KeyState())

            if state.open_until_s is not None:
                if now < state.open_until_s:
                    return GuardDecision(
                        allowed=False,
                        reason=REFUSED_CIRCUIT_OPEN,
                        retry_after_s=state.open_until_s - now,
                    )
                state.open_until_s = None
                state.recent_starts.clear()
                state.consecutive_failures = 0
                logger.info('Request guard closed for %s after cool-down', key)

            if state.in_flight:
                return GuardDecision(allowed=False, reason=REFUSED_IN_FLIGHT)

            if state.last_started_s is not None:
                elapsed = now - state.last_started_s
                if elapsed < self.min_interval_s:
                    return GuardDecision(
                        allowed=False,
                        reason=REFUSED_TOO_SOON,
                        retry_after_s=self.min_interval_s - elapsed,
                    )

            while state.recent_starts and now - state.recent_starts[0] >= self.window_s:
                state.recent_starts.popleft()

            if len(state.recent_starts) >= self.max_requests:
                self._trip(key, state, now)
                return GuardDecision(allowed=False, reason=REFUSED_CIRCUIT_OPEN, retry_after_s=self.cooldown_s)

            state.in_flight = True
            state.last_started_s = now
            state.recent_starts.append(now)
            return GuardDecision(allowed=True)

    def release(self, key: str, now: float | None = None, success: bool = True) -> None:
        now = self._clock() if now is None else now

        with self._lock:
            state = self._states.get(key)
            if state is None:
                return
            state.in_flight = False
            if success:
                state.consecutive_failures = 0
                return
            state.consecutive_failures += 1
            if state.consecutive_failures >= self.max_failures:
                self._trip(key, state, now)

    def reset(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)

    def snapshot(self, key: str) -> dict:
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return {'in_flight': False, 'recent_requests': 0, 'consecutive_failures': 0, 'circuit_open': False}
            return {
                'in_flight': state.in_flight,
                'recent_requests': len(state.recent_starts),
                'consecutive_failures': state.consecutive_failures,
                'circuit_open': state.open_until_s is not None,
            }

    @contextmanager
    def guarded(self, key: str) -> Iterator[GuardDecision]:
        decision = self.acquire(key)
        if not decision.allowed:
            raise RequestRefused(key, decision)
        failed = True
        try:
            yield decision
            failed = False
        finally:
            # Interrupts count as failures.
            self.release(key, success=not failed)

    def _trip(self, key: str, state: _KeyState, now: float) -> None:
        state.open_until_s = now + self.cooldown_s
        logger.warning(
            'Request guard opened for %s (%d recent requests, %d consecutive failures)',
            key,
            len(state.recent_starts),
            state.consecutive_failures,
        )


def build_gateway_guard(clock: Callable[[], float] = time.monotonic) -> RequestGuard:
    return RequestGuard(
        min_interval_s=config.GATEWAY_MIN_INTERVAL_SECONDS,
        max_requests=config.GATEWAY_MAX_REQUESTS_PER_WINDOW,
        window_s=config.GATEWAY_WINDOW_SECONDS,
        cooldown_s=config.GATEWAY_COOLDOWN_SECONDS,
        max_failures=config.GATEWAY_MAX_FAILURES,
        clock=clock,
    )
