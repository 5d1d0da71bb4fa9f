from __future__ import annotations

from typing import Callable

from .state import ConnectionHealth
from .utils import log, now_ms


class PeerConnection:
    """
    Retry/backoff bookkeeping for one remote peer.

    - not due yet -> skip the tick silently
    - success -> reachable, delay back to initial, retry gate cleared
    - failure -> unreachable, gate = now + delay, then delay doubles (capped)

    Only reachability transitions are logged.
    """

    INITIAL_DELAY_MS = 1000
    MAX_DELAY_MS = 15000

    def __init__(self, owner: str, peer: str, clock: Callable[[], float] = now_ms):
        self.owner = owner
        self.peer = peer
        self._clock = clock
        self.health = ConnectionHealth(reachable=False, retry_delay_ms=self.INITIAL_DELAY_MS)
        # unknown until the first attempt, so the first success is not a "recovery"
        self._attempted = False

    @property
    def reachable(self) -> bool:
        return self.health.reachable

    @property
    def retry_delay_ms(self) -> int:
        return self.health.retry_delay_ms

    @property
    def next_retry_at_ms(self):
        return self.health.next_retry_at_ms

    def can_attempt(self) -> bool:
        if self.health.next_retry_at_ms is None:
            return True
        return self._clock() >= self.health.next_retry_at_ms

    def record_success(self) -> bool:
        """Returns True on an unreachable -> reachable transition."""
        h = self.health
        recovered = not h.reachable
        if recovered:
            log(f"[{self.owner}] connected to {self.peer}")
        h.reachable = True
        h.retry_delay_ms = self.INITIAL_DELAY_MS
        h.next_retry_at_ms = None
        self._attempted = True
        return recovered

    def record_failure(self, err: Exception | None = None) -> bool:
        """Returns True on a reachable -> unreachable transition."""
        h = self.health
        lost = h.reachable or not self._attempted
        if lost:
            log(f"[{self.owner}] WARNING {self.peer} unavailable ({err!r}), retrying in {h.retry_delay_ms}ms")
        h.reachable = False
        h.next_retry_at_ms = self._clock() + h.retry_delay_ms
        h.retry_delay_ms = min(h.retry_delay_ms * 2, self.MAX_DELAY_MS)
        self._attempted = True
        return lost
