"""Rate limiter – per-user sliding window for relay submissions."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)

PRUNE_EVERY = 500  # checks between sweeps of idle users


class SlidingWindowLimiter:
    """In-memory sliding-window counter keyed by user id.

    Not durable: a restart empties every window. Administrators are exempt,
    which the caller enforces by not calling ``check`` for them at all.
    """

    def __init__(
        self,
        max_events: int = 3,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_events = max_events
        self._window = window
        self._clock = clock
        self._events: dict[int, deque[float]] = {}
        self._checks = 0

    def check(self, user_id: int) -> bool:
        """Record an event for *user_id* and return True if it is over the limit.

        The event is recorded before the decision, so a rejected event still
        occupies a slot until it ages out of the window.
        """
        self._checks += 1
        if self._checks % PRUNE_EVERY == 0:
            self.prune()

        now = self._clock()
        timestamps = self._events.setdefault(user_id, deque())
        cutoff = now - self._window
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()
        timestamps.append(now)

        limited = len(timestamps) > self._max_events
        if limited:
            logger.debug(
                "User %d rate limited (%d events in %.0fs)",
                user_id,
                len(timestamps),
                self._window,
            )
        return limited

    def prune(self) -> int:
        """Drop users whose windows are entirely expired. Returns how many."""
        cutoff = self._clock() - self._window
        stale = [uid for uid, ts in self._events.items() if not ts or ts[-1] <= cutoff]
        for uid in stale:
            del self._events[uid]
        return len(stale)

    @property
    def tracked_users(self) -> int:
        return len(self._events)
