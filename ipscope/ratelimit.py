"""Request pacing for the geolocation provider.

The free ip-api.com tier allows 45 requests per minute. ``RateGate`` spaces
requests at least ``min_interval`` apart and honours provider-imposed
blocking windows reported through ``X-Ttl`` headers.
"""

import logging
import threading
import time
from collections.abc import Callable

from ipscope.errors import Cancelled

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL = 1.5

class RateGate:
    """Minimum-interval limiter with a monotonic "blocked until" deadline.

    All timestamps come from *clock* (``time.monotonic`` by default).  The
    gate serialises grants: at most one request is let through per
    ``min_interval``, and none before ``blocked_until``.

    Args:
        min_interval: Minimum spacing between granted requests, in seconds.
        clock: Monotonic clock returning seconds.
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval = min_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._last_request_at: float | None = None
        self._blocked_until: float | None = None

    @property
    def min_interval(self) -> float:
        return self._min_interval

    @property
    def last_request_at(self) -> float | None:
        with self._lock:
            return self._last_request_at

    @property
    def blocked_until(self) -> float | None:
        with self._lock:
            return self._blocked_until

    def await_turn(self, cancel: threading.Event | None = None) -> None:
        """Block until a request may be sent, then claim the slot.

        The wait is re-evaluated after every sleep because the blocking
        deadline may have moved while we were waiting.

        Args:
            cancel: Optional event; setting it aborts the wait.

        Raises:
            Cancelled: If *cancel* is set before the slot is granted.
                ``last_request_at`` is left untouched.
        """
        if cancel is None:
            cancel = threading.Event()

        while True:
            if cancel.is_set():
                raise Cancelled("wait for geolocation rate limit allowance: cancelled")

            with self._lock:
                now = self._clock()
                wait = self._wait_locked(now)
                if wait <= 0:
                    self._last_request_at = now
                    return

            logger.debug("Rate gate closed; waiting %.3fs", wait)
            if cancel.wait(wait):
                raise Cancelled("wait for geolocation rate limit allowance: cancelled")

    def report_rate_limited(self, ttl: str | int | None) -> None:
        """Extend the blocking window by *ttl* seconds from now.

        Non-integer, missing, or non-positive values are ignored.  The
        deadline never moves backwards.
        """
        seconds = _parse_ttl(ttl)
        if seconds is None:
            return

        with self._lock:
            until = self._clock() + seconds
            if self._blocked_until is None or until > self._blocked_until:
                self._blocked_until = until
                logger.warning(
                    "Geolocation provider rate limit hit; pausing lookups for %ds",
                    seconds,
                )

    def _wait_locked(self, now: float) -> float:
        wait = 0.0
        if self._blocked_until is not None:
            wait = max(wait, self._blocked_until - now)
        if self._last_request_at is not None:
            wait = max(wait, self._last_request_at + self._min_interval - now)
        return wait


def _parse_ttl(ttl: str | int | None) -> int | None:
    """Return *ttl* as a positive int, or ``None``."""
    if ttl is None or isinstance(ttl, bool):
        return None
    try:
        seconds = int(str(ttl).strip())
    except ValueError:
        return None
    if seconds <= 0:
        return None
    return seconds
