"""
Rate limiters for upstream fair-use.

Injected into the sync service so tests can run without real delays.
"""

import time
import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class MinIntervalRateLimiter:
    """Enforces a minimum delay between consecutive calls to wait()."""

    def __init__(self, min_interval: float = 1.0, clock=time.monotonic, sleep=None):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Block until the next call is allowed.

        Returns False if cancel_event was set before or during the wait,
        True otherwise. The first call never waits.
        """
        with self._lock:
            if cancel_event is not None and cancel_event.is_set():
                return False

            if self._last is not None:
                remaining = self.min_interval - (self._clock() - self._last)
                if remaining > 0:
                    if self._sleep is not None:
                        self._sleep(remaining)
                    elif cancel_event is not None:
                        # Event.wait returns True as soon as the flag is set
                        if cancel_event.wait(remaining):
                            return False
                    else:
                        time.sleep(remaining)

            if cancel_event is not None and cancel_event.is_set():
                return False

            self._last = self._clock()
            return True


class NoopRateLimiter:
    """Never waits. Used in tests and for trusted local backends."""

    def wait(self, cancel_event: Optional[threading.Event] = None) -> bool:
        return not (cancel_event is not None and cancel_event.is_set())
