"""
Frame Throttle
==============

Minimum-interval admission gate for outgoing frames.

Capture callbacks arrive at whatever rate the camera delivers them. The
throttle admits one capture per interval, measured from the last admitted
one, and drops the rest. Nothing is queued.
"""

import logging
import threading
import time
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class FrameThrottle:
    """
    Thread-safe minimum-interval gate.

    Attributes:
        min_interval: Seconds required between two admitted frames
        admitted_count: Frames let through
        dropped_count: Frames rejected inside the interval

    Example:
        throttle = FrameThrottle(min_interval=1 / 15)
        if throttle.try_acquire():
            send(frame)
    """

    def __init__(
        self,
        min_interval: float = 1.0 / 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")

        self.min_interval = min_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._last_admitted: Optional[float] = None
        self._admitted_count: int = 0
        self._dropped_count: int = 0

    @property
    def admitted_count(self) -> int:
        return self._admitted_count

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    def try_acquire(self, now: Optional[float] = None) -> bool:
        """
        Admit a frame if the interval since the last admission has passed.

        Args:
            now: Current clock reading (defaults to the throttle's clock)

        Returns:
            True if the caller may send this frame.
        """
        if now is None:
            now = self._clock()

        with self._lock:
            if (
                self._last_admitted is not None
                and now - self._last_admitted < self.min_interval
            ):
                self._dropped_count += 1
                return False

            self._last_admitted = now
            self._admitted_count += 1
            return True

    def reset(self) -> None:
        """Forget the last admission and zero the counters."""
        with self._lock:
            self._last_admitted = None
            self._admitted_count = 0
            self._dropped_count = 0

    def metrics(self) -> dict:
        return {
            "min_interval": self.min_interval,
            "admitted_count": self._admitted_count,
            "dropped_count": self._dropped_count,
        }
