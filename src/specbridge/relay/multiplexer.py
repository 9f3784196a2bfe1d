"""
Pull-Cadence Multiplexer
========================

Constant-rate multipart stream over the FrameCache.

Each connected consumer gets its own async generator that re-reads the
current frame on a fixed tick, independent of how fast the producer
publishes, and wraps it in a multipart boundary so a continuous byte
stream can be split back into JPEG images (MJPEG over HTTP).

Design Rules:
    - Ticks with no cached frame emit nothing (no empty parts)
    - Ticks follow a monotonic deadline, so slow writes don't drift the rate
    - Closing or cancelling the generator ends the consumer's timer
"""

import asyncio
import logging
import time
from typing import AsyncIterator

from specbridge.relay.frame import Frame
from specbridge.relay.hub import FrameCache


logger = logging.getLogger(__name__)


class PullCadenceMultiplexer:
    """
    Produces multipart/x-mixed-replace streams from a FrameCache.

    Attributes:
        cache: FrameCache to read from
        interval: Tick period in seconds (~66ms for 15 fps)
        boundary: Multipart boundary marker
        active_consumers: Number of open streams
    """

    def __init__(
        self,
        cache: FrameCache,
        interval: float = 0.066,
        boundary: str = "frame",
        content_type: str = "image/jpeg",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")

        self.cache = cache
        self.interval = interval
        self.boundary = boundary
        self.content_type = content_type
        self._active_consumers: int = 0
        self._parts_sent: int = 0

    @property
    def media_type(self) -> str:
        """Content-Type header for the HTTP response."""
        return f"multipart/x-mixed-replace; boundary={self.boundary}"

    @property
    def active_consumers(self) -> int:
        return self._active_consumers

    @property
    def parts_sent(self) -> int:
        return self._parts_sent

    def encode_part(self, frame: Frame) -> bytes:
        """Wrap one frame in the multipart delimiter."""
        return (
            b"--" + self.boundary.encode() + b"\r\n"
            b"Content-Type: " + self.content_type.encode() + b"\r\n"
            b"Content-Length: " + str(frame.size).encode() + b"\r\n"
            b"\r\n" + frame.payload + b"\r\n"
        )

    async def stream(self) -> AsyncIterator[bytes]:
        """
        Yield one multipart part per tick until the consumer goes away.

        Yields:
            Encoded multipart parts
        """
        self._active_consumers += 1
        logger.info(f"Stream client connected, total={self._active_consumers}")

        next_tick = time.monotonic()
        try:
            while True:
                frame = self.cache.current
                if frame is not None:
                    yield self.encode_part(frame)
                    self._parts_sent += 1

                next_tick += self.interval
                delay = next_tick - time.monotonic()
                if delay < 0:
                    # Fell behind; restart the schedule from now
                    next_tick = time.monotonic()
                    delay = 0
                await asyncio.sleep(delay)
        finally:
            self._active_consumers -= 1
            logger.info(f"Stream client disconnected, total={self._active_consumers}")
