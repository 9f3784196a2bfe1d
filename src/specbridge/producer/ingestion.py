"""
Frame Ingestion
===============

Turns raw capture callbacks into compressed frames sent to the relay.

Pipeline per capture:
    on_capture(image)          capture thread, returns immediately
      -> FrameThrottle         drop if inside the min interval
      -> encode_jpeg           worker thread
      -> local FrameCache      latest frame for the violation detector
      -> RelayClient           worker thread, bounded timeout

Design Rules:
    - on_capture never blocks and never raises into the capture source
    - Throttle decisions never wait for an in-flight send
    - At most max_in_flight sends are outstanding; an admitted capture
      arriving while that many are pending is dropped and counted
    - Send failures update the status string; nothing is retried
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Optional, Protocol, Set

import numpy as np

from specbridge.producer.encoder import ImageEncodeError, encode_jpeg
from specbridge.producer.relay_client import RelayError
from specbridge.producer.throttle import FrameThrottle
from specbridge.relay.hub import FrameCache, IngestionError


logger = logging.getLogger(__name__)


class FrameSender(Protocol):
    """Anything that can deliver a JPEG frame to the relay."""

    async def send_frame(self, jpeg: bytes) -> int:
        ...


class FrameIngestor:
    """
    Throttled, non-blocking frame uploader.

    Attributes:
        throttle: Admission gate
        cache: Local cache receiving every encoded frame
        frames_acknowledged: Frames the relay accepted
        connection_status: Human-readable status ("Streaming", "Error: ...")

    Example:
        ingestor = FrameIngestor(sender=RelayClient(url), cache=FrameCache())
        ingestor.start()

        # From the capture SDK callback, any thread:
        ingestor.on_capture(bgr_image)
    """

    def __init__(
        self,
        sender: FrameSender,
        cache: Optional[FrameCache] = None,
        throttle: Optional[FrameThrottle] = None,
        jpeg_quality: int = 60,
        error_status_interval: float = 2.0,
        encoder: Callable[[np.ndarray, int], bytes] = encode_jpeg,
        max_in_flight: int = 1,
    ) -> None:
        """
        Initialize the ingestor.

        Args:
            sender: Relay client used for uploads
            cache: Local FrameCache (a new one if None)
            throttle: Admission gate (15 fps if None)
            jpeg_quality: Compression quality for outgoing frames
            error_status_interval: Minimum seconds between error status updates
            encoder: Image encoder (image, quality) -> bytes
            max_in_flight: Encode/send jobs allowed to be outstanding
        """
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")

        self.sender = sender
        self.cache = cache or FrameCache()
        self.throttle = throttle or FrameThrottle()
        self.jpeg_quality = jpeg_quality
        self.error_status_interval = error_status_interval
        self._encoder = encoder
        self.max_in_flight = max_in_flight

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._streaming: bool = False
        self._tasks: Set[asyncio.Task] = set()
        self._slot_lock = threading.Lock()
        self._active_sends: int = 0
        self._busy_drops: int = 0

        self._frames_acknowledged: int = 0
        self._send_errors: int = 0
        self._encode_errors: int = 0
        self._connection_status: str = "Disconnected"
        self._last_error_time: float = 0.0

    @property
    def streaming(self) -> bool:
        return self._streaming

    @property
    def frames_acknowledged(self) -> int:
        return self._frames_acknowledged

    @property
    def connection_status(self) -> str:
        return self._connection_status

    @property
    def in_flight(self) -> int:
        """Encode/send tasks not yet finished."""
        return len(self._tasks)

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Begin accepting captures.

        Args:
            loop: Event loop for encode/send work. Defaults to the running
                loop, so call from inside it when omitted.
        """
        self._loop = loop or asyncio.get_running_loop()
        self._streaming = True
        self._frames_acknowledged = 0
        self._connection_status = "Streaming"
        self.throttle.reset()
        with self._slot_lock:
            self._active_sends = 0
        logger.info("FrameIngestor started")

    def stop(self) -> None:
        """Stop accepting captures and cancel in-flight uploads."""
        self._streaming = False
        for task in list(self._tasks):
            task.cancel()
        with self._slot_lock:
            self._active_sends = 0
        self._connection_status = "Disconnected"
        logger.info(
            f"FrameIngestor stopped. Total frames sent: {self._frames_acknowledged}"
        )

    def on_capture(self, image: np.ndarray) -> None:
        """
        Capture notification from the camera source.

        Safe to call from any thread. Returns immediately; admitted frames
        are encoded and sent on the event loop.
        """
        if not self._streaming or self._loop is None:
            return

        if not self.throttle.try_acquire():
            return

        if not self._reserve_slot():
            return

        try:
            self._loop.call_soon_threadsafe(self._dispatch, image)
        except RuntimeError:
            # Loop closed while a capture was in flight
            self._release_slot()
            logger.debug("Capture dropped: event loop closed")

    def _reserve_slot(self) -> bool:
        with self._slot_lock:
            if self._active_sends >= self.max_in_flight:
                self._busy_drops += 1
                return False
            self._active_sends += 1
            return True

    def _release_slot(self) -> None:
        with self._slot_lock:
            self._active_sends = max(0, self._active_sends - 1)

    def _dispatch(self, image: np.ndarray) -> None:
        if not self._streaming:
            self._release_slot()
            return
        task = asyncio.create_task(self._encode_and_send(image))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _encode_and_send(self, image: np.ndarray) -> None:
        try:
            await self._upload(image)
        finally:
            self._release_slot()

    async def _upload(self, image: np.ndarray) -> None:
        try:
            jpeg = await asyncio.to_thread(self._encoder, image, self.jpeg_quality)
        except ImageEncodeError as e:
            self._encode_errors += 1
            logger.error(f"Failed to encode capture: {e}")
            return

        try:
            self.cache.store(jpeg)
        except IngestionError as e:
            logger.error(f"Encoded frame rejected by local cache: {e}")
            return

        try:
            await self.sender.send_frame(jpeg)
        except RelayError as e:
            self._handle_error(str(e))
            return

        self._frames_acknowledged += 1
        if self._connection_status != "Streaming":
            self._connection_status = "Streaming"

    def _handle_error(self, message: str) -> None:
        self._send_errors += 1
        now = time.monotonic()
        # Only update status every error_status_interval to avoid spam
        if now - self._last_error_time > self.error_status_interval:
            self._last_error_time = now
            self._connection_status = f"Error: {message}"
            logger.warning(f"Frame send error: {message}")

    def metrics(self) -> dict:
        return {
            "streaming": self._streaming,
            "frames_acknowledged": self._frames_acknowledged,
            "send_errors": self._send_errors,
            "encode_errors": self._encode_errors,
            "in_flight": self.in_flight,
            "busy_drops": self._busy_drops,
            "connection_status": self._connection_status,
            **self.throttle.metrics(),
        }
