"""
Violation Detector Loop
=======================

Periodic PPE check over the latest captured frame.

States:
    IDLE            no frame analyzed yet, or the last tick had no frame
    ANALYZING       one inference call in flight
    COMPLETED_OK    last call produced a parsed classification
    COMPLETED_ERROR last call failed or its reply could not be parsed

Every `interval` seconds the loop fires a tick. A tick that fires while a
call is still in flight is skipped: no overlap and no backlog. A call that
times out is abandoned, not interrupted; its worker thread keeps the
detector busy until it returns and its late reply is discarded. Each
completed tick hands exactly one ViolationClassification to the
`on_classification` callback, which runs on the loop task and is the only
writer of alert state.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from specbridge.detection.classification import (
    ViolationCategory,
    ViolationClassification,
    indeterminate,
)
from specbridge.detection.inference import InferenceClient, InferenceError, classify_response
from specbridge.relay.hub import FrameCache


logger = logging.getLogger(__name__)


class DetectorState(str, Enum):
    """Detector lifecycle states."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    COMPLETED_OK = "completed_ok"
    COMPLETED_ERROR = "completed_error"


class ViolationDetector:
    """
    Polls a FrameCache and classifies frames through an InferenceClient.

    Attributes:
        cache: Source of the latest frame
        client: Vision backend
        interval: Seconds between ticks
        timeout: Seconds before an inference call is abandoned
        state: Current DetectorState
        last_classification: Result of the last completed tick

    Example:
        detector = ViolationDetector(cache, client, on_classification=handle)
        detector.start()
        ...
        await detector.stop()
    """

    def __init__(
        self,
        cache: FrameCache,
        client: InferenceClient,
        on_classification: Optional[Callable[[ViolationClassification], None]] = None,
        interval: float = 2.0,
        timeout: float = 30.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")

        self.cache = cache
        self.client = client
        self.on_classification = on_classification
        self.interval = interval
        self.timeout = timeout

        self._state: DetectorState = DetectorState.IDLE
        self._last_classification: Optional[ViolationClassification] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._inference_task: Optional[asyncio.Future] = None

        # Metrics
        self._ticks_fired: int = 0
        self._ticks_skipped: int = 0
        self._ticks_without_frame: int = 0
        self._inference_errors: int = 0
        self._consecutive_errors: int = 0

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def last_classification(self) -> Optional[ViolationClassification]:
        return self._last_classification

    @property
    def consecutive_errors(self) -> int:
        """Indeterminate results in a row (0 after any parsed result)."""
        return self._consecutive_errors

    @property
    def inference_pending(self) -> bool:
        """True while a backend call, including an abandoned one, is unfinished."""
        return self._inference_task is not None and not self._inference_task.done()

    # -------------------------------------------------------------------------
    # Single tick
    # -------------------------------------------------------------------------

    async def tick(self) -> Optional[ViolationClassification]:
        """
        Run one detection pass.

        Returns:
            The classification, or None if the tick was skipped (already
            analyzing, or no frame cached yet).
        """
        if self._state is DetectorState.ANALYZING or self.inference_pending:
            self._ticks_skipped += 1
            return None

        frame = self.cache.current
        if frame is None:
            self._ticks_without_frame += 1
            self._state = DetectorState.IDLE
            return None

        self._state = DetectorState.ANALYZING
        try:
            classification = await self._analyze(frame.payload)
        except asyncio.CancelledError:
            self._state = DetectorState.IDLE
            raise

        if classification.category is ViolationCategory.INDETERMINATE:
            self._state = DetectorState.COMPLETED_ERROR
            self._consecutive_errors += 1
        else:
            self._state = DetectorState.COMPLETED_OK
            self._consecutive_errors = 0

        self._last_classification = classification
        logger.debug(f"Frame {frame.sequence} classified as {classification.category.value}")

        if self.on_classification is not None:
            self.on_classification(classification)
        return classification

    async def _analyze(self, jpeg: bytes) -> ViolationClassification:
        call = asyncio.ensure_future(self.client.analyze(jpeg))
        call.add_done_callback(self._call_finished)
        self._inference_task = call
        try:
            text = await asyncio.wait_for(asyncio.shield(call), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._inference_errors += 1
            logger.error(
                f"Inference timed out after {self.timeout:.1f}s; "
                f"skipping ticks until the pending call returns"
            )
            return indeterminate(f"Timeout after {self.timeout:.1f}s")
        except InferenceError as e:
            self._inference_errors += 1
            logger.error(f"Inference error: {e}. Total errors: {self._inference_errors}")
            return indeterminate(str(e))

        return classify_response(text)

    def _call_finished(self, call: asyncio.Future) -> None:
        # Abandoned calls finish unobserved; consume their outcome here.
        if call.cancelled():
            return
        error = call.exception()
        if error is not None:
            logger.debug(f"Inference call ended with {type(error).__name__}: {error}")

    # -------------------------------------------------------------------------
    # Periodic loop
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic loop on the running event loop."""
        if self.running:
            return
        self._loop_task = asyncio.create_task(self.run(), name="violation_detector")
        logger.info(f"ViolationDetector started: interval={self.interval}s")

    async def stop(self) -> None:
        """Cancel the loop, any in-flight tick and its backend call."""
        tasks = [
            t for t in (self._loop_task, self._tick_task, self._inference_task)
            if t is not None and not t.done()
        ]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loop_task = None
        self._tick_task = None
        self._inference_task = None
        self._state = DetectorState.IDLE
        logger.info("ViolationDetector stopped")

    async def run(self) -> None:
        """
        Fire a tick every interval until cancelled.

        Ticks run as their own task so the schedule keeps its period even
        while an inference call is slow.
        """
        try:
            while True:
                self._ticks_fired += 1
                if self._tick_task is None or self._tick_task.done():
                    self._tick_task = asyncio.create_task(self._guarded_tick())
                else:
                    self._ticks_skipped += 1
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            logger.info("ViolationDetector loop cancelled")
            raise

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Detector tick error: {e}")

    def get_metrics(self) -> dict:
        return {
            "state": self._state.value,
            "ticks_fired": self._ticks_fired,
            "ticks_skipped": self._ticks_skipped,
            "ticks_without_frame": self._ticks_without_frame,
            "inference_errors": self._inference_errors,
            "consecutive_errors": self._consecutive_errors,
            "last_category": (
                self._last_classification.category.value
                if self._last_classification else None
            ),
        }
