"""
Monitoring Session
==================

Producer-side runtime wiring capture ingestion, violation detection and
alert fanout into one start/stop lifecycle.

Data Flow:
    on_capture(image)
      -> FrameIngestor -> RelayClient.send_frame        (every admitted frame)
                       -> local FrameCache
    ViolationDetector (every interval) reads FrameCache
      -> AlertStateMachine.process
      -> AlertFanout -> NetworkAlertChannel (relay violation side channel)
                     -> LocalFeedback        (wearer's device)

Example:
    session = MonitoringSession.from_settings(settings)
    await session.start()
    camera.on_frame = session.on_capture
    ...
    await session.stop()
"""

import logging
from typing import Dict, Optional

import numpy as np

from specbridge.alerts.fanout import AlertFanout, NetworkAlertChannel
from specbridge.alerts.feedback import LocalFeedback, create_feedback_device
from specbridge.alerts.state_machine import AlertCategory, AlertStateMachine
from specbridge.config import Settings
from specbridge.detection.classification import ViolationCategory, ViolationClassification
from specbridge.detection.detector import ViolationDetector
from specbridge.detection.inference import InferenceClient, OpenRouterInferenceClient
from specbridge.producer.ingestion import FrameIngestor
from specbridge.producer.relay_client import RelayClient
from specbridge.producer.throttle import FrameThrottle
from specbridge.relay.hub import FrameCache


logger = logging.getLogger(__name__)


SAFETY_STATUS: Dict[ViolationCategory, str] = {
    ViolationCategory.COMPLIANT: "PPE compliant",
    ViolationCategory.FOOTWEAR: "Shoes required!",
    ViolationCategory.HANDWEAR: "Gloves required!",
    ViolationCategory.BOTH: "Shoes & gloves required!",
}


class MonitoringSession:
    """
    One streaming + PPE monitoring session.

    Attributes:
        ingestor: Throttled frame uploader
        detector: Periodic violation detector
        machine: Alert debounce state
        fanout: Alert delivery to relay and local device
        safety_status: Human-readable PPE status
    """

    def __init__(
        self,
        relay_client: RelayClient,
        inference_client: InferenceClient,
        fanout: AlertFanout,
        machine: Optional[AlertStateMachine] = None,
        throttle: Optional[FrameThrottle] = None,
        jpeg_quality: int = 60,
        error_status_interval: float = 2.0,
        detection_interval: float = 2.0,
        detection_timeout: float = 30.0,
    ) -> None:
        self.relay_client = relay_client
        self.cache = FrameCache()
        self.ingestor = FrameIngestor(
            sender=relay_client,
            cache=self.cache,
            throttle=throttle,
            jpeg_quality=jpeg_quality,
            error_status_interval=error_status_interval,
        )
        self.machine = machine or AlertStateMachine()
        self.fanout = fanout
        self.detector = ViolationDetector(
            cache=self.cache,
            client=inference_client,
            on_classification=self._on_classification,
            interval=detection_interval,
            timeout=detection_timeout,
        )

        self._running: bool = False
        self.safety_status: str = "Idle"
        self.category_status: Dict[str, str] = {
            AlertCategory.FOOTWEAR.value: "unknown",
            AlertCategory.HANDWEAR.value: "unknown",
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        relay_client: Optional[RelayClient] = None,
        inference_client: Optional[InferenceClient] = None,
    ) -> "MonitoringSession":
        """Build a session from configuration, with optional client overrides."""
        producer = settings.producer
        detection = settings.detection
        alerts = settings.alerts

        relay_client = relay_client or RelayClient(
            base_url=producer.relay_url,
            timeout=producer.request_timeout_seconds,
        )
        inference_client = inference_client or OpenRouterInferenceClient(
            api_key=detection.api_key,
            endpoint=detection.endpoint,
            model=detection.model,
            timeout=detection.timeout_seconds,
            max_tokens=detection.max_tokens,
            temperature=detection.temperature,
        )

        device = create_feedback_device(alerts.feedback.backend, alerts.feedback.commands)
        fanout = AlertFanout([
            NetworkAlertChannel(relay_client),
            LocalFeedback(
                device,
                cooldown=alerts.cooldown_seconds,
                sequence_delay=alerts.sequence_delay_seconds,
            ),
        ])

        return cls(
            relay_client=relay_client,
            inference_client=inference_client,
            fanout=fanout,
            machine=AlertStateMachine(cooldown=alerts.cooldown_seconds),
            throttle=FrameThrottle(min_interval=producer.min_frame_interval_ms / 1000.0),
            jpeg_quality=producer.jpeg_quality,
            error_status_interval=producer.error_status_interval_seconds,
            detection_interval=detection.interval_seconds,
            detection_timeout=detection.timeout_seconds,
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start ingestion and the detector loop on the running event loop."""
        if self._running:
            return
        self.fanout.open()
        self.ingestor.start()
        self.detector.start()
        self._running = True
        self.safety_status = "Monitoring"
        logger.info(f"Monitoring session started, relay={self.relay_client.base_url}")

    async def stop(self) -> None:
        """
        Stop everything.

        Pending alert deliveries are cancelled and alert state is reset
        without emitting a clear.
        """
        if not self._running:
            return
        self._running = False
        await self.detector.stop()
        self.ingestor.stop()
        await self.fanout.close()
        self.machine.reset()
        self.safety_status = "Idle"
        for key in self.category_status:
            self.category_status[key] = "unknown"
        logger.info("Monitoring session stopped")

    def on_capture(self, image: np.ndarray) -> None:
        """Capture callback; safe from any thread."""
        self.ingestor.on_capture(image)

    def _on_classification(self, classification: ViolationClassification) -> None:
        events = self.machine.process(classification)
        for event in events:
            self.fanout.dispatch(event)

        # A violation swallowed by the cooldown leaves the status as it was
        if classification.is_violation and not events:
            return

        category = classification.category
        if category is ViolationCategory.INDETERMINATE:
            failures = self.detector.consecutive_errors
            cause = classification.evidence[:80] or "inference failed"
            self.safety_status = f"Error: {cause} ({failures} in a row)"
            self.category_status = {key: "unknown" for key in self.category_status}
            return

        self.safety_status = SAFETY_STATUS[category]
        self.category_status = {
            AlertCategory.FOOTWEAR.value: "missing" if classification.footwear else "ok",
            AlertCategory.HANDWEAR.value: "missing" if classification.handwear else "ok",
        }

    def status(self) -> dict:
        return {
            "running": self._running,
            "connection_status": self.ingestor.connection_status,
            "frames_sent": self.ingestor.frames_acknowledged,
            "detector_state": self.detector.state.value,
            "safety_status": self.safety_status,
            "category_status": dict(self.category_status),
            "consecutive_failures": self.detector.consecutive_errors,
            "active_alerts": [c.value for c in self.machine.active_categories()],
        }
