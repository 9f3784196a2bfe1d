"""
Relay Viewer
============

WebSocket client for the relay's push subscription.

This module provides the RelayViewer class which:
    - Connects to the relay's /ws endpoint
    - Decodes frame, violation and violation_clear messages
    - Checks frame ordering (gaps and regressions are logged)
    - Tracks the latest frame and the current violation
    - Reconnects with a fixed backoff until stopped

Design Rules:
    - Does NOT decode image data beyond base64
    - Logs validation warnings but continues processing
    - A reconnect resets ordering checks (the relay sends a catch-up frame)
"""

import asyncio
import base64
import binascii
import json
import logging
from typing import Any, Callable, Optional

import websockets
from pydantic import ValidationError
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidHandshake,
)

from specbridge.models.messages import (
    FrameMessage,
    ViolationClearMessage,
    ViolationMessage,
    ViolationRecord,
)
from specbridge.relay.frame import Frame


logger = logging.getLogger(__name__)


class RelayViewerMetrics:
    """Metrics for RelayViewer observability."""

    __slots__ = (
        "frames_received",
        "violations_received",
        "clears_received",
        "reconnect_count",
        "last_frame_id",
        "validation_warnings",
        "parse_errors",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.violations_received: int = 0
        self.clears_received: int = 0
        self.reconnect_count: int = 0
        self.last_frame_id: int = -1
        self.validation_warnings: int = 0
        self.parse_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_received": self.frames_received,
            "violations_received": self.violations_received,
            "clears_received": self.clears_received,
            "reconnect_count": self.reconnect_count,
            "last_frame_id": self.last_frame_id,
            "validation_warnings": self.validation_warnings,
            "parse_errors": self.parse_errors,
        }


class RelayViewer:
    """
    Headless viewer of a relay.

    Attributes:
        url: WebSocket URL (e.g. ws://localhost:3000/ws)
        latest_frame: Most recent frame received
        current_violation: Active violation, None after a clear
        metrics: Operational metrics

    Example:
        viewer = RelayViewer("ws://localhost:3000/ws", on_violation=print)
        task = asyncio.create_task(viewer.run())
        ...
        await viewer.stop()
        await task
    """

    def __init__(
        self,
        url: str,
        reconnect_backoff_ms: int = 1000,
        max_reconnect_attempts: int = 0,
        on_frame: Optional[Callable[[Frame], None]] = None,
        on_violation: Optional[Callable[[ViolationRecord], None]] = None,
        on_clear: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Initialize the viewer.

        Args:
            url: WebSocket URL of the relay
            reconnect_backoff_ms: Backoff between reconnect attempts
            max_reconnect_attempts: Max attempts (0 = unlimited)
            on_frame: Called for every decoded frame
            on_violation: Called for every violation message
            on_clear: Called for every violation_clear message
        """
        self.url = url
        self.reconnect_backoff_ms = reconnect_backoff_ms
        self.max_reconnect_attempts = max_reconnect_attempts
        self.on_frame = on_frame
        self.on_violation = on_violation
        self.on_clear = on_clear

        self.latest_frame: Optional[Frame] = None
        self.current_violation: Optional[ViolationRecord] = None

        self._websocket: Optional[Any] = None
        self._connected: bool = False
        self._running: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()

        self.metrics = RelayViewerMetrics()

    @property
    def connected(self) -> bool:
        return self._connected

    async def run(self) -> None:
        """
        Receive until stop() is called, reconnecting on disconnect.
        """
        self._running = True
        self._stop_event.clear()

        logger.info(f"RelayViewer starting, connecting to {self.url}")

        while self._running:
            try:
                await self._connect_and_receive()
            except (OSError, ConnectionClosed, InvalidHandshake) as e:
                if not self._running:
                    break
                logger.error(f"Connection error: {e}")
                self._connected = False

            if not self._running:
                break

            if (
                self.max_reconnect_attempts > 0
                and self.metrics.reconnect_count >= self.max_reconnect_attempts
            ):
                logger.error(
                    f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded"
                )
                break

            self.metrics.reconnect_count += 1
            backoff_sec = self.reconnect_backoff_ms / 1000.0
            logger.info(
                f"Reconnecting in {backoff_sec:.1f}s "
                f"(attempt {self.metrics.reconnect_count})"
            )
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=backoff_sec)
                break
            except asyncio.TimeoutError:
                pass

        self._running = False
        logger.info("RelayViewer stopped")

    async def stop(self) -> None:
        """Signal the run loop to exit and close the connection."""
        logger.info("RelayViewer stopping...")
        self._running = False
        self._stop_event.set()

        if self._websocket is not None:
            try:
                await self._websocket.close()
            except ConnectionClosed:
                pass

        self._connected = False

    async def _connect_and_receive(self) -> None:
        async with websockets.connect(
            self.url,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=5,
            max_size=None,
        ) as ws:
            self._websocket = ws
            self._connected = True
            self.metrics.last_frame_id = -1
            logger.info(f"Connected to relay: {self.url}")

            try:
                async for message in ws:
                    if not self._running:
                        break
                    self.handle_message(message)
            except ConnectionClosedOK:
                logger.info("Connection closed normally")
            except ConnectionClosedError as e:
                logger.warning(f"Connection closed with error: {e}")
                raise
            finally:
                self._connected = False
                self._websocket = None

    def handle_message(self, raw: str) -> None:
        """
        Parse one push message and update viewer state.

        Malformed messages are counted and logged, never raised.
        """
        try:
            data = json.loads(raw)
            kind = data.get("type")
        except (json.JSONDecodeError, AttributeError) as e:
            self.metrics.parse_errors += 1
            logger.error(f"Failed to parse relay message: {e}")
            return

        try:
            if kind == "frame":
                self._handle_frame(FrameMessage.model_validate(data))
            elif kind == "violation":
                self._handle_violation(ViolationMessage.model_validate(data))
            elif kind == "violation_clear":
                self._handle_clear(ViolationClearMessage.model_validate(data))
            else:
                self.metrics.parse_errors += 1
                logger.warning(f"Unknown message type: {kind!r}")
        except ValidationError as e:
            self.metrics.parse_errors += 1
            logger.error(f"Invalid {kind} message: {e.error_count()} errors")

    def _handle_frame(self, message: FrameMessage) -> None:
        try:
            payload = base64.b64decode(message.data, validate=True)
        except (binascii.Error, ValueError) as e:
            self.metrics.parse_errors += 1
            logger.error(f"Invalid base64 in frame {message.frame_id}: {e}")
            return

        frame_id = message.frame_id
        if self.metrics.last_frame_id >= 0:
            expected_id = self.metrics.last_frame_id + 1
            if frame_id != expected_id:
                self.metrics.validation_warnings += 1
                if frame_id < expected_id:
                    logger.warning(
                        f"Frame ID went backwards: got {frame_id}, "
                        f"expected {expected_id}"
                    )
                else:
                    logger.warning(
                        f"Frame ID gap: got {frame_id}, expected {expected_id} "
                        f"(gap of {frame_id - expected_id} frames)"
                    )

        frame = Frame(
            payload=payload,
            sequence=frame_id,
            received_at=message.timestamp / 1000.0,
        )
        self.latest_frame = frame
        self.metrics.frames_received += 1
        self.metrics.last_frame_id = frame_id

        if self.on_frame is not None:
            self.on_frame(frame)

    def _handle_violation(self, message: ViolationMessage) -> None:
        self.current_violation = message.data
        self.metrics.violations_received += 1
        logger.info(f"Violation: {message.data.category} ({message.data.message})")

        if self.on_violation is not None:
            self.on_violation(message.data)

    def _handle_clear(self, message: ViolationClearMessage) -> None:
        self.current_violation = None
        self.metrics.clears_received += 1
        logger.info("Violation cleared")

        if self.on_clear is not None:
            self.on_clear()
