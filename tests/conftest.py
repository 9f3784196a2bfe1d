"""
Test Configuration
==================

Pytest fixtures and in-memory collaborators for SpecBridge tests.
"""

import asyncio
from typing import List, Optional

import numpy as np
import pytest

from specbridge.detection.inference import InferenceError
from specbridge.producer.relay_client import RelayError


COMPLIANT_REPLY = (
    '{"has_legs_or_feet": true, "has_shoes": true, '
    '"has_hands": true, "has_gloves": true}'
)
BAREFOOT_REPLY = (
    '{"has_legs_or_feet": true, "has_shoes": false, '
    '"has_hands": false, "has_gloves": false}'
)
BOTH_REPLY = (
    '{"has_legs_or_feet": true, "has_shoes": false, '
    '"has_hands": true, "has_gloves": false}'
)


class FakeInferenceClient:
    """Scripted vision backend. Optionally blocks until released."""

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[str] = None):
        self.replies = list(replies or [COMPLIANT_REPLY])
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def hold(self) -> None:
        """Block every call until release()."""
        self.gate = asyncio.Event()

    def release(self) -> None:
        if self.gate is not None:
            self.gate.set()

    async def analyze(self, jpeg: bytes) -> str:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.error:
                raise InferenceError(self.error)
            reply = self.replies[0] if len(self.replies) == 1 else self.replies.pop(0)
            return reply
        finally:
            self.in_flight -= 1


class FakeRelayClient:
    """Records what the producer would have sent to the relay."""

    def __init__(self, fail: bool = False, violation_delay: float = 0.0):
        self.base_url = "http://relay.test"
        self.fail = fail
        self.violation_delay = violation_delay
        self.log: List[str] = []
        self.frames: List[bytes] = []
        self.violations: List[dict] = []
        self.clears = 0

    async def send_frame(self, jpeg: bytes) -> int:
        if self.fail:
            raise RelayError("Connection refused")
        self.frames.append(jpeg)
        return len(self.frames)

    async def send_violation(self, category: str, message: str, timestamp: int) -> None:
        if self.violation_delay:
            await asyncio.sleep(self.violation_delay)
        if self.fail:
            raise RelayError("Connection refused")
        self.violations.append(
            {"category": category, "message": message, "timestamp": timestamp}
        )
        self.log.append("violation")

    async def clear_violation(self) -> None:
        if self.fail:
            raise RelayError("Connection refused")
        self.clears += 1
        self.log.append("clear")


@pytest.fixture
def fake_inference():
    """Factory for scripted inference clients."""
    return FakeInferenceClient


@pytest.fixture
def fake_relay():
    """Factory for recording relay clients."""
    return FakeRelayClient


@pytest.fixture
def sample_image():
    """Small BGR capture buffer."""
    image = np.zeros((48, 64, 3), dtype=np.uint8)
    image[:, :32] = (0, 128, 255)
    return image


@pytest.fixture
def sample_jpeg():
    """Opaque payload standing in for a JPEG frame."""
    return b"\xff\xd8\xff\xe0fake-jpeg-payload\xff\xd9"
