"""
Frame Data Model
=================

Internal frame representation shared by the relay and the producer.

Design Rules:
    - A Frame is immutable once the cache accepts it
    - Payload bytes are opaque (never decoded here)
    - The sequence number is assigned by the FrameCache, never by callers
"""

import base64
from dataclasses import dataclass

from specbridge.models.messages import FrameMessage


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One compressed image accepted into a FrameCache.

    Attributes:
        payload: Compressed image bytes (JPEG)
        sequence: Strictly increasing number assigned on acceptance
        received_at: UNIX timestamp of acceptance
    """

    payload: bytes
    sequence: int
    received_at: float

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.payload)

    def to_message(self) -> FrameMessage:
        """Build the push-subscription message for this frame."""
        return FrameMessage(
            data=base64.b64encode(self.payload).decode("ascii"),
            timestamp=int(self.received_at * 1000),
            frame_id=self.sequence,
        )

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return (
            f"Frame(sequence={self.sequence}, "
            f"received_at={self.received_at:.3f}, "
            f"size={self.size})"
        )
