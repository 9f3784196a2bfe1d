"""
Wire Message Schemas
====================

Pydantic models for every message crossing the relay boundary.

Push subscription (relay -> viewer):
    {"type": "frame", "data": "<base64 JPEG>", "timestamp": 1707321234567, "frameId": 42}
    {"type": "violation", "data": {"category": "shoes", "message": "...",
                                   "timestamp": ..., "receivedAt": ...}}
    {"type": "violation_clear", "timestamp": 1707321234567}

Violation ingress (producer -> relay):
    {"category": "shoes", "message": "Shoes required!", "timestamp": 1707321234567}

The legacy key "type" is accepted in place of "category" on ingress.
Timestamps are UNIX milliseconds.
"""

import time
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field


def now_ms() -> int:
    """Current UNIX time in milliseconds."""
    return int(time.time() * 1000)


class FrameMessage(BaseModel):
    """Frame pushed to every subscriber, one per accepted ingress call."""

    type: Literal["frame"] = "frame"
    data: str = Field(..., description="Base64-encoded JPEG frame data")
    timestamp: int = Field(..., description="Acceptance time (UNIX ms)")
    frame_id: int = Field(..., ge=1, alias="frameId", description="Frame sequence number")

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True


class ViolationReport(BaseModel):
    """Violation raised by the producer's alert fanout."""

    category: str = Field(
        default="unknown",
        validation_alias=AliasChoices("category", "type"),
        description="Violation category: 'shoes', 'gloves', 'both'",
    )
    message: str = Field(default="", description="Human-readable alert text")
    timestamp: Optional[int] = Field(
        default=None,
        description="Time the producer raised the alert (UNIX ms)",
    )


class ViolationRecord(BaseModel):
    """Current violation as held by the relay and broadcast to viewers."""

    category: str
    message: str
    timestamp: int
    received_at: int = Field(..., alias="receivedAt")

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True


class ViolationMessage(BaseModel):
    """Broadcast when the producer raises a violation."""

    type: Literal["violation"] = "violation"
    data: ViolationRecord


class ViolationClearMessage(BaseModel):
    """Broadcast when the producer clears all violations."""

    type: Literal["violation_clear"] = "violation_clear"
    timestamp: int = Field(default_factory=now_ms)


class IngestResponse(BaseModel):
    """Response to a successful frame upload."""

    status: str = "ok"
    frame_id: int = Field(..., alias="frameId")

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True


class RelayStatus(BaseModel):
    """Relay liveness and state summary."""

    status: str = "ok"
    has_frame: bool = Field(..., alias="hasFrame")
    frame_count: int = Field(..., alias="frameCount")
    clients: int = Field(..., description="Connected push subscribers")
    stream_clients: int = Field(default=0, alias="streamClients")
    dropped_subscribers: int = Field(default=0, alias="droppedSubscribers")
    current_violation: Optional[ViolationRecord] = Field(default=None, alias="currentViolation")

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True
