"""
Data Models
===========

Pydantic wire schemas for SpecBridge.

Models:
    Push subscription:
        - FrameMessage: Frame pushed to viewers
        - ViolationMessage: Violation raised
        - ViolationClearMessage: Violations cleared

    Relay HTTP:
        - ViolationReport: Violation ingress payload
        - ViolationRecord: Current violation held by the relay
        - IngestResponse: Frame upload response
        - RelayStatus: Status query response
"""

from specbridge.models.messages import (
    FrameMessage,
    IngestResponse,
    RelayStatus,
    ViolationClearMessage,
    ViolationMessage,
    ViolationRecord,
    ViolationReport,
    now_ms,
)

__all__ = [
    "FrameMessage",
    "ViolationMessage",
    "ViolationClearMessage",
    "ViolationReport",
    "ViolationRecord",
    "IngestResponse",
    "RelayStatus",
    "now_ms",
]
