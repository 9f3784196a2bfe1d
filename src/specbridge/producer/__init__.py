"""
Producer Module
===============

Glasses/phone side of the bridge: frame ingestion toward the relay.

Components:
    - FrameThrottle: Minimum-interval admission gate
    - encode_jpeg: Capture image to JPEG bytes
    - RelayClient: HTTP client for relay ingress and violations
    - FrameIngestor: Non-blocking capture-to-relay pipeline

The full runtime (ingestion + detection + alerts) lives in
specbridge.producer.session.MonitoringSession.
"""

from specbridge.producer.throttle import FrameThrottle
from specbridge.producer.encoder import ImageEncodeError, encode_jpeg
from specbridge.producer.relay_client import RelayClient, RelayError
from specbridge.producer.ingestion import FrameIngestor, FrameSender


__all__ = [
    "FrameThrottle",
    "ImageEncodeError",
    "encode_jpeg",
    "RelayClient",
    "RelayError",
    "FrameIngestor",
    "FrameSender",
]
