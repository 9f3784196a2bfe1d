"""
Relay Module
============

Frame relay between one producer and many viewers.

This module provides:
    - Frame: Immutable accepted frame
    - FrameCache: Latest frame + sequence counter
    - BroadcastHub: Push fanout with late-joiner catch-up
    - PullCadenceMultiplexer: Fixed-rate multipart stream

Example:
    from specbridge.relay import BroadcastHub, PullCadenceMultiplexer

    hub = BroadcastHub(subscriber_queue_size=8)
    mjpeg = PullCadenceMultiplexer(hub.cache, interval=0.066)

    frame_id = hub.publish(jpeg_bytes)
"""

from specbridge.relay.frame import Frame
from specbridge.relay.hub import BroadcastHub, FrameCache, IngestionError, Subscriber
from specbridge.relay.multiplexer import PullCadenceMultiplexer


__all__ = [
    "Frame",
    "FrameCache",
    "BroadcastHub",
    "Subscriber",
    "IngestionError",
    "PullCadenceMultiplexer",
]
