"""
SpecBridge
==========

Live first-person video relay with PPE violation alerts.

A wearable camera (or a phone bridging it) streams throttled JPEG frames to
a relay server, which fans them out to any number of viewers. In parallel, a
periodic detector asks a vision model whether the wearer's visible feet and
hands are protected, and debounced alerts go both to the wearer's device and
through the relay to every viewer.

Components:
    - relay: Frame cache, broadcast hub, multipart pull stream (server side)
    - producer: Throttle, JPEG encoding, relay client, monitoring session
    - detection: Vision inference, classification, detector loop
    - alerts: Debounce state machine and multi-channel fanout
    - stream: Headless viewer client

Example:
    # Relay
    uvicorn specbridge.main:app --port 3000

    # Producer
    python scripts/run_producer.py --source 0
"""

__version__ = "0.1.0"
