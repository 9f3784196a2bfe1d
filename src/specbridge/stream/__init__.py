"""
Stream Module
=============

Client side of the relay's push subscription.

Example:
    from specbridge.stream import RelayViewer

    viewer = RelayViewer("ws://localhost:3000/ws")
    task = asyncio.create_task(viewer.run())
"""

from specbridge.stream.consumer import RelayViewer, RelayViewerMetrics


__all__ = [
    "RelayViewer",
    "RelayViewerMetrics",
]
