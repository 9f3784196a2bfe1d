"""
SpecBridge Relay Server
=======================

FastAPI entry point for the frame relay.

The relay accepts JPEG frames from a single producer and fans them out to
any number of viewers, together with the producer's violation alerts.

Endpoints:
    GET  /                      - Service information
    GET  /api/health            - Liveness + relay status
    POST /api/frame             - Frame ingress (raw image/jpeg body)
    POST /api/violation         - Violation ingress (JSON)
    POST /api/violation/clear   - Clear current violation
    GET  /stream.mjpeg          - Fixed-rate multipart stream
    WS   /ws                    - Push subscription
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.websockets import WebSocketDisconnect

from specbridge.config import Settings, settings as default_settings
from specbridge.models import IngestResponse, ViolationReport
from specbridge.relay import BroadcastHub, IngestionError, PullCadenceMultiplexer, Subscriber


logger = logging.getLogger(__name__)

# Close code sent to a subscriber dropped for falling behind
WS_CLOSE_TRY_AGAIN_LATER = 1013


# =============================================================================
# WebSocket Pumps
# =============================================================================

async def _pump_messages(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Drain the subscriber's queue into the socket, in order."""
    while True:
        await subscriber.send_next(websocket.send_text)


async def _watch_disconnect(websocket: WebSocket) -> None:
    """Return once the client goes away. Inbound messages are ignored."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def serve_subscriber(websocket: WebSocket, hub: BroadcastHub) -> None:
    """
    Serve one accepted WebSocket as a hub subscriber until either side ends.

    A subscriber the hub drops for falling behind is closed with 1013.
    """
    subscriber = hub.subscribe()
    logger.info(f"WebSocket client {websocket.client} -> subscriber {subscriber.subscriber_id}")

    send_task = asyncio.create_task(_pump_messages(websocket, subscriber))
    receive_task = asyncio.create_task(_watch_disconnect(websocket))
    closed_task = asyncio.create_task(subscriber.wait_closed())

    try:
        done, pending = await asyncio.wait(
            [send_task, receive_task, closed_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.debug(f"Subscriber {subscriber.subscriber_id} send error: {error}")

        if closed_task in done:
            try:
                await websocket.close(code=WS_CLOSE_TRY_AGAIN_LATER)
            except (RuntimeError, WebSocketDisconnect):
                pass  # Socket already closed by the client
    finally:
        hub.unsubscribe(subscriber)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    hub: Optional[BroadcastHub] = None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Configuration (module settings if None)
        hub: BroadcastHub to serve (a new one if None)

    Returns:
        FastAPI application with the hub on ``app.state.hub``
    """
    settings = settings or default_settings
    relay_cfg = settings.relay

    hub = hub or BroadcastHub(
        subscriber_queue_size=relay_cfg.subscriber_queue_size,
        log_every_n_frames=relay_cfg.log_every_n_frames,
    )
    multiplexer = PullCadenceMultiplexer(
        hub.cache,
        interval=relay_cfg.stream_interval_ms / 1000.0,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager."""
        app.state.startup_time = time.time()
        logger.info(f"Starting {relay_cfg.name} {relay_cfg.version}")
        logger.info("Endpoints: /ws, /stream.mjpeg, /api/frame, /api/health")

        yield

        logger.info("Shutting down relay...")
        closed = hub.close()
        logger.info(f"Closed {closed} subscribers, shutdown complete")

    app = FastAPI(
        title="SpecBridge Relay",
        description="Live frame relay with PPE violation side channel",
        version=relay_cfg.version,
        lifespan=lifespan,
    )
    app.state.hub = hub
    app.state.multiplexer = multiplexer
    app.state.settings = settings
    app.state.startup_time = time.time()

    # -------------------------------------------------------------------------
    # HTTP Endpoints
    # -------------------------------------------------------------------------

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": "SpecBridge Relay",
            "name": relay_cfg.name,
            "version": relay_cfg.version,
            "status": "running",
            "uptime_seconds": round(time.time() - app.state.startup_time, 1),
        })

    @app.get("/api/health")
    async def health() -> JSONResponse:
        """Relay liveness, cached-frame state, client counts, current violation."""
        status = hub.status(stream_clients=multiplexer.active_consumers)
        return JSONResponse(status.model_dump(mode="json", by_alias=True))

    @app.post("/api/frame")
    async def ingest_frame(request: Request) -> JSONResponse:
        """Accept one compressed frame from the producer."""
        body = await request.body()

        if len(body) > relay_cfg.max_frame_bytes:
            logger.warning(f"Rejected oversized frame: {len(body)} bytes")
            return JSONResponse({"error": "Frame too large"}, status_code=413)

        try:
            frame_id = hub.publish(body)
        except IngestionError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        return JSONResponse(IngestResponse(frame_id=frame_id).model_dump(by_alias=True))

    @app.post("/api/violation")
    async def report_violation(report: ViolationReport) -> JSONResponse:
        """Record a violation and broadcast it to push subscribers."""
        record = hub.raise_violation(report)
        return JSONResponse({
            "status": "ok",
            "violation": record.model_dump(mode="json", by_alias=True),
        })

    @app.post("/api/violation/clear")
    async def clear_violation() -> JSONResponse:
        """Clear the current violation and broadcast the clear."""
        hub.clear_violation()
        return JSONResponse({"status": "ok"})

    @app.get("/stream.mjpeg")
    async def mjpeg_stream() -> StreamingResponse:
        """Continuous multipart stream of the current frame."""
        return StreamingResponse(
            multiplexer.stream(),
            media_type=multiplexer.media_type,
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    # -------------------------------------------------------------------------
    # WebSocket Endpoints
    # -------------------------------------------------------------------------

    @app.websocket("/ws")
    async def push_subscription(websocket: WebSocket) -> None:
        """Push subscription: current frame on join, then every publish."""
        await websocket.accept()
        await serve_subscriber(websocket, hub)

    return app


# =============================================================================
# Module Application (uvicorn target)
# =============================================================================

app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", default_settings.relay.port))

    uvicorn.run(
        "specbridge.main:app",
        host=default_settings.relay.host,
        port=port,
        reload=False,
    )
