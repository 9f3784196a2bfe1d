#!/usr/bin/env python3
"""
Relay Watch Script
==================

Headless viewer for a running relay.

This script:
    1. Subscribes to the relay's /ws push channel
    2. Runs for a configurable duration (0 = until Ctrl+C)
    3. Logs frame rate and violation state every report interval
    4. Reports a final summary

Usage:
    python scripts/watch_relay.py --url ws://localhost:3000/ws
    python scripts/watch_relay.py --duration 60 --report-interval 5
"""

import argparse
import asyncio
import logging
import os
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from specbridge.models import ViolationRecord
from specbridge.stream import RelayViewer


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _announce_violation(record: ViolationRecord) -> None:
    logger.warning(f"VIOLATION [{record.category}] {record.message}")


def _announce_clear() -> None:
    logger.info("All clear")


async def watch(url: str, duration: int, report_interval: int) -> dict:
    """
    Watch the relay until the duration elapses.

    Args:
        url: WebSocket URL of the relay
        duration: Seconds to run (0 = unlimited)
        report_interval: Seconds between progress reports

    Returns:
        Final metrics dict
    """
    logger.info("=" * 60)
    logger.info(f"Watching relay: {url}")
    logger.info("=" * 60)

    viewer = RelayViewer(
        url=url,
        reconnect_backoff_ms=1000,
        on_violation=_announce_violation,
        on_clear=_announce_clear,
    )
    viewer_task = asyncio.create_task(viewer.run())

    start_time = time.time()
    last_report_time = start_time
    last_frame_count = 0

    try:
        while duration <= 0 or time.time() - start_time < duration:
            since_report = time.time() - last_report_time
            if since_report >= report_interval:
                metrics = viewer.metrics
                fps = (metrics.frames_received - last_frame_count) / since_report
                violation = viewer.current_violation

                logger.info("-" * 40)
                logger.info(f"  Connected: {viewer.connected}")
                logger.info(f"  Frames received: {metrics.frames_received} ({fps:.1f} fps)")
                logger.info(f"  Last frame ID: {metrics.last_frame_id}")
                logger.info(f"  Violation: {violation.category if violation else 'none'}")
                logger.info(f"  Reconnects: {metrics.reconnect_count}")

                last_report_time = time.time()
                last_frame_count = metrics.frames_received

            await asyncio.sleep(0.5)
    finally:
        await viewer.stop()
        try:
            await asyncio.wait_for(viewer_task, timeout=5.0)
        except asyncio.TimeoutError:
            viewer_task.cancel()

    metrics = viewer.metrics.to_dict()
    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    for key, value in metrics.items():
        logger.info(f"  {key}: {value}")
    logger.info("=" * 60)
    return metrics


def main():
    parser = argparse.ArgumentParser(description="Headless viewer for a SpecBridge relay")
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("SPECBRIDGE_VIEWER_URL", "ws://localhost:3000/ws"),
        help="WebSocket URL of the relay",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Seconds to run, 0 for unlimited (default: 0)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=10,
        help="Seconds between progress reports (default: 10)",
    )
    args = parser.parse_args()

    try:
        result = asyncio.run(watch(args.url, args.duration, args.report_interval))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)

    sys.exit(0 if result["frames_received"] > 0 else 1)


if __name__ == "__main__":
    main()
