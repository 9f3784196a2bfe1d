#!/usr/bin/env python3
"""
Producer Script
===============

Runs a monitoring session from a local camera or video file.

This script:
    1. Opens a cv2.VideoCapture source on a capture thread
    2. Feeds every captured image to MonitoringSession.on_capture
    3. Streams throttled frames to the relay and runs PPE detection
    4. Logs the session status every report interval

Prerequisites:
    - A relay running at the configured URL (python -m specbridge.main)
    - OPENROUTER_API_KEY set for violation detection

Usage:
    python scripts/run_producer.py --source 0
    python scripts/run_producer.py --source walk.mp4 --relay http://192.168.1.100:3000
"""

import argparse
import asyncio
import logging
import os
import sys
import threading
import time

import cv2

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from specbridge.config import settings
from specbridge.producer.session import MonitoringSession


logger = logging.getLogger(__name__)


def capture_loop(source, session: MonitoringSession, stop: threading.Event) -> None:
    """
    Read images from a VideoCapture until stopped or exhausted.

    Runs on its own thread, like a camera SDK callback thread.
    """
    capture = cv2.VideoCapture(int(source) if str(source).isdigit() else source)
    if not capture.isOpened():
        logger.error(f"Cannot open capture source: {source}")
        stop.set()
        return

    fps = capture.get(cv2.CAP_PROP_FPS) or 30.0
    frame_period = 1.0 / fps
    logger.info(f"Capture opened: {source} ({fps:.1f} fps)")

    try:
        while not stop.is_set():
            ok, image = capture.read()
            if not ok:
                logger.info("Capture source exhausted")
                break
            session.on_capture(image)
            time.sleep(frame_period)
    finally:
        capture.release()
        stop.set()


async def run(source, report_interval: int) -> dict:
    session = MonitoringSession.from_settings(settings)
    await session.start()

    stop = threading.Event()
    thread = threading.Thread(
        target=capture_loop,
        args=(source, session, stop),
        name="capture",
        daemon=True,
    )
    thread.start()

    try:
        while not stop.is_set():
            await asyncio.sleep(report_interval)
            status = session.status()
            logger.info(
                f"[{status['connection_status']}] sent={status['frames_sent']} "
                f"detector={status['detector_state']} safety={status['safety_status']}"
            )
    finally:
        stop.set()
        await session.stop()
        thread.join(timeout=5.0)

    return session.status()


def main():
    parser = argparse.ArgumentParser(description="Stream a capture source through SpecBridge")
    parser.add_argument(
        "--source",
        type=str,
        default="0",
        help="Camera index or video file path (default: 0)",
    )
    parser.add_argument(
        "--relay",
        type=str,
        default=None,
        help="Relay base URL (overrides config)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=5,
        help="Seconds between status reports (default: 5)",
    )
    args = parser.parse_args()

    if args.relay:
        settings.producer.relay_url = args.relay

    try:
        result = asyncio.run(run(args.source, args.report_interval))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)

    logger.info(f"Final status: {result}")
    sys.exit(0 if result["frames_sent"] > 0 else 1)


if __name__ == "__main__":
    main()
