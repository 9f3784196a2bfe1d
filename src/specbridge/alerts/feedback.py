"""
Local Feedback
==============

Device-side alert output (audio / haptic) for the wearer.

This module provides:
    - FeedbackDevice: protocol for anything that can signal one category
    - LoggingFeedbackDevice: logs the alert (headless default)
    - CommandFeedbackDevice: runs a configured command per category,
      e.g. an audio player with a per-category sound file
    - LocalFeedback: fanout channel adding per-category cooldown and
      sequencing of simultaneous alerts

Device failures raise FeedbackError and are logged by LocalFeedback;
they never reach the network side of the fanout.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Protocol

from specbridge.alerts.state_machine import AlertCategory, AlertEvent, AlertEventKind


logger = logging.getLogger(__name__)


class FeedbackError(Exception):
    """Raised when the feedback device cannot play an alert."""
    pass


class FeedbackDevice(Protocol):
    """Signals one alert category to the wearer."""

    async def play(self, category: AlertCategory) -> None:
        ...


class LoggingFeedbackDevice:
    """Feedback device that only writes a log line."""

    def __init__(self) -> None:
        self.played: List[AlertCategory] = []

    async def play(self, category: AlertCategory) -> None:
        self.played.append(category)
        logger.warning(f"LOCAL ALERT: {category.value}")


class CommandFeedbackDevice:
    """
    Feedback device that runs an external command per category.

    Attributes:
        commands: Mapping of category value ("shoes", "gloves") to argv
        timeout: Seconds before a command is killed
    """

    def __init__(self, commands: Dict[str, List[str]], timeout: float = 10.0) -> None:
        self.commands = commands
        self.timeout = timeout

    async def play(self, category: AlertCategory) -> None:
        argv = self.commands.get(category.value)
        if not argv:
            raise FeedbackError(f"No feedback command for {category.value}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise FeedbackError(f"Cannot start {argv[0]}: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise FeedbackError(f"{argv[0]} timed out after {self.timeout:.1f}s")

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:200]
            raise FeedbackError(f"{argv[0]} exited {process.returncode}: {detail}")


def create_feedback_device(backend: str, commands: Optional[Dict[str, List[str]]] = None):
    """Build the configured feedback device."""
    if backend == "log":
        return LoggingFeedbackDevice()
    if backend == "command":
        return CommandFeedbackDevice(commands or {})
    raise ValueError(f"Unknown feedback backend: {backend}")


class LocalFeedback:
    """
    Fanout channel driving a FeedbackDevice.

    Each category plays at most once per cooldown. When an event raises
    several categories, they play one after another, sequence_delay apart,
    so neither signal masks the other.
    """

    def __init__(
        self,
        device: FeedbackDevice,
        cooldown: float = 10.0,
        sequence_delay: float = 2.0,
    ) -> None:
        self.device = device
        self.cooldown = cooldown
        self.sequence_delay = sequence_delay
        self._last_played: Dict[AlertCategory, float] = {}
        self.failures: int = 0

    async def deliver(self, event: AlertEvent) -> None:
        if event.kind is not AlertEventKind.RAISE:
            return

        for index, category in enumerate(event.categories):
            if index > 0:
                await asyncio.sleep(self.sequence_delay)
            await self._play(category)

    async def _play(self, category: AlertCategory) -> None:
        now = time.monotonic()
        last = self._last_played.get(category)
        if last is not None and now - last < self.cooldown:
            logger.debug(f"{category.value} feedback on cooldown")
            return

        try:
            await self.device.play(category)
        except FeedbackError as e:
            self.failures += 1
            logger.error(f"Local feedback failed for {category.value}: {e}")
            return

        self._last_played[category] = now
