"""
Alert Fanout
============

Delivers each AlertEvent to every output channel independently.

Channels:
    - NetworkAlertChannel: relay violation side channel (remote viewers)
    - LocalFeedback: wearer's device (see feedback.py)

Design Rules:
    - dispatch() never awaits; events are queued per channel
    - Each channel has one worker, so a channel sees events in dispatch
      order (a slow raise is never overtaken by the following clear)
    - A failing or slow channel does not affect the others
    - After close(), dispatch() is a no-op
"""

import asyncio
import logging
from typing import List, Protocol, Sequence

from specbridge.alerts.state_machine import AlertEvent, AlertEventKind
from specbridge.producer.relay_client import RelayClient, RelayError


logger = logging.getLogger(__name__)


class AlertChannel(Protocol):
    """One independent alert output."""

    async def deliver(self, event: AlertEvent) -> None:
        ...


class NetworkAlertChannel:
    """Forwards raise/clear events to the relay's violation endpoints."""

    def __init__(self, client: RelayClient) -> None:
        self.client = client

    async def deliver(self, event: AlertEvent) -> None:
        if event.kind is AlertEventKind.RAISE:
            await self.client.send_violation(
                category=event.wire_category,
                message=event.message,
                timestamp=event.timestamp,
            )
        else:
            await self.client.clear_violation()


class AlertFanout:
    """
    Queues alert events for every channel and delivers them in order.

    Workers are started on the first dispatch and stopped by close().

    Attributes:
        channels: Output channels
        delivered_count: Successful channel deliveries
        failed_count: Channel deliveries that raised
    """

    def __init__(self, channels: Sequence[AlertChannel]) -> None:
        self.channels: List[AlertChannel] = list(channels)
        self._queues: List[asyncio.Queue] = []
        self._workers: List[asyncio.Task] = []
        self._in_progress: int = 0
        self._closed: bool = False
        self.delivered_count: int = 0
        self.failed_count: int = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events queued or being delivered, summed over channels."""
        return sum(queue.qsize() for queue in self._queues) + self._in_progress

    def open(self) -> None:
        self._closed = False

    def dispatch(self, event: AlertEvent) -> None:
        """Queue one event for every channel."""
        if self._closed:
            logger.debug(f"Fanout closed, dropping {event!r}")
            return

        self._ensure_workers()
        for queue in self._queues:
            queue.put_nowait(event)

    def _ensure_workers(self) -> None:
        if self._workers and not any(worker.done() for worker in self._workers):
            return

        for worker in self._workers:
            worker.cancel()
        self._queues = [asyncio.Queue() for _ in self.channels]
        self._workers = [
            asyncio.create_task(self._run_channel(channel, queue))
            for channel, queue in zip(self.channels, self._queues)
        ]

    async def _run_channel(self, channel: AlertChannel, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            self._in_progress += 1
            try:
                await self._deliver(channel, event)
            finally:
                self._in_progress -= 1
                queue.task_done()

    async def _deliver(self, channel: AlertChannel, event: AlertEvent) -> None:
        name = type(channel).__name__
        try:
            await channel.deliver(event)
        except asyncio.CancelledError:
            raise
        except RelayError as e:
            self.failed_count += 1
            logger.warning(f"{name} failed to deliver {event.kind.value}: {e}")
        except Exception as e:
            self.failed_count += 1
            logger.error(f"{name} error delivering {event.kind.value}: {e}")
        else:
            self.delivered_count += 1

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        for queue in list(self._queues):
            await queue.join()

    async def close(self) -> None:
        """Stop accepting events, cancel in-flight deliveries, discard the rest."""
        self._closed = True
        workers = self._workers
        self._workers = []
        self._queues = []
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
