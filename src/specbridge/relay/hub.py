"""
Broadcast Hub
=============

Single-writer / many-reader frame relay.

This module provides:
    - FrameCache: holds exactly one current Frame plus the sequence counter
    - Subscriber: one push consumer with a bounded outbound queue
    - BroadcastHub: publish, fanout, late-joiner catch-up and the
      violation side channel

Design Rules:
    - publish() and subscribe() never await, so on a single event loop a
      late joiner receives the current frame before any later publish
    - A subscriber still sending the previous message at the next publish
      is dropped in that publish, never waited on. The bounded queue only
      caps bursts published before the transport picks a message up.
    - Messages are serialized once per publish, not once per subscriber
    - The hub owns the current frame and the current violation; transports
      get the hub by handle
"""

import asyncio
import itertools
import logging
import threading
import time
from typing import Awaitable, Callable, Dict, List, Optional

from specbridge.models.messages import (
    RelayStatus,
    ViolationClearMessage,
    ViolationMessage,
    ViolationRecord,
    ViolationReport,
    now_ms,
)
from specbridge.relay.frame import Frame


logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Raised when a frame payload is rejected."""
    pass


class FrameCache:
    """
    Holds the most recent frame and a monotonic sequence counter.

    Store and read are guarded by one lock so a reader never observes a
    frame paired with the wrong sequence, even from worker threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: Optional[Frame] = None
        self._sequence: int = 0

    def store(self, payload: bytes) -> Frame:
        """
        Accept a new frame, replacing the current one.

        Args:
            payload: Compressed image bytes

        Returns:
            The accepted Frame

        Raises:
            IngestionError: If payload is empty
        """
        if not payload:
            raise IngestionError("No frame data")

        with self._lock:
            self._sequence += 1
            frame = Frame(
                payload=bytes(payload),
                sequence=self._sequence,
                received_at=time.time(),
            )
            self._current = frame
        return frame

    @property
    def current(self) -> Optional[Frame]:
        """Current frame, or None if nothing was ever stored."""
        with self._lock:
            return self._current

    @property
    def sequence(self) -> int:
        """Sequence number of the current frame (0 = none)."""
        with self._lock:
            return self._sequence

    @property
    def has_frame(self) -> bool:
        with self._lock:
            return self._current is not None


class Subscriber:
    """
    A push consumer registered with the hub.

    Holds a bounded queue of serialized messages. The transport drains it
    with send_next(); the hub fills it with offer(). While a send is in
    progress the subscriber is busy and refuses further offers.
    """

    def __init__(self, subscriber_id: int, queue_size: int) -> None:
        self.subscriber_id = subscriber_id
        self.joined_at = time.time()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = asyncio.Event()
        self._sending = False

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def sending(self) -> bool:
        """True while the transport is still writing a message."""
        return self._sending

    @property
    def pending(self) -> int:
        """Messages waiting to be sent."""
        return self._queue.qsize()

    def offer(self, message: str) -> bool:
        """
        Enqueue a message without waiting.

        Returns:
            False if the subscriber is closed, still sending the previous
            message, or its queue is full.
        """
        if self.closed or self._sending:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            return False

    async def next_message(self) -> str:
        """Wait for the next outbound message."""
        return await self._queue.get()

    async def send_next(self, send: Callable[[str], Awaitable[None]]) -> None:
        """
        Wait for the next message and hand it to ``send``.

        The subscriber counts as busy until ``send`` returns.
        """
        message = await self._queue.get()
        self._sending = True
        try:
            await send(message)
        finally:
            self._sending = False

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def close(self) -> None:
        """Mark closed; pending messages are discarded."""
        self._closed.set()
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    def __repr__(self) -> str:
        return f"Subscriber(id={self.subscriber_id}, pending={self.pending})"


class BroadcastHub:
    """
    Fans frames and violation events out to every connected subscriber.

    Attributes:
        cache: The FrameCache holding the current frame
        subscriber_queue_size: Per-subscriber queue bound
        current_violation: Last raised violation, None once cleared

    Example:
        hub = BroadcastHub()

        # Producer ingress
        frame_id = hub.publish(jpeg_bytes)

        # Transport
        subscriber = hub.subscribe()
        message = await subscriber.next_message()
        hub.unsubscribe(subscriber)
    """

    def __init__(
        self,
        cache: Optional[FrameCache] = None,
        subscriber_queue_size: int = 8,
        log_every_n_frames: int = 30,
    ) -> None:
        """
        Initialize the hub.

        Args:
            cache: FrameCache to publish into (a new one if None)
            subscriber_queue_size: Messages a subscriber may lag behind
                before it is dropped. Must be >= 1.
            log_every_n_frames: Log ingress stats every N frames
        """
        if subscriber_queue_size < 1:
            raise ValueError("subscriber_queue_size must be >= 1")

        self.cache = cache or FrameCache()
        self.subscriber_queue_size = subscriber_queue_size
        self.log_every_n_frames = log_every_n_frames

        self._subscribers: Dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._current_violation: Optional[ViolationRecord] = None
        self._dropped_count: int = 0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def dropped_count(self) -> int:
        """Subscribers removed for falling behind."""
        return self._dropped_count

    @property
    def frames_received(self) -> int:
        return self.cache.sequence

    @property
    def current_violation(self) -> Optional[ViolationRecord]:
        return self._current_violation

    # -------------------------------------------------------------------------
    # Frames
    # -------------------------------------------------------------------------

    def publish(self, payload: bytes) -> int:
        """
        Accept a frame from the producer and fan it out.

        Args:
            payload: Compressed image bytes

        Returns:
            Sequence number assigned to the frame

        Raises:
            IngestionError: If payload is empty (cache is left unchanged)
        """
        try:
            frame = self.cache.store(payload)
        except IngestionError:
            logger.warning("Rejected empty frame upload")
            raise

        if (frame.sequence - 1) % self.log_every_n_frames == 0:
            logger.info(
                f"Frame {frame.sequence} received ({frame.size / 1024:.1f} KB), "
                f"broadcasting to {self.subscriber_count} clients"
            )

        self._broadcast(frame.to_message().model_dump_json(by_alias=True))
        return frame.sequence

    def subscribe(self) -> Subscriber:
        """
        Register a new subscriber.

        The current frame, if any, is queued before returning so it
        precedes every later publish.
        """
        subscriber = Subscriber(next(self._ids), self.subscriber_queue_size)
        self._subscribers[subscriber.subscriber_id] = subscriber

        frame = self.cache.current
        if frame is not None:
            subscriber.offer(frame.to_message().model_dump_json(by_alias=True))

        logger.info(
            f"Client connected: subscriber={subscriber.subscriber_id}, "
            f"total={self.subscriber_count}"
        )
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a subscriber. Safe to call more than once."""
        removed = self._subscribers.pop(subscriber.subscriber_id, None)
        subscriber.close()
        if removed is not None:
            logger.info(
                f"Client disconnected: subscriber={subscriber.subscriber_id}, "
                f"total={self.subscriber_count}"
            )

    # -------------------------------------------------------------------------
    # Violation side channel
    # -------------------------------------------------------------------------

    def raise_violation(self, report: ViolationReport) -> ViolationRecord:
        """Record a violation and broadcast it to all subscribers."""
        received_at = now_ms()
        record = ViolationRecord(
            category=report.category,
            message=report.message,
            timestamp=report.timestamp or received_at,
            received_at=received_at,
        )
        self._current_violation = record

        logger.warning(f"VIOLATION: {record.category} - {record.message}")
        self._broadcast(ViolationMessage(data=record).model_dump_json(by_alias=True))
        return record

    def clear_violation(self) -> None:
        """Reset the current violation and broadcast a clear."""
        if self._current_violation is not None:
            logger.info(f"Violation cleared: {self._current_violation.category}")
        self._current_violation = None
        self._broadcast(ViolationClearMessage().model_dump_json())

    # -------------------------------------------------------------------------
    # Lifecycle / status
    # -------------------------------------------------------------------------

    def close(self) -> int:
        """
        Close every subscriber.

        Returns:
            Number of subscribers closed.
        """
        subscribers = list(self._subscribers.values())
        self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close()
        return len(subscribers)

    def status(self, stream_clients: int = 0) -> RelayStatus:
        """Summary for the status endpoint."""
        return RelayStatus(
            has_frame=self.cache.has_frame,
            frame_count=self.frames_received,
            clients=self.subscriber_count,
            stream_clients=stream_clients,
            dropped_subscribers=self._dropped_count,
            current_violation=self._current_violation,
        )

    def _broadcast(self, message: str) -> None:
        """Offer a serialized message to every subscriber, dropping laggards."""
        lagging: List[Subscriber] = []
        for subscriber in self._subscribers.values():
            if not subscriber.offer(message):
                lagging.append(subscriber)

        for subscriber in lagging:
            reason = "send pending" if subscriber.sending else "queue full"
            self._subscribers.pop(subscriber.subscriber_id, None)
            subscriber.close()
            self._dropped_count += 1
            logger.warning(
                f"Dropped slow subscriber {subscriber.subscriber_id} "
                f"({reason}). Total dropped: {self._dropped_count}"
            )
