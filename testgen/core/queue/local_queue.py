"""
In-memory queue backend.

Single-process implementation of the queue contract for development and
tests. Visibility (delays and in-flight timeouts) is computed from an
injectable clock so tests can advance time without sleeping.

Dependencies: asyncio, heapq
System role: Development queue backend
"""

import asyncio
import heapq
import itertools
import logging
import time
from collections import deque
from typing import Any

from testgen.core.exceptions import MessageNotInFlightError
from testgen.core.queue.base import (
    Clock,
    Priority,
    QueueBackend,
    QueueMessage,
    QueueStats,
    coerce_priority,
)

logger = logging.getLogger(__name__)


class LocalQueue(QueueBackend):
    """In-memory priority queue with delayed visibility and visibility timeouts."""

    def __init__(
        self,
        name: str = "local",
        visibility_timeout_seconds: float = 30.0,
        max_retries: int = 3,
        clock: Clock = time.monotonic,
    ) -> None:
        """
        Initialize local queue.

        Args:
            name: Queue name used in logs and errors
            visibility_timeout_seconds: How long a dequeued message stays hidden
            max_retries: Default max retries stamped on new messages
            clock: Monotonic time source in seconds
        """
        super().__init__(name, visibility_timeout_seconds, max_retries)
        self._clock = clock
        self._ready: dict[Priority, deque[QueueMessage]] = {p: deque() for p in Priority.ordered()}
        # (visible_at, sequence, message)
        self._scheduled: list[tuple[float, int, QueueMessage]] = []
        self._sequence = itertools.count()
        # message id -> (message, visibility deadline)
        self._in_flight: dict[str, tuple[QueueMessage, float]] = {}
        self._failed: dict[str, QueueMessage] = {}
        self._wakeup = asyncio.Event()
        self._counters = QueueStats()

    async def connect(self) -> None:
        self._connected = True
        logger.info(f"{__name__}:connect - Local queue '{self.name}' connected")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info(f"{__name__}:disconnect - Local queue '{self.name}' disconnected")

    # ------------------------------------------------------------------
    # Internal visibility bookkeeping
    # ------------------------------------------------------------------

    def _schedule(self, message: QueueMessage, delay_seconds: float) -> None:
        if delay_seconds > 0:
            visible_at = self._clock() + delay_seconds
            heapq.heappush(self._scheduled, (visible_at, next(self._sequence), message))
        else:
            self._ready[message.priority].append(message)
        self._wakeup.set()

    def _refresh(self) -> None:
        """Promote due delayed messages and reclaim expired in-flight ones."""
        now = self._clock()
        while self._scheduled and self._scheduled[0][0] <= now:
            _, _, message = heapq.heappop(self._scheduled)
            self._ready[message.priority].append(message)

        expired = [
            message_id
            for message_id, (_, deadline) in self._in_flight.items()
            if deadline <= now
        ]
        for message_id in expired:
            message, _ = self._in_flight.pop(message_id)
            message.metadata["redelivered"] = True
            # Redelivered messages go to the front of their bucket
            self._ready[message.priority].appendleft(message)
            logger.warning(
                f"{__name__}:_refresh - Visibility timeout expired for message {message_id}, "
                "redelivering"
            )

    def _next_wake_in(self) -> float | None:
        """Seconds until the next delayed or in-flight message changes visibility."""
        deadlines = [deadline for _, deadline in self._in_flight.values()]
        if self._scheduled:
            deadlines.append(self._scheduled[0][0])
        if not deadlines:
            return None
        return max(0.0, min(deadlines) - self._clock())

    def _pop_ready(self) -> QueueMessage | None:
        for priority in Priority.ordered():
            bucket = self._ready[priority]
            if bucket:
                return bucket.popleft()
        return None

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        payload: dict[str, Any],
        priority: Priority | str = Priority.NORMAL,
        delay_seconds: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        self._ensure_connected()
        message = QueueMessage(
            payload=payload,
            enqueued_at=time.time(),
            delay_seconds=delay_seconds,
            priority=coerce_priority(priority),
            max_retries=self.max_retries,
            metadata=dict(metadata or {}),
        )
        self._schedule(message, delay_seconds)
        self._counters.enqueued_total += 1
        logger.debug(
            f"{__name__}:enqueue - Enqueued {message.id} "
            f"priority={message.priority.value} delay={delay_seconds}s"
        )
        return message.id

    async def dequeue(self, timeout_seconds: float = 5.0) -> QueueMessage | None:
        self._ensure_connected()
        deadline = self._clock() + max(0.0, timeout_seconds)

        while True:
            self._wakeup.clear()
            self._refresh()
            message = self._pop_ready()
            if message is not None:
                self._in_flight[message.id] = (
                    message,
                    self._clock() + self.visibility_timeout_seconds,
                )
                self._counters.dequeued_total += 1
                return message

            remaining = deadline - self._clock()
            if remaining <= 0:
                return None

            wait_for = remaining
            next_change = self._next_wake_in()
            if next_change is not None:
                wait_for = min(wait_for, next_change)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=wait_for)
            except asyncio.TimeoutError:
                pass
            self._ensure_connected()

    def _take_in_flight(self, message_id: str) -> QueueMessage:
        self._refresh()
        entry = self._in_flight.pop(message_id, None)
        if entry is None:
            raise MessageNotInFlightError(message_id)
        return entry[0]

    async def ack(self, message_id: str) -> None:
        self._ensure_connected()
        self._take_in_flight(message_id)
        self._counters.acked_total += 1
        logger.debug(f"{__name__}:ack - Acked {message_id}")

    async def nack(
        self,
        message_id: str,
        requeue: bool = True,
        delay_seconds: float = 0.0,
    ) -> None:
        self._ensure_connected()
        message = self._take_in_flight(message_id)
        self._counters.nacked_total += 1

        if requeue and message.can_retry():
            retry = message.create_retry_message(time.time(), delay_seconds)
            self._schedule(retry, delay_seconds)
            logger.info(
                f"{__name__}:nack - Requeued {message_id} as {retry.id} "
                f"(retry {retry.retry_count}/{retry.max_retries}, delay={delay_seconds}s)"
            )
            return

        self._failed[message.id] = message
        self._counters.failed_total += 1
        logger.warning(
            f"{__name__}:nack - Message {message_id} permanently failed "
            f"after {message.retry_count} retries"
        )

    async def extend_visibility(self, message_id: str, seconds: float | None = None) -> None:
        self._ensure_connected()
        self._refresh()
        entry = self._in_flight.get(message_id)
        if entry is None:
            raise MessageNotInFlightError(message_id)
        timeout = self.visibility_timeout_seconds if seconds is None else seconds
        self._in_flight[message_id] = (entry[0], self._clock() + timeout)

    async def get_stats(self) -> QueueStats:
        self._ensure_connected()
        self._refresh()
        return QueueStats(
            queued=sum(len(bucket) for bucket in self._ready.values()),
            in_flight=len(self._in_flight),
            failed=len(self._failed),
            delayed=len(self._scheduled),
            enqueued_total=self._counters.enqueued_total,
            dequeued_total=self._counters.dequeued_total,
            acked_total=self._counters.acked_total,
            nacked_total=self._counters.nacked_total,
            failed_total=self._counters.failed_total,
        )

    async def purge(self) -> None:
        self._ensure_connected()
        for bucket in self._ready.values():
            bucket.clear()
        self._scheduled.clear()
        self._in_flight.clear()
        self._failed.clear()
        self._counters = QueueStats()
        logger.info(f"{__name__}:purge - Purged local queue '{self.name}'")

    # ------------------------------------------------------------------
    # Local-only inspection helpers
    # ------------------------------------------------------------------

    def in_flight_messages(self) -> list[QueueMessage]:
        return [message for message, _ in self._in_flight.values()]

    def failed_messages(self) -> list[QueueMessage]:
        return list(self._failed.values())

    def reset_failed_messages(self) -> int:
        """
        Move permanently failed messages back to their buckets with a fresh retry budget.

        Returns:
            int: Number of messages requeued
        """
        count = len(self._failed)
        for message in self._failed.values():
            message.retry_count = 0
            self._schedule(message, 0.0)
        self._failed.clear()
        logger.info(f"{__name__}:reset_failed_messages - Requeued {count} failed messages")
        return count
