"""
Queue abstraction contract.

Defines the message and stats containers and the QueueBackend interface
shared by the local, SQS and Redis variants. Delivery is at-least-once:
a dequeued message stays in flight until ack/nack, and becomes visible
again when its visibility timeout expires.

Dependencies: abc, dataclasses
System role: Capability interface between the worker loop and brokers
"""

import enum
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from testgen.core.exceptions import QueueNotConnectedError

Clock = Callable[[], float]


class Priority(str, enum.Enum):
    """Priority buckets, highest first in declaration order."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @classmethod
    def ordered(cls) -> list["Priority"]:
        return [cls.HIGH, cls.NORMAL, cls.LOW]


@dataclass
class QueueMessage:
    """One unit of work flowing through a queue backend."""

    payload: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enqueued_at: float = field(default_factory=time.time)
    delay_seconds: float = 0.0
    priority: Priority = Priority.NORMAL
    retry_count: int = 0
    max_retries: int = 3
    metadata: dict[str, Any] = field(default_factory=dict)

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def create_retry_message(self, enqueued_at: float, delay_seconds: float = 0.0) -> "QueueMessage":
        """Copy of this message with a fresh id and retry_count + 1."""
        return replace(
            self,
            id=str(uuid.uuid4()),
            enqueued_at=enqueued_at,
            delay_seconds=delay_seconds,
            retry_count=self.retry_count + 1,
            metadata={**self.metadata, "original_id": self.metadata.get("original_id", self.id)},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
            "delay_seconds": self.delay_seconds,
            "priority": self.priority.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueMessage":
        return cls(
            payload=data["payload"],
            id=data["id"],
            enqueued_at=data.get("enqueued_at", time.time()),
            delay_seconds=data.get("delay_seconds", 0.0),
            priority=Priority(data.get("priority", Priority.NORMAL.value)),
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", 3),
            metadata=data.get("metadata") or {},
        )


@dataclass
class QueueStats:
    """Point-in-time queue statistics plus lifetime counters."""

    queued: int = 0
    in_flight: int = 0
    failed: int = 0
    delayed: int = 0
    enqueued_total: int = 0
    dequeued_total: int = 0
    acked_total: int = 0
    nacked_total: int = 0
    failed_total: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "queued": self.queued,
            "in_flight": self.in_flight,
            "failed": self.failed,
            "delayed": self.delayed,
            "enqueued_total": self.enqueued_total,
            "dequeued_total": self.dequeued_total,
            "acked_total": self.acked_total,
            "nacked_total": self.nacked_total,
            "failed_total": self.failed_total,
        }


class QueueBackend(ABC):
    """
    Uniform enqueue/dequeue/ack/nack contract over broker backends.

    Subclasses set self._connected in connect()/disconnect() and call
    _ensure_connected() at the start of every broker operation.
    """

    def __init__(
        self,
        name: str = "default",
        visibility_timeout_seconds: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        self._name = name
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.max_retries = max_retries
        self._connected = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise QueueNotConnectedError(self._name)

    async def __aenter__(self) -> "QueueBackend":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @abstractmethod
    async def connect(self) -> None:
        """Open broker connections."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release broker connections. Safe to call twice."""

    @abstractmethod
    async def enqueue(
        self,
        payload: dict[str, Any],
        priority: Priority | str = Priority.NORMAL,
        delay_seconds: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """
        Add a message; it becomes visible only after delay_seconds.

        Returns:
            str: Message id
        """

    @abstractmethod
    async def dequeue(self, timeout_seconds: float = 5.0) -> QueueMessage | None:
        """
        Long-poll for the next visible message, highest priority first.

        Returns None only after waiting the full timeout with nothing visible.
        """

    @abstractmethod
    async def ack(self, message_id: str) -> None:
        """
        Permanently remove an in-flight message.

        Raises:
            MessageNotInFlightError: If the message is not currently dequeued
        """

    @abstractmethod
    async def nack(
        self,
        message_id: str,
        requeue: bool = True,
        delay_seconds: float = 0.0,
    ) -> None:
        """
        Reject an in-flight message.

        With requeue and retries remaining, a copy with retry_count + 1
        becomes visible after delay_seconds. Otherwise the message moves
        to the permanently failed set.

        Raises:
            MessageNotInFlightError: If the message is not currently dequeued
        """

    @abstractmethod
    async def extend_visibility(self, message_id: str, seconds: float | None = None) -> None:
        """
        Keep an in-flight message hidden for another `seconds` from now.

        Consumers call this periodically while a job outlives the visibility
        timeout. Defaults to the queue's visibility timeout.

        Raises:
            MessageNotInFlightError: If the message is not currently dequeued
        """

    @abstractmethod
    async def get_stats(self) -> QueueStats:
        """Return current queue statistics."""

    @abstractmethod
    async def purge(self) -> None:
        """Drop every message in every bucket."""

    async def is_healthy(self) -> bool:
        return self._connected


def coerce_priority(priority: Priority | str) -> Priority:
    """
    Normalize priority input.

    Accepts enum members or their string values; 'default' is an alias for
    normal used by broker-backed producers.

    Raises:
        ValueError: If priority is not a known bucket
    """
    if isinstance(priority, Priority):
        return priority
    value = str(priority).lower()
    if value == "default":
        return Priority.NORMAL
    return Priority(value)
