"""
Amazon SQS queue backend.

One SQS queue per priority bucket (buckets without their own URL share the
normal queue). Messages are JSON envelopes; the receipt handle of each
delivery is kept in message metadata and in a local in-flight map so the
worker can ack/nack by message id. SQS's ApproximateReceiveCount is the
source of truth for retry_count.

Nack with requeue changes the visibility of the same SQS message instead
of sending a copy, so redelivery increments the receive count. Nack
without retries left deletes the message; a redrive policy on the queue
is expected to keep dead letters if they must be inspected.

Dependencies: boto3, botocore
System role: Production queue backend
"""

import asyncio
import json
import logging
import time
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from testgen.core.exceptions import MessageNotInFlightError, TransientInfrastructureError
from testgen.core.queue.base import (
    Clock,
    Priority,
    QueueBackend,
    QueueMessage,
    QueueStats,
    coerce_priority,
)

logger = logging.getLogger(__name__)

# SQS service limits
MAX_DELAY_SECONDS = 900
MAX_VISIBILITY_SECONDS = 43_200
MAX_WAIT_SECONDS = 20


class SQSQueue(QueueBackend):
    """SQS-backed queue with one queue URL per priority bucket."""

    def __init__(
        self,
        queue_urls: dict[str, str],
        region: str = "us-east-1",
        name: str = "sqs",
        visibility_timeout_seconds: float = 30.0,
        max_retries: int = 3,
        receive_wait_seconds: int = MAX_WAIT_SECONDS,
        poll_interval_seconds: float = 1.0,
        client: Any | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        """
        Initialize SQS queue.

        Args:
            queue_urls: Priority name ('high', 'normal', 'low') to queue URL
            region: AWS region
            name: Queue name used in logs and errors
            visibility_timeout_seconds: Visibility timeout requested on receive
            max_retries: Retries before a nack becomes permanent
            receive_wait_seconds: Long-poll wait when only one queue URL is configured
            poll_interval_seconds: Pause between sweeps across several queue URLs
            client: Pre-built boto3 SQS client (tests inject a stub)
            clock: Monotonic time source in seconds

        Raises:
            ValueError: If no queue URL is configured
        """
        super().__init__(name, visibility_timeout_seconds, max_retries)
        if not queue_urls:
            raise ValueError("SQS queue requires at least one queue URL")
        fallback = queue_urls.get("normal") or next(iter(queue_urls.values()))
        self._queue_urls = {
            priority: queue_urls.get(priority.value) or fallback
            for priority in Priority.ordered()
        }
        self._region = region
        self._receive_wait_seconds = min(receive_wait_seconds, MAX_WAIT_SECONDS)
        self._poll_interval_seconds = poll_interval_seconds
        self._client = client
        self._clock = clock
        # message id -> (queue url, receipt handle, message)
        self._in_flight: dict[str, tuple[str, str, QueueMessage]] = {}
        self._counters = QueueStats()

    def _distinct_urls(self) -> list[str]:
        """Queue URLs in priority order without duplicates."""
        urls: list[str] = []
        for priority in Priority.ordered():
            url = self._queue_urls[priority]
            if url not in urls:
                urls.append(url)
        return urls

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        """Run a blocking boto3 call in a worker thread, classifying failures."""
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"{__name__}:{operation} - SQS ClientError {code}: {e}")
            raise TransientInfrastructureError(
                f"SQS {operation} failed: {code}",
                service="sqs",
                details={"error_code": code},
            ) from e
        except BotoCoreError as e:
            logger.error(f"{__name__}:{operation} - SQS BotoCoreError: {e}")
            raise TransientInfrastructureError(
                f"SQS {operation} failed: {e}",
                service="sqs",
            ) from e

    async def connect(self) -> None:
        if self._client is None:
            self._client = boto3.client("sqs", region_name=self._region)
        for url in self._distinct_urls():
            await self._call(
                "get_queue_attributes",
                QueueUrl=url,
                AttributeNames=["QueueArn"],
            )
        self._connected = True
        logger.info(
            f"{__name__}:connect - Connected to {len(self._distinct_urls())} SQS queue(s) "
            f"in {self._region}"
        )

    async def disconnect(self) -> None:
        self._connected = False
        self._in_flight.clear()
        logger.info(f"{__name__}:disconnect - SQS queue '{self.name}' disconnected")

    async def enqueue(
        self,
        payload: dict[str, Any],
        priority: Priority | str = Priority.NORMAL,
        delay_seconds: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        self._ensure_connected()
        bucket = coerce_priority(priority)
        enqueued_at = time.time()
        body = {
            "payload": payload,
            "priority": bucket.value,
            "enqueued_at": enqueued_at,
            "delay_seconds": delay_seconds,
            "max_retries": self.max_retries,
            "metadata": metadata or {},
        }
        response = await self._call(
            "send_message",
            QueueUrl=self._queue_urls[bucket],
            MessageBody=json.dumps(body),
            DelaySeconds=int(min(max(delay_seconds, 0), MAX_DELAY_SECONDS)),
            MessageAttributes={
                "Priority": {"DataType": "String", "StringValue": bucket.value},
            },
        )
        self._counters.enqueued_total += 1
        message_id = response["MessageId"]
        logger.debug(f"{__name__}:enqueue - Sent {message_id} to {bucket.value} queue")
        return message_id

    def _to_message(self, raw: dict[str, Any]) -> QueueMessage:
        body = json.loads(raw["Body"])
        attributes = raw.get("Attributes", {})
        receive_count = int(attributes.get("ApproximateReceiveCount", "1"))
        metadata = dict(body.get("metadata") or {})
        metadata["receipt_handle"] = raw["ReceiptHandle"]
        return QueueMessage(
            payload=body.get("payload", {}),
            id=raw["MessageId"],
            enqueued_at=body.get("enqueued_at", time.time()),
            delay_seconds=body.get("delay_seconds", 0.0),
            priority=coerce_priority(body.get("priority", Priority.NORMAL.value)),
            retry_count=max(0, receive_count - 1),
            max_retries=body.get("max_retries", self.max_retries),
            metadata=metadata,
        )

    async def _receive_one(self, url: str, wait_seconds: int) -> QueueMessage | None:
        response = await self._call(
            "receive_message",
            QueueUrl=url,
            MaxNumberOfMessages=1,
            VisibilityTimeout=int(min(self.visibility_timeout_seconds, MAX_VISIBILITY_SECONDS)),
            WaitTimeSeconds=wait_seconds,
            AttributeNames=["All"],
            MessageAttributeNames=["All"],
        )
        messages = response.get("Messages") or []
        if not messages:
            return None
        message = self._to_message(messages[0])
        self._in_flight[message.id] = (url, message.metadata["receipt_handle"], message)
        self._counters.dequeued_total += 1
        return message

    async def dequeue(self, timeout_seconds: float = 5.0) -> QueueMessage | None:
        self._ensure_connected()
        urls = self._distinct_urls()
        deadline = self._clock() + max(0.0, timeout_seconds)

        # Single queue: let SQS long-poll for us
        if len(urls) == 1:
            while True:
                remaining = deadline - self._clock()
                wait = int(min(max(remaining, 0), self._receive_wait_seconds))
                message = await self._receive_one(urls[0], wait)
                if message is not None or self._clock() >= deadline:
                    return message

        # Several queues: short-poll in priority order until the deadline
        while True:
            for url in urls:
                message = await self._receive_one(url, 0)
                if message is not None:
                    return message
            remaining = deadline - self._clock()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self._poll_interval_seconds, remaining))

    def _take_in_flight(self, message_id: str) -> tuple[str, str, QueueMessage]:
        entry = self._in_flight.pop(message_id, None)
        if entry is None:
            raise MessageNotInFlightError(message_id)
        return entry

    async def ack(self, message_id: str) -> None:
        self._ensure_connected()
        url, receipt_handle, _ = self._take_in_flight(message_id)
        await self._call("delete_message", QueueUrl=url, ReceiptHandle=receipt_handle)
        self._counters.acked_total += 1
        logger.debug(f"{__name__}:ack - Deleted {message_id}")

    async def nack(
        self,
        message_id: str,
        requeue: bool = True,
        delay_seconds: float = 0.0,
    ) -> None:
        self._ensure_connected()
        url, receipt_handle, message = self._take_in_flight(message_id)
        self._counters.nacked_total += 1

        if requeue and message.can_retry():
            await self._call(
                "change_message_visibility",
                QueueUrl=url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=int(min(max(delay_seconds, 0), MAX_VISIBILITY_SECONDS)),
            )
            logger.info(
                f"{__name__}:nack - Message {message_id} visible again in {delay_seconds}s "
                f"(retry {message.retry_count + 1}/{message.max_retries})"
            )
            return

        await self._call("delete_message", QueueUrl=url, ReceiptHandle=receipt_handle)
        self._counters.failed_total += 1
        logger.warning(
            f"{__name__}:nack - Message {message_id} permanently failed "
            f"after {message.retry_count} retries"
        )

    async def extend_visibility(self, message_id: str, seconds: float | None = None) -> None:
        self._ensure_connected()
        entry = self._in_flight.get(message_id)
        if entry is None:
            raise MessageNotInFlightError(message_id)
        url, receipt_handle, _ = entry
        timeout = self.visibility_timeout_seconds if seconds is None else seconds
        await self._call(
            "change_message_visibility",
            QueueUrl=url,
            ReceiptHandle=receipt_handle,
            VisibilityTimeout=int(min(max(timeout, 0), MAX_VISIBILITY_SECONDS)),
        )
        logger.debug(f"{__name__}:extend_visibility - {message_id} hidden for another {timeout}s")

    async def get_stats(self) -> QueueStats:
        self._ensure_connected()
        stats = QueueStats(
            in_flight=0,
            failed=self._counters.failed_total,
            enqueued_total=self._counters.enqueued_total,
            dequeued_total=self._counters.dequeued_total,
            acked_total=self._counters.acked_total,
            nacked_total=self._counters.nacked_total,
            failed_total=self._counters.failed_total,
        )
        for url in self._distinct_urls():
            response = await self._call(
                "get_queue_attributes",
                QueueUrl=url,
                AttributeNames=[
                    "ApproximateNumberOfMessages",
                    "ApproximateNumberOfMessagesNotVisible",
                    "ApproximateNumberOfMessagesDelayed",
                ],
            )
            attributes = response.get("Attributes", {})
            stats.queued += int(attributes.get("ApproximateNumberOfMessages", 0))
            stats.in_flight += int(attributes.get("ApproximateNumberOfMessagesNotVisible", 0))
            stats.delayed += int(attributes.get("ApproximateNumberOfMessagesDelayed", 0))
        return stats

    async def purge(self) -> None:
        self._ensure_connected()
        for url in self._distinct_urls():
            await self._call("purge_queue", QueueUrl=url)
        self._in_flight.clear()
        logger.info(f"{__name__}:purge - Purged {len(self._distinct_urls())} SQS queue(s)")
