"""
Redis queue backend.

Layout under the configured key prefix (default 'queue:'):
    {prefix}high / {prefix}default / {prefix}low   lists, LPUSH in, RPOP out
    {prefix}delayed                                sorted set scored by visible-at epoch
    {prefix}inflight                               hash message id -> JSON
    {prefix}inflight:deadlines                     sorted set scored by visibility deadline
    {prefix}failed                                 hash message id -> JSON
    {prefix}stats                                  hash of lifetime counters

Every step that moves a message between structures (claim, promotion,
reclaim, ack, nack) runs as one WATCH/MULTI/EXEC transaction, so a
connection error or crash leaves the message where it was. Concurrent
workers that touch the same keys see a WatchError and retry.

Dependencies: redis (redis.asyncio)
System role: Broker-backed queue backend
"""

import asyncio
import json
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

import redis.asyncio as aioredis
from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError

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

BUCKET_KEYS = {
    Priority.HIGH: "high",
    Priority.NORMAL: "default",
    Priority.LOW: "low",
}


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as e:
        logger.error(f"{__name__}:{operation} - Redis error {type(e).__name__}: {e}")
        raise TransientInfrastructureError(
            f"Redis {operation} failed: {e}",
            service="redis",
        ) from e


class RedisQueue(QueueBackend):
    """Redis-backed queue with per-priority lists and a delayed sorted set."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "queue:",
        name: str = "redis",
        visibility_timeout_seconds: float = 30.0,
        max_retries: int = 3,
        poll_interval_seconds: float = 0.2,
        client: aioredis.Redis | None = None,
        clock: Clock = time.time,
    ) -> None:
        """
        Initialize Redis queue.

        Args:
            url: Redis connection URL
            key_prefix: Prefix for every key this queue touches
            name: Queue name used in logs and errors
            visibility_timeout_seconds: How long a dequeued message stays hidden
            max_retries: Default max retries stamped on new messages
            poll_interval_seconds: Pause between claim attempts while long-polling
            client: Pre-built redis.asyncio client (tests inject fakeredis)
            clock: Wall-clock time source; shared across processes through scores
        """
        super().__init__(name, visibility_timeout_seconds, max_retries)
        self._url = url
        self._prefix = key_prefix
        self._poll_interval_seconds = poll_interval_seconds
        self._client = client
        self._owns_client = client is None
        self._clock = clock

    def _key(self, suffix: str) -> str:
        return f"{self._prefix}{suffix}"

    def _bucket_key(self, priority: Priority) -> str:
        return self._key(BUCKET_KEYS[priority])

    @property
    def _bucket_keys(self) -> list[str]:
        return [self._bucket_key(priority) for priority in Priority.ordered()]

    async def connect(self) -> None:
        if self._client is None:
            self._client = aioredis.from_url(self._url, decode_responses=True)
        with _translate_errors("connect"):
            await self._client.ping()
        self._connected = True
        logger.info(f"{__name__}:connect - Redis queue '{self.name}' connected")

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._connected = False
        logger.info(f"{__name__}:disconnect - Redis queue '{self.name}' disconnected")

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
            enqueued_at=self._clock(),
            delay_seconds=delay_seconds,
            priority=coerce_priority(priority),
            max_retries=self.max_retries,
            metadata=dict(metadata or {}),
        )
        with _translate_errors("enqueue"):
            async with self._client.pipeline(transaction=True) as pipe:
                self._schedule(pipe, message, delay_seconds)
                pipe.hincrby(self._key("stats"), "enqueued", 1)
                await pipe.execute()
        logger.debug(
            f"{__name__}:enqueue - Enqueued {message.id} "
            f"priority={message.priority.value} delay={delay_seconds}s"
        )
        return message.id

    def _schedule(self, pipe: Pipeline, message: QueueMessage, delay_seconds: float) -> None:
        """Queue the commands that make message visible after delay_seconds."""
        data = json.dumps(message.to_dict())
        if delay_seconds > 0:
            pipe.zadd(self._key("delayed"), {data: self._clock() + delay_seconds})
        else:
            pipe.lpush(self._bucket_key(message.priority), data)

    async def _refresh(self) -> None:
        """Promote due delayed messages and reclaim expired in-flight ones."""
        now = self._clock()
        delayed_key = self._key("delayed")
        inflight_key = self._key("inflight")
        deadlines_key = self._key("inflight:deadlines")

        async def promote(pipe: Pipeline) -> None:
            due = await pipe.zrangebyscore(delayed_key, "-inf", now)
            pipe.multi()
            for data in due:
                message = QueueMessage.from_dict(json.loads(data))
                pipe.zrem(delayed_key, data)
                pipe.lpush(self._bucket_key(message.priority), data)

        async def reclaim(pipe: Pipeline) -> list[str]:
            expired = await pipe.zrangebyscore(deadlines_key, "-inf", now)
            entries = [(message_id, await pipe.hget(inflight_key, message_id)) for message_id in expired]
            pipe.multi()
            redelivered = []
            for message_id, data in entries:
                pipe.zrem(deadlines_key, message_id)
                pipe.hdel(inflight_key, message_id)
                if data is None:
                    continue
                message = QueueMessage.from_dict(json.loads(data))
                message.metadata["redelivered"] = True
                # RPUSH puts it at the consuming end of the list
                pipe.rpush(self._bucket_key(message.priority), json.dumps(message.to_dict()))
                redelivered.append(message_id)
            return redelivered

        await self._client.transaction(promote, delayed_key)
        redelivered = await self._client.transaction(
            reclaim, deadlines_key, inflight_key, value_from_callable=True
        )
        for message_id in redelivered:
            logger.warning(
                f"{__name__}:_refresh - Visibility timeout expired for message {message_id}, "
                "redelivering"
            )

    async def _claim(self) -> QueueMessage | None:
        """Move the next visible message into the in-flight hash, highest priority first."""

        async def claim(pipe: Pipeline) -> QueueMessage | None:
            for key in self._bucket_keys:
                data = await pipe.lindex(key, -1)
                if data is not None:
                    break
            else:
                pipe.multi()
                return None

            message = QueueMessage.from_dict(json.loads(data))
            pipe.multi()
            pipe.rpop(key)
            pipe.hset(self._key("inflight"), message.id, data)
            pipe.zadd(
                self._key("inflight:deadlines"),
                {message.id: self._clock() + self.visibility_timeout_seconds},
            )
            pipe.hincrby(self._key("stats"), "dequeued", 1)
            return message

        return await self._client.transaction(claim, *self._bucket_keys, value_from_callable=True)

    async def dequeue(self, timeout_seconds: float = 5.0) -> QueueMessage | None:
        self._ensure_connected()
        deadline = self._clock() + max(0.0, timeout_seconds)

        with _translate_errors("dequeue"):
            while True:
                await self._refresh()
                message = await self._claim()
                if message is not None:
                    return message

                remaining = deadline - self._clock()
                if remaining <= 0:
                    return None
                await asyncio.sleep(min(self._poll_interval_seconds, remaining))

    async def _resolve(self, message_id: str, counter: str, then=None) -> QueueMessage:
        """
        Remove an in-flight message and queue follow-up commands in one transaction.

        Args:
            message_id: In-flight message id
            counter: Stats counter to increment
            then: Optional callable(pipe, message) queuing more commands

        Raises:
            MessageNotInFlightError: If the message is not currently dequeued
        """
        inflight_key = self._key("inflight")

        async def resolve(pipe: Pipeline) -> QueueMessage:
            data = await pipe.hget(inflight_key, message_id)
            if data is None:
                raise MessageNotInFlightError(message_id)
            message = QueueMessage.from_dict(json.loads(data))
            pipe.multi()
            pipe.hdel(inflight_key, message_id)
            pipe.zrem(self._key("inflight:deadlines"), message_id)
            pipe.hincrby(self._key("stats"), counter, 1)
            if then is not None:
                then(pipe, message)
            return message

        return await self._client.transaction(resolve, inflight_key, value_from_callable=True)

    async def ack(self, message_id: str) -> None:
        self._ensure_connected()
        with _translate_errors("ack"):
            await self._resolve(message_id, "acked")
        logger.debug(f"{__name__}:ack - Acked {message_id}")

    async def nack(
        self,
        message_id: str,
        requeue: bool = True,
        delay_seconds: float = 0.0,
    ) -> None:
        self._ensure_connected()
        outcome: dict[str, QueueMessage] = {}

        def follow_up(pipe: Pipeline, message: QueueMessage) -> None:
            if requeue and message.can_retry():
                retry = message.create_retry_message(self._clock(), delay_seconds)
                self._schedule(pipe, retry, delay_seconds)
                outcome["retry"] = retry
                return
            pipe.hset(self._key("failed"), message.id, json.dumps(message.to_dict()))
            pipe.hincrby(self._key("stats"), "failed", 1)

        with _translate_errors("nack"):
            message = await self._resolve(message_id, "nacked", follow_up)

        retry = outcome.get("retry")
        if retry is not None:
            logger.info(
                f"{__name__}:nack - Requeued {message_id} as {retry.id} "
                f"(retry {retry.retry_count}/{retry.max_retries}, delay={delay_seconds}s)"
            )
            return
        logger.warning(
            f"{__name__}:nack - Message {message_id} permanently failed "
            f"after {message.retry_count} retries"
        )

    async def extend_visibility(self, message_id: str, seconds: float | None = None) -> None:
        self._ensure_connected()
        timeout = self.visibility_timeout_seconds if seconds is None else seconds
        with _translate_errors("extend_visibility"):
            if not await self._client.hexists(self._key("inflight"), message_id):
                raise MessageNotInFlightError(message_id)
            await self._client.zadd(
                self._key("inflight:deadlines"),
                {message_id: self._clock() + timeout},
                xx=True,
            )
        logger.debug(f"{__name__}:extend_visibility - {message_id} hidden for another {timeout}s")

    async def get_stats(self) -> QueueStats:
        self._ensure_connected()
        with _translate_errors("get_stats"):
            await self._refresh()
            queued = 0
            for key in self._bucket_keys:
                queued += await self._client.llen(key)
            counters = await self._client.hgetall(self._key("stats"))
            return QueueStats(
                queued=queued,
                in_flight=await self._client.hlen(self._key("inflight")),
                failed=await self._client.hlen(self._key("failed")),
                delayed=await self._client.zcard(self._key("delayed")),
                enqueued_total=int(counters.get("enqueued", 0)),
                dequeued_total=int(counters.get("dequeued", 0)),
                acked_total=int(counters.get("acked", 0)),
                nacked_total=int(counters.get("nacked", 0)),
                failed_total=int(counters.get("failed", 0)),
            )

    async def purge(self) -> None:
        self._ensure_connected()
        keys = self._bucket_keys + [
            self._key(suffix)
            for suffix in ("delayed", "inflight", "inflight:deadlines", "failed", "stats")
        ]
        with _translate_errors("purge"):
            await self._client.delete(*keys)
        logger.info(f"{__name__}:purge - Purged Redis queue '{self.name}'")

    async def is_healthy(self) -> bool:
        if not self._connected or self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning(f"{__name__}:is_healthy - Redis ping failed: {e}")
            return False
