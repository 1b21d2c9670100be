"""
Test suite for RedisQueue.

Runs the queue contract against fakeredis: priority lists, delayed sorted
set, in-flight deadlines and the failed hash. Connection drops injected at
EXEC time check that no transition loses a message.

System role: Verification of the Redis queue backend
"""

import pytest
from fakeredis import aioredis as fake_aioredis
from redis.asyncio.client import Pipeline
from redis.exceptions import ConnectionError as RedisConnectionError

from testgen.core.exceptions import MessageNotInFlightError, TransientInfrastructureError
from testgen.core.queue import Priority, RedisQueue


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def redis_client():
    """Provide an isolated fake Redis server."""
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
async def redis_queue(redis_client, clock: FakeClock) -> RedisQueue:
    """Provide a connected queue on fakeredis."""
    queue = RedisQueue(
        key_prefix="test:",
        visibility_timeout_seconds=30,
        max_retries=1,
        client=redis_client,
        clock=clock,
    )
    await queue.connect()
    return queue


class TestRedisQueueDelivery:
    """Test suite for enqueue/dequeue against Redis structures."""

    @pytest.mark.asyncio
    async def test_dequeue_should_honor_priority(self, redis_queue: RedisQueue) -> None:
        """Test high is served before normal and low."""
        # Arrange
        low = await redis_queue.enqueue({"n": "low"}, priority=Priority.LOW)
        normal = await redis_queue.enqueue({"n": "normal"})
        high = await redis_queue.enqueue({"n": "high"}, priority=Priority.HIGH)

        # Act
        order = [(await redis_queue.dequeue(timeout_seconds=0)).id for _ in range(3)]

        # Assert
        assert order == [high, normal, low]

    @pytest.mark.asyncio
    async def test_normal_priority_should_use_default_list(
        self, redis_queue: RedisQueue, redis_client
    ) -> None:
        """Test the normal bucket is stored under the 'default' key."""
        # Act
        await redis_queue.enqueue({"type": "run"})

        # Assert
        assert await redis_client.llen("test:default") == 1

    @pytest.mark.asyncio
    async def test_delayed_message_should_wait_in_sorted_set(
        self, redis_queue: RedisQueue, redis_client, clock: FakeClock
    ) -> None:
        """Test a delayed message becomes visible only after its delay."""
        # Arrange
        message_id = await redis_queue.enqueue({"type": "run"}, delay_seconds=10)

        # Act & Assert
        assert await redis_client.zcard("test:delayed") == 1
        assert await redis_queue.dequeue(timeout_seconds=0) is None
        clock.advance(10)
        message = await redis_queue.dequeue(timeout_seconds=0)
        assert message.id == message_id
        assert await redis_client.zcard("test:delayed") == 0

    @pytest.mark.asyncio
    async def test_expired_in_flight_message_should_be_redelivered(
        self, redis_queue: RedisQueue, clock: FakeClock
    ) -> None:
        """Test visibility timeout returns an unacked message to its list."""
        # Arrange
        message_id = await redis_queue.enqueue({"type": "run"})
        await redis_queue.dequeue(timeout_seconds=0)

        # Act
        clock.advance(31)
        redelivered = await redis_queue.dequeue(timeout_seconds=0)

        # Assert
        assert redelivered.id == message_id
        assert redelivered.metadata["redelivered"] is True


class TestRedisQueueAckNack:
    """Test suite for ack/nack against Redis structures."""

    @pytest.mark.asyncio
    async def test_ack_should_clear_in_flight(self, redis_queue: RedisQueue, redis_client) -> None:
        """Test ack removes the message from the in-flight hash and deadlines."""
        # Arrange
        await redis_queue.enqueue({"type": "run"})
        message = await redis_queue.dequeue(timeout_seconds=0)

        # Act
        await redis_queue.ack(message.id)

        # Assert
        assert await redis_client.hlen("test:inflight") == 0
        assert await redis_client.zcard("test:inflight:deadlines") == 0
        stats = await redis_queue.get_stats()
        assert stats.acked_total == 1
        assert stats.dequeued_total == 1

    @pytest.mark.asyncio
    async def test_ack_unknown_should_raise(self, redis_queue: RedisQueue) -> None:
        """Test ack requires an in-flight message."""
        # Act & Assert
        with pytest.raises(MessageNotInFlightError):
            await redis_queue.ack("missing")

    @pytest.mark.asyncio
    async def test_nack_should_retry_then_fail(self, redis_queue: RedisQueue) -> None:
        """Test one retry (max_retries=1) then the failed hash."""
        # Arrange
        await redis_queue.enqueue({"type": "run"})

        # Act
        first = await redis_queue.dequeue(timeout_seconds=0)
        await redis_queue.nack(first.id, requeue=True)
        second = await redis_queue.dequeue(timeout_seconds=0)
        await redis_queue.nack(second.id, requeue=True)

        # Assert
        assert second.retry_count == 1
        assert second.id != first.id
        stats = await redis_queue.get_stats()
        assert stats.failed == 1
        assert stats.failed_total == 1
        assert stats.queued == 0
        assert await redis_queue.dequeue(timeout_seconds=0) is None

    @pytest.mark.asyncio
    async def test_purge_should_delete_every_key(self, redis_queue: RedisQueue, redis_client) -> None:
        """Test purge leaves no queue keys behind."""
        # Arrange
        await redis_queue.enqueue({"n": 1})
        await redis_queue.enqueue({"n": 2}, delay_seconds=30)
        await redis_queue.dequeue(timeout_seconds=0)

        # Act
        await redis_queue.purge()

        # Assert
        assert await redis_client.keys("test:*") == []

    @pytest.mark.asyncio
    async def test_is_healthy_should_ping(self, redis_queue: RedisQueue) -> None:
        """Test health reflects a successful PING."""
        # Act & Assert
        assert await redis_queue.is_healthy() is True
        await redis_queue.disconnect()
        assert await redis_queue.is_healthy() is False


def _drop_connection_on_exec(monkeypatch, call_number: int) -> None:
    """Fail the call_number-th MULTI/EXEC as if the connection dropped."""
    real_execute = Pipeline.execute
    calls = 0

    async def execute(self, raise_on_error: bool = True):
        nonlocal calls
        calls += 1
        if calls == call_number:
            raise RedisConnectionError("connection reset")
        return await real_execute(self, raise_on_error)

    monkeypatch.setattr(Pipeline, "execute", execute)


class TestRedisQueueAtomicity:
    """Test suite for message safety when Redis fails mid-operation."""

    @pytest.mark.asyncio
    async def test_failed_claim_should_leave_message_queued(
        self, redis_queue: RedisQueue, redis_client, monkeypatch
    ) -> None:
        """Test a dropped connection during dequeue neither pops nor loses the message."""
        # Arrange
        message_id = await redis_queue.enqueue({"type": "run"})
        _drop_connection_on_exec(monkeypatch, call_number=3)

        # Act
        with pytest.raises(TransientInfrastructureError):
            await redis_queue.dequeue(timeout_seconds=0)
        monkeypatch.undo()

        # Assert
        assert await redis_client.llen("test:default") == 1
        assert await redis_client.hlen("test:inflight") == 0
        message = await redis_queue.dequeue(timeout_seconds=0)
        assert message.id == message_id

    @pytest.mark.asyncio
    async def test_failed_promotion_should_keep_delayed_message(
        self, redis_queue: RedisQueue, redis_client, clock: FakeClock, monkeypatch
    ) -> None:
        # Arrange
        message_id = await redis_queue.enqueue({"type": "run"}, delay_seconds=5)
        clock.advance(5)
        _drop_connection_on_exec(monkeypatch, call_number=1)

        # Act
        with pytest.raises(TransientInfrastructureError):
            await redis_queue.get_stats()
        monkeypatch.undo()

        # Assert
        assert await redis_client.zcard("test:delayed") == 1
        message = await redis_queue.dequeue(timeout_seconds=0)
        assert message.id == message_id

    @pytest.mark.asyncio
    async def test_failed_reclaim_should_keep_message_in_flight(
        self, redis_queue: RedisQueue, redis_client, clock: FakeClock, monkeypatch
    ) -> None:
        """Test an expired message survives a failure while being returned to its list."""
        # Arrange
        message_id = await redis_queue.enqueue({"type": "run"})
        await redis_queue.dequeue(timeout_seconds=0)
        clock.advance(31)
        _drop_connection_on_exec(monkeypatch, call_number=2)

        # Act
        with pytest.raises(TransientInfrastructureError):
            await redis_queue.dequeue(timeout_seconds=0)
        monkeypatch.undo()

        # Assert
        assert await redis_client.hlen("test:inflight") == 1
        redelivered = await redis_queue.dequeue(timeout_seconds=0)
        assert redelivered.id == message_id
        assert redelivered.metadata["redelivered"] is True

    @pytest.mark.asyncio
    async def test_failed_nack_should_keep_message_in_flight(
        self, redis_queue: RedisQueue, redis_client, monkeypatch
    ) -> None:
        # Arrange
        await redis_queue.enqueue({"type": "run"})
        message = await redis_queue.dequeue(timeout_seconds=0)
        _drop_connection_on_exec(monkeypatch, call_number=1)

        # Act
        with pytest.raises(TransientInfrastructureError):
            await redis_queue.nack(message.id, requeue=True)
        monkeypatch.undo()

        # Assert
        assert await redis_client.hget("test:inflight", message.id) is not None
        await redis_queue.nack(message.id, requeue=True)
        stats = await redis_queue.get_stats()
        assert stats.in_flight == 0
        assert stats.queued == 1


class TestRedisQueueExtendVisibility:
    """Test suite for extend_visibility()."""

    @pytest.mark.asyncio
    async def test_extend_should_keep_message_hidden(
        self, redis_queue: RedisQueue, clock: FakeClock
    ) -> None:
        # Arrange
        await redis_queue.enqueue({"type": "run"})
        message = await redis_queue.dequeue(timeout_seconds=0)

        # Act
        clock.advance(25)
        await redis_queue.extend_visibility(message.id)
        clock.advance(25)
        hidden = await redis_queue.dequeue(timeout_seconds=0)

        # Assert
        assert hidden is None
        await redis_queue.ack(message.id)

    @pytest.mark.asyncio
    async def test_extend_unknown_message_should_raise(self, redis_queue: RedisQueue) -> None:
        # Act & Assert
        with pytest.raises(MessageNotInFlightError):
            await redis_queue.extend_visibility("missing")
