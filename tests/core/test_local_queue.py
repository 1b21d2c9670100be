"""
Test suite for LocalQueue.

Tests priority ordering, delayed visibility, visibility timeouts, ack/nack
semantics and statistics against a controllable clock.

System role: Verification of the in-memory queue backend
"""

import asyncio

import pytest

from testgen.core.exceptions import MessageNotInFlightError, QueueNotConnectedError
from testgen.core.queue import LocalQueue, Priority


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def queue(clock: FakeClock) -> LocalQueue:
    """Provide a connected queue on the fake clock."""
    local = LocalQueue(name="test", visibility_timeout_seconds=30, max_retries=2, clock=clock)
    await local.connect()
    return local


class TestConnection:
    """Test suite for connection guards."""

    @pytest.mark.asyncio
    async def test_enqueue_before_connect_should_raise(self) -> None:
        """Test operations require connect()."""
        # Arrange
        local = LocalQueue()

        # Act & Assert
        with pytest.raises(QueueNotConnectedError):
            await local.enqueue({"type": "run"})

    @pytest.mark.asyncio
    async def test_context_manager_should_connect_and_disconnect(self) -> None:
        """Test async with connects on entry and disconnects on exit."""
        # Act
        async with LocalQueue() as local:
            connected_inside = local.is_connected

        # Assert
        assert connected_inside is True
        assert local.is_connected is False


class TestEnqueueDequeue:
    """Test suite for enqueue and dequeue."""

    @pytest.mark.asyncio
    async def test_dequeue_should_return_payload_and_metadata(self, queue: LocalQueue) -> None:
        """Test a message round-trips through the queue."""
        # Arrange
        message_id = await queue.enqueue({"type": "run", "projectId": 7}, metadata={"source": "api"})

        # Act
        message = await queue.dequeue(timeout_seconds=0)

        # Assert
        assert message is not None
        assert message.id == message_id
        assert message.payload == {"type": "run", "projectId": 7}
        assert message.metadata == {"source": "api"}
        assert message.retry_count == 0
        assert message.max_retries == 2

    @pytest.mark.asyncio
    async def test_dequeue_should_respect_priority_then_fifo(self, queue: LocalQueue) -> None:
        """Test high beats normal beats low, FIFO inside a bucket."""
        # Arrange
        low = await queue.enqueue({"n": "low"}, priority=Priority.LOW)
        normal_1 = await queue.enqueue({"n": "normal-1"})
        high = await queue.enqueue({"n": "high"}, priority="high")
        normal_2 = await queue.enqueue({"n": "normal-2"}, priority="default")

        # Act
        order = [(await queue.dequeue(timeout_seconds=0)).id for _ in range(4)]

        # Assert
        assert order == [high, normal_1, normal_2, low]

    @pytest.mark.asyncio
    async def test_dequeue_empty_should_return_none(self, queue: LocalQueue) -> None:
        """Test an empty queue yields None after the timeout."""
        # Act
        message = await queue.dequeue(timeout_seconds=0)

        # Assert
        assert message is None

    @pytest.mark.asyncio
    async def test_unknown_priority_should_raise(self, queue: LocalQueue) -> None:
        """Test priority strings are validated."""
        # Act & Assert
        with pytest.raises(ValueError):
            await queue.enqueue({}, priority="urgent")

    @pytest.mark.asyncio
    async def test_waiting_dequeue_should_wake_on_enqueue(self) -> None:
        """Test a long-poll returns as soon as a message arrives."""
        # Arrange
        local = LocalQueue()
        await local.connect()
        waiter = asyncio.create_task(local.dequeue(timeout_seconds=5))
        await asyncio.sleep(0)

        # Act
        message_id = await local.enqueue({"type": "run"})
        message = await asyncio.wait_for(waiter, timeout=1)

        # Assert
        assert message is not None
        assert message.id == message_id


class TestDelayedVisibility:
    """Test suite for delayed messages."""

    @pytest.mark.asyncio
    async def test_delayed_message_should_not_be_visible_before_delay(
        self, queue: LocalQueue, clock: FakeClock
    ) -> None:
        """Test dequeue never returns a message before its delay elapses."""
        # Arrange
        message_id = await queue.enqueue({"type": "run"}, delay_seconds=10)

        # Act & Assert
        assert await queue.dequeue(timeout_seconds=0) is None
        clock.advance(9.9)
        assert await queue.dequeue(timeout_seconds=0) is None
        clock.advance(0.1)
        message = await queue.dequeue(timeout_seconds=0)
        assert message is not None
        assert message.id == message_id

    @pytest.mark.asyncio
    async def test_stats_should_count_delayed_separately(self, queue: LocalQueue) -> None:
        """Test delayed messages are not reported as queued."""
        # Arrange
        await queue.enqueue({"n": 1}, delay_seconds=5)
        await queue.enqueue({"n": 2})

        # Act
        stats = await queue.get_stats()

        # Assert
        assert stats.delayed == 1
        assert stats.queued == 1
        assert stats.enqueued_total == 2


class TestVisibilityTimeout:
    """Test suite for in-flight expiry."""

    @pytest.mark.asyncio
    async def test_unacked_message_should_be_redelivered_after_timeout(
        self, queue: LocalQueue, clock: FakeClock
    ) -> None:
        """Test at-least-once delivery when a consumer never acks."""
        # Arrange
        first = await queue.enqueue({"type": "run"})
        await queue.dequeue(timeout_seconds=0)

        # Act
        clock.advance(29)
        hidden = await queue.dequeue(timeout_seconds=0)
        clock.advance(1)
        redelivered = await queue.dequeue(timeout_seconds=0)

        # Assert
        assert hidden is None
        assert redelivered is not None
        assert redelivered.id == first
        assert redelivered.retry_count == 0
        assert redelivered.metadata["redelivered"] is True

    @pytest.mark.asyncio
    async def test_ack_after_expiry_should_raise(self, queue: LocalQueue, clock: FakeClock) -> None:
        """Test a late ack is rejected once the message went back to the queue."""
        # Arrange
        await queue.enqueue({"type": "run"})
        message = await queue.dequeue(timeout_seconds=0)
        clock.advance(31)

        # Act & Assert
        with pytest.raises(MessageNotInFlightError):
            await queue.ack(message.id)

    @pytest.mark.asyncio
    async def test_extend_visibility_should_push_the_deadline(
        self, queue: LocalQueue, clock: FakeClock
    ) -> None:
        """Test a long-running consumer keeps its message hidden."""
        # Arrange
        await queue.enqueue({"type": "run"})
        message = await queue.dequeue(timeout_seconds=0)

        # Act
        clock.advance(25)
        await queue.extend_visibility(message.id)
        clock.advance(25)
        hidden = await queue.dequeue(timeout_seconds=0)
        clock.advance(5)
        redelivered = await queue.dequeue(timeout_seconds=0)

        # Assert
        assert hidden is None
        assert redelivered.id == message.id

    @pytest.mark.asyncio
    async def test_extend_visibility_after_expiry_should_raise(
        self, queue: LocalQueue, clock: FakeClock
    ) -> None:
        # Arrange
        await queue.enqueue({"type": "run"})
        message = await queue.dequeue(timeout_seconds=0)
        clock.advance(30)

        # Act & Assert
        with pytest.raises(MessageNotInFlightError):
            await queue.extend_visibility(message.id, seconds=60)


class TestAckNack:
    """Test suite for ack and nack."""

    @pytest.mark.asyncio
    async def test_ack_should_remove_message(self, queue: LocalQueue) -> None:
        """Test an acked message is gone for good."""
        # Arrange
        await queue.enqueue({"type": "run"})
        message = await queue.dequeue(timeout_seconds=0)
        assert [m.id for m in queue.in_flight_messages()] == [message.id]

        # Act
        await queue.ack(message.id)

        # Assert
        assert queue.in_flight_messages() == []
        stats = await queue.get_stats()
        assert stats.in_flight == 0
        assert stats.queued == 0
        assert stats.acked_total == 1

    @pytest.mark.asyncio
    async def test_ack_unknown_message_should_raise(self, queue: LocalQueue) -> None:
        """Test ack requires an in-flight message."""
        # Act & Assert
        with pytest.raises(MessageNotInFlightError):
            await queue.ack("missing")

    @pytest.mark.asyncio
    async def test_nack_with_requeue_should_schedule_retry_copy(
        self, queue: LocalQueue, clock: FakeClock
    ) -> None:
        """Test a requeued copy has a new id, retry_count + 1 and the requested delay."""
        # Arrange
        original = await queue.enqueue({"type": "run"})
        message = await queue.dequeue(timeout_seconds=0)

        # Act
        await queue.nack(message.id, requeue=True, delay_seconds=4)

        # Assert
        assert await queue.dequeue(timeout_seconds=0) is None
        clock.advance(4)
        retry = await queue.dequeue(timeout_seconds=0)
        assert retry is not None
        assert retry.id != original
        assert retry.retry_count == 1
        assert retry.metadata["original_id"] == original

    @pytest.mark.asyncio
    async def test_nack_should_fail_permanently_when_retries_exhausted(self, queue: LocalQueue) -> None:
        """Test the retry budget ends in the failed set."""
        # Arrange
        await queue.enqueue({"type": "run"})

        # Act
        for _ in range(3):
            message = await queue.dequeue(timeout_seconds=0)
            await queue.nack(message.id, requeue=True)

        # Assert
        stats = await queue.get_stats()
        assert stats.failed == 1
        assert stats.queued == 0
        assert stats.nacked_total == 3
        assert queue.failed_messages()[0].retry_count == 2

    @pytest.mark.asyncio
    async def test_nack_without_requeue_should_fail_immediately(self, queue: LocalQueue) -> None:
        """Test requeue=False skips remaining retries."""
        # Arrange
        await queue.enqueue({"type": "run"})
        message = await queue.dequeue(timeout_seconds=0)

        # Act
        await queue.nack(message.id, requeue=False)

        # Assert
        assert [m.id for m in queue.failed_messages()] == [message.id]
        assert await queue.dequeue(timeout_seconds=0) is None

    @pytest.mark.asyncio
    async def test_reset_failed_messages_should_requeue_with_fresh_budget(self, queue: LocalQueue) -> None:
        """Test failed messages can be sent back for another round."""
        # Arrange
        await queue.enqueue({"type": "run"})
        message = await queue.dequeue(timeout_seconds=0)
        await queue.nack(message.id, requeue=False)

        # Act
        count = queue.reset_failed_messages()
        again = await queue.dequeue(timeout_seconds=0)

        # Assert
        assert count == 1
        assert again.id == message.id
        assert again.retry_count == 0


class TestPurge:
    """Test suite for purge()."""

    @pytest.mark.asyncio
    async def test_purge_should_empty_every_bucket(self, queue: LocalQueue) -> None:
        """Test ready, delayed, in-flight and failed messages are dropped."""
        # Arrange
        await queue.enqueue({"n": 1})
        await queue.enqueue({"n": 2}, delay_seconds=60)
        await queue.enqueue({"n": 3})
        await queue.dequeue(timeout_seconds=0)

        # Act
        await queue.purge()

        # Assert
        stats = await queue.get_stats()
        assert stats.to_dict() == {key: 0 for key in stats.to_dict()}
