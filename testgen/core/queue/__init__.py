"""
Queue abstraction.

One capability interface (QueueBackend) over in-memory, SQS and Redis
brokers with at-least-once delivery and priority buckets.
"""

from testgen.core.queue.base import Priority, QueueBackend, QueueMessage, QueueStats
from testgen.core.queue.factory import create_queue
from testgen.core.queue.local_queue import LocalQueue
from testgen.core.queue.redis_queue import RedisQueue
from testgen.core.queue.sqs_queue import SQSQueue

__all__ = [
    "Priority",
    "QueueBackend",
    "QueueMessage",
    "QueueStats",
    "LocalQueue",
    "SQSQueue",
    "RedisQueue",
    "create_queue",
]
