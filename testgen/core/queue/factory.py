"""
Queue backend factory.

Resolves configuration to exactly one queue variant at startup.

Dependencies: testgen.configs
System role: Queue backend selection
"""

import logging

from testgen.configs.settings import Settings
from testgen.core.queue.base import QueueBackend
from testgen.core.queue.local_queue import LocalQueue
from testgen.core.queue.redis_queue import RedisQueue
from testgen.core.queue.sqs_queue import SQSQueue

logger = logging.getLogger(__name__)

QUEUE_TYPES = ("local", "sqs", "redis")


def create_queue(settings: Settings) -> QueueBackend:
    """
    Build the queue backend selected by settings.

    Production environments always get SQS regardless of QUEUE_TYPE.

    Args:
        settings: Application settings

    Returns:
        QueueBackend: Unconnected queue backend

    Raises:
        ValueError: If the queue type is unknown or SQS has no queue URL
    """
    queue_type = settings.queue_type
    queue_settings = settings.queue
    logger.info(f"{__name__}:create_queue - Creating '{queue_type}' queue")

    if queue_type == "local":
        return LocalQueue(
            name=queue_settings.name,
            visibility_timeout_seconds=queue_settings.visibility_timeout_seconds,
            max_retries=queue_settings.max_retries,
        )
    if queue_type == "sqs":
        return SQSQueue(
            queue_urls=queue_settings.sqs_queue_urls,
            region=queue_settings.sqs_region,
            name=queue_settings.name,
            visibility_timeout_seconds=queue_settings.visibility_timeout_seconds,
            max_retries=queue_settings.max_retries,
            receive_wait_seconds=queue_settings.receive_wait_seconds,
        )
    if queue_type == "redis":
        return RedisQueue(
            url=queue_settings.redis_url,
            key_prefix=queue_settings.redis_key_prefix,
            name=queue_settings.name,
            visibility_timeout_seconds=queue_settings.visibility_timeout_seconds,
            max_retries=queue_settings.max_retries,
        )

    raise ValueError(
        f"Unsupported queue type: {queue_type}. Supported types: {', '.join(QUEUE_TYPES)}"
    )
