"""
Reliable queues

- IMessageQueue / QueueChannels: incoming -> processing -> (ack | dead-letter)
- InMemoryMessageQueue: single-process implementation
- RedisMessageQueue: Redis lists, shared with the matching engine
"""
from typing import Any

from .base import IMessageQueue, QueueChannels
from .memory import InMemoryMessageQueue
from .redis import RedisMessageQueue


def create_message_queue(queue_type: str = "memory", **kwargs: Any) -> IMessageQueue:
    """
    Factory function to create a message queue

    Args:
        queue_type: 'memory' or 'redis'
        **kwargs: Additional arguments for the queue
    """
    if queue_type == "memory":
        return InMemoryMessageQueue()
    elif queue_type == "redis":
        return RedisMessageQueue(**kwargs)
    else:
        raise ValueError(f"Unknown queue type: {queue_type}")


__all__ = [
    "IMessageQueue",
    "QueueChannels",
    "InMemoryMessageQueue",
    "RedisMessageQueue",
    "create_message_queue",
]
