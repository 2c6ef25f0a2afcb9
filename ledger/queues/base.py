"""
Reliable queue interface

Each logical queue is a set of channels:
- incoming: producer appends, consumer reserves from the head (FIFO)
- processing: messages reserved but not yet acknowledged
- dead-letter: messages that failed processing, kept for inspection
- leases: reservation deadlines used to reclaim messages from consumers
  that crashed mid-processing

A message moves incoming -> processing atomically, then is either removed
(ack) or moved to dead-letter. Nothing is ever dropped silently.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class QueueChannels:
    """Channel names of one reliable queue"""
    incoming: str
    processing: str
    dead_letter: str
    leases: str

    @classmethod
    def for_base(cls, base: str) -> "QueueChannels":
        return cls(
            incoming=base,
            processing=f"{base}:processing",
            dead_letter=f"{base}:dead-letter",
            leases=f"{base}:leases",
        )


class IMessageQueue(ABC):
    """Abstract reliable queue"""

    @abstractmethod
    async def enqueue(self, channel: str, body: str) -> None:
        """Append a message to the tail of `channel`"""
        pass

    @abstractmethod
    async def reserve(
        self,
        channels: QueueChannels,
        timeout: float = 0,
        visibility_timeout: float = 60.0
    ) -> Optional[str]:
        """
        Atomically move the head of incoming to processing

        Args:
            channels: Queue channels
            timeout: Seconds to wait for a message (0 = wait indefinitely)
            visibility_timeout: Lease after which the message may be reclaimed

        Returns:
            Message body, or None if the wait timed out
        """
        pass

    @abstractmethod
    async def ack(self, channels: QueueChannels, body: str) -> None:
        """Remove a successfully handled message from processing"""
        pass

    @abstractmethod
    async def dead_letter(self, channels: QueueChannels, body: str) -> None:
        """Move a failed message from processing to dead-letter"""
        pass

    @abstractmethod
    async def reclaim_expired(
        self,
        channels: QueueChannels,
        visibility_timeout: float = 60.0
    ) -> int:
        """
        Return messages with expired leases to the head of incoming

        Processing entries with no lease (consumer died between reserving
        and leasing) are given a fresh lease and reclaimed on a later sweep.

        Returns:
            Number of messages requeued
        """
        pass

    @abstractmethod
    async def list_dead_letters(self, channels: QueueChannels, limit: int = 100) -> List[str]:
        """Oldest-first view of the dead-letter channel"""
        pass

    @abstractmethod
    async def replay_dead_letters(self, channels: QueueChannels, count: int = 1) -> int:
        """
        Move up to `count` dead letters back to the tail of incoming

        Returns:
            Number of messages moved
        """
        pass

    @abstractmethod
    async def length(self, channel: str) -> int:
        """Number of messages in a channel"""
        pass

    async def close(self) -> None:
        """Release connections"""
        pass
