"""
In-memory reliable queue

Same semantics as RedisMessageQueue within a single process. Used in tests
and for single-process deployments where the engine runs in-process.
"""
import asyncio
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List, Optional

from loguru import logger

from .base import IMessageQueue, QueueChannels


class InMemoryMessageQueue(IMessageQueue):
    """Reliable queue over in-process deques"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._channels: Dict[str, Deque[str]] = defaultdict(deque)
        self._leases: Dict[str, Dict[str, float]] = defaultdict(dict)
        self._changed = asyncio.Condition()
        self._clock = clock
        self._closed = False

        logger.info("Initialized InMemoryMessageQueue")

    async def enqueue(self, channel: str, body: str) -> None:
        if self._closed:
            raise RuntimeError("Queue is closed")
        async with self._changed:
            self._channels[channel].append(body)
            self._changed.notify_all()

    async def reserve(
        self,
        channels: QueueChannels,
        timeout: float = 0,
        visibility_timeout: float = 60.0
    ) -> Optional[str]:
        incoming = self._channels[channels.incoming]

        async with self._changed:
            try:
                await asyncio.wait_for(
                    self._changed.wait_for(lambda: bool(incoming) or self._closed),
                    timeout=timeout or None
                )
            except asyncio.TimeoutError:
                return None

            if not incoming:
                return None

            body = incoming.popleft()
            self._channels[channels.processing].append(body)
            self._leases[channels.leases][body] = self._clock() + visibility_timeout
            return body

    async def ack(self, channels: QueueChannels, body: str) -> None:
        self._remove_last(self._channels[channels.processing], body)
        self._leases[channels.leases].pop(body, None)

    async def dead_letter(self, channels: QueueChannels, body: str) -> None:
        if self._remove_last(self._channels[channels.processing], body):
            self._channels[channels.dead_letter].append(body)
        self._leases[channels.leases].pop(body, None)

    async def reclaim_expired(
        self,
        channels: QueueChannels,
        visibility_timeout: float = 60.0
    ) -> int:
        now = self._clock()
        processing = self._channels[channels.processing]
        leases = self._leases[channels.leases]

        expired = []
        for body in list(processing):
            deadline = leases.get(body)
            if deadline is None:
                leases[body] = now + visibility_timeout
            elif deadline <= now:
                expired.append(body)

        if not expired:
            return 0

        async with self._changed:
            # appendleft in reverse keeps the original FIFO order at the head
            for body in reversed(expired):
                if self._remove_last(processing, body):
                    self._channels[channels.incoming].appendleft(body)
                leases.pop(body, None)
            self._changed.notify_all()

        logger.warning(f"Reclaimed {len(expired)} expired message(s) on {channels.incoming}")
        return len(expired)

    async def list_dead_letters(self, channels: QueueChannels, limit: int = 100) -> List[str]:
        return list(self._channels[channels.dead_letter])[:limit]

    async def replay_dead_letters(self, channels: QueueChannels, count: int = 1) -> int:
        dead = self._channels[channels.dead_letter]
        moved = 0
        async with self._changed:
            while dead and moved < count:
                self._channels[channels.incoming].append(dead.popleft())
                moved += 1
            self._changed.notify_all()
        return moved

    async def length(self, channel: str) -> int:
        return len(self._channels[channel])

    async def close(self) -> None:
        self._closed = True
        async with self._changed:
            self._changed.notify_all()
        logger.info("Closed InMemoryMessageQueue")

    def peek(self, channel: str) -> List[str]:
        """Snapshot of a channel (for tests and diagnostics)"""
        return list(self._channels[channel])

    @staticmethod
    def _remove_last(channel: Deque[str], body: str) -> bool:
        """Remove the last occurrence of body, like LREM with count -1"""
        for index in range(len(channel) - 1, -1, -1):
            if channel[index] == body:
                del channel[index]
                return True
        return False
