"""
Redis reliable queue

Reliable-queue pattern over Redis lists:
- enqueue: RPUSH incoming
- reserve: BLMOVE incoming -> processing (LEFT -> RIGHT), then lease in a ZSET
- ack: LREM processing + ZREM lease
- dead_letter / reclaim: Lua scripts so the move only happens if the
  message is still in processing
"""
import time
from typing import List, Optional

from loguru import logger

from .base import IMessageQueue, QueueChannels


# KEYS: processing, dead_letter, leases   ARGV: body
_DEAD_LETTER_SCRIPT = """
local removed = redis.call('LREM', KEYS[1], -1, ARGV[1])
if removed > 0 then
    redis.call('RPUSH', KEYS[2], ARGV[1])
end
redis.call('ZREM', KEYS[3], ARGV[1])
return removed
"""

# KEYS: processing, incoming, leases   ARGV: body
_RECLAIM_SCRIPT = """
local removed = redis.call('LREM', KEYS[1], -1, ARGV[1])
if removed > 0 then
    redis.call('LPUSH', KEYS[2], ARGV[1])
end
redis.call('ZREM', KEYS[3], ARGV[1])
return removed
"""


class RedisMessageQueue(IMessageQueue):
    """Reliable queue backed by Redis lists"""

    def __init__(self, redis_url: str = "redis://localhost:6379/0"):
        self.redis_url = redis_url
        self._redis = None
        self._blocking = None
        self._dead_letter_script = None
        self._reclaim_script = None

        logger.info(f"Initialized RedisMessageQueue: {redis_url}")

    async def connect(self) -> None:
        """Open the command and blocking connections"""
        import redis.asyncio as aioredis

        self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
        # BLMOVE holds its connection; keep it off the command pool
        self._blocking = aioredis.from_url(self.redis_url, decode_responses=True)

        await self._redis.ping()

        self._dead_letter_script = self._redis.register_script(_DEAD_LETTER_SCRIPT)
        self._reclaim_script = self._redis.register_script(_RECLAIM_SCRIPT)

        logger.info("Connected to Redis for message queue")

    async def enqueue(self, channel: str, body: str) -> None:
        await self._redis.rpush(channel, body)

    async def reserve(
        self,
        channels: QueueChannels,
        timeout: float = 0,
        visibility_timeout: float = 60.0
    ) -> Optional[str]:
        body = await self._blocking.blmove(
            channels.incoming,
            channels.processing,
            timeout,
            "LEFT",
            "RIGHT"
        )
        if body is None:
            return None

        await self._redis.zadd(channels.leases, {body: time.time() + visibility_timeout})
        return body

    async def ack(self, channels: QueueChannels, body: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(channels.processing, -1, body)
            pipe.zrem(channels.leases, body)
            await pipe.execute()

    async def dead_letter(self, channels: QueueChannels, body: str) -> None:
        await self._dead_letter_script(
            keys=[channels.processing, channels.dead_letter, channels.leases],
            args=[body]
        )

    async def reclaim_expired(
        self,
        channels: QueueChannels,
        visibility_timeout: float = 60.0
    ) -> int:
        now = time.time()
        processing = await self._redis.lrange(channels.processing, 0, -1)
        if not processing:
            return 0

        leases = dict(await self._redis.zrange(channels.leases, 0, -1, withscores=True))

        reclaimed = 0
        for body in processing:
            deadline = leases.get(body)
            if deadline is None:
                await self._redis.zadd(channels.leases, {body: now + visibility_timeout}, nx=True)
            elif deadline <= now:
                reclaimed += await self._reclaim_script(
                    keys=[channels.processing, channels.incoming, channels.leases],
                    args=[body]
                )

        if reclaimed:
            logger.warning(f"Reclaimed {reclaimed} expired message(s) on {channels.incoming}")
        return reclaimed

    async def list_dead_letters(self, channels: QueueChannels, limit: int = 100) -> List[str]:
        return await self._redis.lrange(channels.dead_letter, 0, limit - 1)

    async def replay_dead_letters(self, channels: QueueChannels, count: int = 1) -> int:
        moved = 0
        while moved < count:
            body = await self._redis.lmove(channels.dead_letter, channels.incoming, "LEFT", "RIGHT")
            if body is None:
                break
            moved += 1
        return moved

    async def length(self, channel: str) -> int:
        return await self._redis.llen(channel)

    async def close(self) -> None:
        for client in (self._blocking, self._redis):
            if client is not None:
                await client.aclose()
        logger.info("Closed RedisMessageQueue")
