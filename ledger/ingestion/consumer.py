"""
Per-market engine event consumer

Loop, strictly FIFO within one market:
1. Reserve the head of incoming (atomically moved to processing, leased)
2. Dispatch it through the EngineEventRouter
3. Success -> ack (removed from processing)
   Transient store error -> retry with exponential backoff, up to max_retries
   Anything else -> dead-letter, then pause error_backoff_seconds

Integrity errors are additionally logged at CRITICAL and published as an
IntegrityAlertEvent. Stopping never abandons a message mid-handling: the
in-flight message is finished (acked or dead-lettered) first.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from shared.config.settings import IngestionSettings

from ..engine import engine_event_channels
from ..errors import IntegrityError, LedgerError
from ..events import IEventBus, IntegrityAlertEvent, MessageDeadLetteredEvent
from ..queues import IMessageQueue
from .router import EngineEventRouter


class MarketConsumer:
    """
    Reliable consumer of one market's engine events

    Responsibilities:
    - Hand every message to the router exactly in arrival order
    - Ack, retry or dead-letter according to the error raised
    - Stop gracefully
    """

    def __init__(
        self,
        market: str,
        queue: IMessageQueue,
        router: EngineEventRouter,
        event_bus: Optional[IEventBus] = None,
        config: Optional[IngestionSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize consumer

        Args:
            market: Market symbol
            queue: Reliable queue holding the engine events
            router: Event dispatcher
            event_bus: Optional bus for dead-letter and integrity notifications
            config: Backoff, retry and lease settings
            sleep: Awaitable delay (injected by tests)
        """
        self.market = market
        self.queue = queue
        self.router = router
        self.event_bus = event_bus
        self.config = config or IngestionSettings()
        self.channels = engine_event_channels(market)
        self._sleep = sleep

        # State
        self.is_running = False
        self._task: Optional[asyncio.Task] = None
        self._in_flight = False

        # Statistics
        self.processed_count = 0
        self.retried_count = 0
        self.dead_lettered_count = 0

    async def start(self) -> None:
        """Start consuming in a background task"""
        if self.is_running:
            logger.warning(f"Consumer for {self.market} already running")
            return

        self.is_running = True
        self._task = asyncio.create_task(self.run())

        logger.info(f"Consumer started: {self.channels.incoming}")

    async def stop(self) -> None:
        """Stop reserving new messages; let the in-flight one finish"""
        self.is_running = False

        if self._task:
            if not self._in_flight:
                # Blocked waiting for a message: nothing to lose
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(f"Consumer stopped: {self.channels.incoming}")

    async def run(self) -> None:
        """Consume until stopped"""
        while self.is_running:
            try:
                await self.process_one(self.config.reserve_timeout_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                # Queue unavailable; the reserved message (if any) stays in processing for reclaim
                logger.error(f"Queue error on {self.channels.incoming}: {e}")
                await self._sleep(self.config.error_backoff_seconds)

    async def process_one(self, timeout: float = 0) -> bool:
        """
        Reserve and handle a single message

        Args:
            timeout: Seconds to wait for a message (0 = wait indefinitely)

        Returns:
            True if a message was handled (acked or dead-lettered)
        """
        body = await self.queue.reserve(
            self.channels,
            timeout=timeout,
            visibility_timeout=self.config.visibility_timeout_seconds,
        )
        if body is None:
            return False

        self._in_flight = True
        try:
            failed = await self._handle(body)
        finally:
            self._in_flight = False

        if failed:
            await self._sleep(self.config.error_backoff_seconds)
        return True

    async def _handle(self, body: str) -> bool:
        """Dispatch with retries; returns True if the message was dead-lettered"""
        attempt = 0

        while True:
            try:
                await self.router.dispatch(body, self.market)
            except LedgerError as e:
                if e.retryable and attempt < self.config.max_retries:
                    delay = self.config.transient_retry_base_seconds * (2 ** attempt)
                    attempt += 1
                    self.retried_count += 1
                    logger.warning(
                        f"Transient error on {self.market} (attempt {attempt}/{self.config.max_retries}), "
                        f"retrying in {delay:.2f}s: {e}"
                    )
                    await self._sleep(delay)
                    continue
                await self._dead_letter(body, e)
                return True
            except Exception as e:
                await self._dead_letter(body, e)
                return True

            await self.queue.ack(self.channels, body)
            self.processed_count += 1
            return False

    async def _dead_letter(self, body: str, error: Exception) -> None:
        await self.queue.dead_letter(self.channels, body)
        self.dead_lettered_count += 1

        error_type = type(error).__name__
        error_message = getattr(error, "message", None) or str(error)

        if isinstance(error, IntegrityError):
            logger.critical(
                f"Integrity violation on {self.market}, message dead-lettered: {error_type}: {error_message}"
            )
        elif isinstance(error, LedgerError):
            logger.error(f"Dead-lettered message on {self.market}: {error_type}: {error_message}")
        else:
            logger.opt(exception=error).error(
                f"Unexpected error on {self.market}, message dead-lettered: {error_type}: {error_message}"
            )

        if not self.event_bus:
            return

        await self.event_bus.publish(MessageDeadLetteredEvent(
            market=self.market,
            channel=self.channels.dead_letter,
            error_type=error_type,
            error_message=error_message,
            message=body,
        ))

        if isinstance(error, IntegrityError):
            await self.event_bus.publish(IntegrityAlertEvent(
                market=self.market,
                error_type=error_type,
                error_message=error_message,
                context={k: str(v) for k, v in error.context.items()},
            ))

    def get_statistics(self) -> Dict[str, Any]:
        """Get consumer statistics"""
        return {
            "market": self.market,
            "is_running": self.is_running,
            "processed": self.processed_count,
            "retried": self.retried_count,
            "dead_lettered": self.dead_lettered_count,
        }
