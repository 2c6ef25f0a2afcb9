"""
Ingestion Worker

Runs one MarketConsumer per active market, in parallel and independent of
each other, plus a reclaimer task that returns messages with expired
leases (consumer crashed mid-handling) to the head of their incoming
channel. One reclaim sweep runs at startup before consumers begin.
"""
import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger

from shared.config.settings import IngestionSettings

from ..events import IEventBus
from ..queues import IMessageQueue
from ..store import ILedgerStore
from .consumer import MarketConsumer
from .router import EngineEventRouter


class IngestionWorker:
    """Supervise the per-market consumers"""

    def __init__(
        self,
        store: ILedgerStore,
        queue: IMessageQueue,
        router: EngineEventRouter,
        event_bus: Optional[IEventBus] = None,
        config: Optional[IngestionSettings] = None,
        markets: Optional[List[str]] = None
    ):
        """
        Initialize worker

        Args:
            store: Ledger store (source of active markets)
            queue: Reliable queue holding engine events
            router: Event dispatcher shared by all consumers
            event_bus: Optional bus for dead-letter and integrity notifications
            config: Ingestion settings
            markets: Explicit market list; defaults to every active market
        """
        self.store = store
        self.queue = queue
        self.router = router
        self.event_bus = event_bus
        self.config = config or IngestionSettings()
        self.markets = markets

        self.consumers: Dict[str, MarketConsumer] = {}

        # State
        self.is_running = False
        self._reclaim_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Reclaim stranded messages, then start a consumer per market"""
        if self.is_running:
            logger.warning("IngestionWorker already running")
            return

        markets = self.markets
        if markets is None:
            markets = [m.symbol for m in await self.store.list_markets(active_only=True)]

        for market in markets:
            self.consumers[market] = MarketConsumer(
                market=market,
                queue=self.queue,
                router=self.router,
                event_bus=self.event_bus,
                config=self.config,
            )

        self.is_running = True
        await self.reclaim_once()

        for consumer in self.consumers.values():
            await consumer.start()

        self._reclaim_task = asyncio.create_task(self._reclaim_loop())

        logger.info(f"IngestionWorker started: {len(self.consumers)} market(s)")

    async def stop(self) -> None:
        """Stop consumers, waiting for in-flight messages"""
        self.is_running = False

        if self._reclaim_task:
            self._reclaim_task.cancel()
            try:
                await self._reclaim_task
            except asyncio.CancelledError:
                pass
            self._reclaim_task = None

        await asyncio.gather(*(consumer.stop() for consumer in self.consumers.values()))

        logger.info("IngestionWorker stopped")

    async def reclaim_once(self) -> int:
        """
        Sweep every market's processing channel once

        Returns:
            Number of messages returned to incoming
        """
        reclaimed = 0
        for consumer in self.consumers.values():
            reclaimed += await self.queue.reclaim_expired(
                consumer.channels,
                visibility_timeout=self.config.visibility_timeout_seconds,
            )
        return reclaimed

    async def _reclaim_loop(self) -> None:
        """Periodic lease sweep"""

        while self.is_running:
            try:
                await asyncio.sleep(self.config.reclaim_interval_seconds)
                await self.reclaim_once()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in reclaim loop: {e}")

    def get_statistics(self) -> Dict[str, Any]:
        """Get per-market consumer statistics"""
        return {
            "is_running": self.is_running,
            "markets": [c.get_statistics() for c in self.consumers.values()],
        }
