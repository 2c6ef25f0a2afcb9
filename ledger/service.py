"""
Ledger Service

Composition root wiring the settlement ledger together:

    OrderManager -> OrderPlacementIssuer / CancellationIssuer -> engine command queues
    engine event queues -> IngestionWorker -> EngineEventRouter
        -> TradeSettlementProcessor / EngineConfirmationHandler

Usage:
    service = create_ledger_service(settings)
    await service.start()
    ...
    await service.stop()
"""
import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from loguru import logger

from shared.config.settings import Settings

from .accounts import BalanceLedger, FundingService
from .engine import QueueEngineGateway, engine_event_channels
from .events import IEventBus, RedisEventBus, create_event_bus
from .ingestion import EngineEventRouter, IngestionWorker
from .models import Asset, Balance, Market, ReferenceData
from .oms import CancellationIssuer, EngineConfirmationHandler, OrderManager, OrderPlacementIssuer
from .orders import OrderStore
from .queues import IMessageQueue, RedisMessageQueue, create_message_queue
from .settlement import TradeSettlementProcessor
from .store import ILedgerStore, InMemoryLedgerStore, SqlLedgerStore


class LedgerService:
    """Owns every ledger component and their lifecycle"""

    def __init__(
        self,
        store: ILedgerStore,
        queue: IMessageQueue,
        event_bus: IEventBus,
        settings: Optional[Settings] = None
    ):
        """
        Initialize Ledger Service

        Args:
            store: Ledger store
            queue: Reliable queue shared with the matching engine
            event_bus: Notification bus for API/UI collaborators
            settings: Application settings
        """
        self.settings = settings or Settings()
        self.store = store
        self.queue = queue
        self.event_bus = event_bus

        ledger_config = self.settings.ledger

        self.balance_ledger = BalanceLedger()
        self.order_store = OrderStore()
        self.gateway = QueueEngineGateway(queue)
        self.funding = FundingService(store, self.balance_ledger)

        self.placement = OrderPlacementIssuer(
            store, self.balance_ledger, self.order_store, self.gateway, event_bus
        )
        self.cancellation = CancellationIssuer(
            store, self.balance_ledger, self.order_store, self.gateway, event_bus,
            mode=ledger_config.cancellation_mode,
        )
        self.confirmations = EngineConfirmationHandler(store, self.order_store, self.cancellation)
        self.settlement = TradeSettlementProcessor(
            store, self.balance_ledger, self.order_store, event_bus,
            fee_account_id=ledger_config.fee_account_id,
        )
        self.orders = OrderManager(store, self.placement, self.cancellation)

        self.router = EngineEventRouter(self.settlement, self.confirmations)
        self.worker = IngestionWorker(
            store, queue, self.router, event_bus, config=self.settings.ingestion
        )

        # State
        self.is_running = False
        self._connected = False
        self._resubmit_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Open backend connections (idempotent)"""
        if self._connected:
            return
        await self.store.connect()
        if isinstance(self.queue, RedisMessageQueue):
            await self.queue.connect()
        if isinstance(self.event_bus, RedisEventBus):
            await self.event_bus.connect()
        self._connected = True

    async def start(self) -> None:
        """Connect and start ingestion plus the resubmission sweep"""
        if self.is_running:
            logger.warning("LedgerService already running")
            return

        await self.connect()
        await self.worker.start()

        self.is_running = True
        self._resubmit_task = asyncio.create_task(self._resubmit_loop())

        logger.info(f"{self.settings.app_name} started")

    async def stop(self) -> None:
        """Stop ingestion (finishing in-flight messages), then release connections"""
        self.is_running = False

        if self._resubmit_task:
            self._resubmit_task.cancel()
            try:
                await self._resubmit_task
            except asyncio.CancelledError:
                pass
            self._resubmit_task = None

        await self.worker.stop()
        await self.queue.close()
        await self.event_bus.close()
        await self.store.close()
        self._connected = False

        logger.info(f"{self.settings.app_name} stopped")

    # ===== Reference data and funding =====

    async def add_asset(self, asset: Asset) -> None:
        await self.store.add_asset(asset)

    async def add_market(self, market: Market) -> None:
        await self.store.add_market(market)

    async def load_reference_data(self, data: ReferenceData) -> None:
        """Register assets, then the markets trading them"""
        for asset in data.assets:
            await self.store.add_asset(asset)
        for market in data.markets:
            await self.store.add_market(market)
        logger.info(f"Loaded {len(data.assets)} asset(s) and {len(data.markets)} market(s)")

    async def deposit(self, user_id: str, asset: str, amount: Decimal) -> Balance:
        return await self.funding.deposit(user_id, asset, amount)

    async def withdraw(self, user_id: str, asset: str, amount: Decimal) -> Balance:
        return await self.funding.withdraw(user_id, asset, amount)

    # ===== Operations =====

    async def list_dead_letters(self, market: str, limit: int = 100) -> List[str]:
        """Dead-lettered engine events of one market, oldest first"""
        return await self.queue.list_dead_letters(engine_event_channels(market), limit=limit)

    async def replay_dead_letters(self, market: str, count: int = 1) -> int:
        """Move dead-lettered engine events back onto the market's incoming queue"""
        moved = await self.queue.replay_dead_letters(engine_event_channels(market), count=count)
        logger.info(f"Replayed {moved} dead-lettered message(s) on {market}")
        return moved

    async def _resubmit_loop(self) -> None:
        """Periodic resubmission of orders whose NewOrder never reached the engine"""
        interval = self.settings.ledger.resubmit_interval_seconds

        while self.is_running:
            try:
                await asyncio.sleep(interval)
                await self.placement.resubmit_unsubmitted(older_than=timedelta(seconds=interval))

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in resubmit loop: {e}")

    async def get_statistics(self) -> Dict[str, Any]:
        """Get service statistics"""
        return {
            "orders": await self.orders.get_statistics(),
            "ingestion": self.worker.get_statistics(),
        }


def create_ledger_service(settings: Optional[Settings] = None) -> LedgerService:
    """
    Factory function to build a LedgerService from settings

    Args:
        settings: Application settings (defaults loaded from the environment)

    Returns:
        Unstarted LedgerService
    """
    settings = settings or Settings()
    ledger_config = settings.ledger

    if ledger_config.queue_backend == "redis" and ledger_config.store_backend == "memory":
        raise ValueError("The redis queue requires a durable store, set LEDGER_STORE_BACKEND=sql")

    if ledger_config.store_backend == "sql":
        db = settings.database
        store: ILedgerStore = SqlLedgerStore(db.async_url, echo=db.echo, pool_size=db.pool_size)
    elif ledger_config.store_backend == "memory":
        store = InMemoryLedgerStore()
    else:
        raise ValueError(f"Unknown store backend: {ledger_config.store_backend}")

    if ledger_config.queue_backend == "redis":
        queue = create_message_queue("redis", redis_url=settings.redis.redis_url)
    else:
        queue = create_message_queue(ledger_config.queue_backend)

    if ledger_config.bus_backend == "redis":
        event_bus = create_event_bus("redis", redis_url=settings.redis.redis_url)
    else:
        event_bus = create_event_bus(ledger_config.bus_backend)

    logger.info(
        f"Creating ledger service: store={ledger_config.store_backend} "
        f"queue={ledger_config.queue_backend} bus={ledger_config.bus_backend} "
        f"cancellation={ledger_config.cancellation_mode}"
    )
    return LedgerService(store, queue, event_bus, settings)
