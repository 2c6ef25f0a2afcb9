"""
Shared fixtures: an in-memory ledger with two funded users and a scripted
matching engine that writes events onto the market's ingestion queue.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import pytest
import pytest_asyncio

from ledger.engine import (
    CancelProcessedMessage,
    OrderProcessedMessage,
    ProcessingStatus,
    TradeMessage,
    encode_event,
    engine_event_channels,
)
from ledger.events import BaseEvent, InMemoryEventBus
from ledger.ingestion import MarketConsumer
from ledger.models import Asset, Market
from ledger.queues import InMemoryMessageQueue
from ledger.service import LedgerService
from ledger.store import ILedgerStore, InMemoryLedgerStore, SqlLedgerStore
from shared.config.settings import IngestionSettings, LedgerSettings, Settings


MARKET = "BTC_USDT"
FEE_MARKET = "ETH_USDT"


class ManualClock:
    """Monotonic clock advanced by hand"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class ScriptedEngine:
    """Writes engine events onto a market's incoming channel"""

    def __init__(self, queue: InMemoryMessageQueue, market: str = MARKET):
        self.queue = queue
        self.market = market
        self.channels = engine_event_channels(market)
        self._trade_seq = 0

    async def send_raw(self, body: str) -> None:
        await self.queue.enqueue(self.channels.incoming, body)

    async def trade(
        self,
        maker_order_id: str,
        taker_order_id: str,
        price: str,
        quantity: str,
        trade_id: Optional[str] = None
    ) -> str:
        self._trade_seq += 1
        trade_id = trade_id or f"t-{self._trade_seq}"
        await self.send_raw(encode_event(TradeMessage(
            id=trade_id,
            market=self.market,
            price=Decimal(price),
            quantity=Decimal(quantity),
            maker_order_id=maker_order_id,
            taker_order_id=taker_order_id,
            timestamp=datetime(2024, 1, 1, 12, 0, 0),
        )))
        return trade_id

    async def order_processed(self, order_id: str, status: ProcessingStatus, reason: Optional[str] = None) -> None:
        await self.send_raw(encode_event(
            OrderProcessedMessage(order_id=order_id, status=status, reason=reason)
        ))

    async def cancel_processed(self, order_id: str, status: ProcessingStatus, reason: Optional[str] = None) -> None:
        await self.send_raw(encode_event(
            CancelProcessedMessage(order_id=order_id, status=status, reason=reason)
        ))


def make_settings(**ledger_overrides) -> Settings:
    return Settings(
        log_file=None,
        ingestion=IngestionSettings(
            error_backoff_seconds=1.0,
            transient_retry_base_seconds=0.5,
            max_retries=3,
            visibility_timeout_seconds=30.0,
            reclaim_interval_seconds=3600.0,
        ),
        ledger=LedgerSettings(**ledger_overrides),
    )


async def build_ledger(
    settings: Settings,
    clock: ManualClock,
    store: Optional[ILedgerStore] = None
) -> LedgerService:
    service = LedgerService(
        store=store or InMemoryLedgerStore(),
        queue=InMemoryMessageQueue(clock=clock),
        event_bus=InMemoryEventBus(),
        settings=settings,
    )
    await service.connect()

    for symbol in ("BTC", "ETH", "USDT"):
        await service.add_asset(Asset(symbol=symbol, decimals=0))

    bounds = dict(
        min_price=Decimal("1"),
        max_price=Decimal("1000"),
        tick_size=Decimal("1"),
        min_quantity=Decimal("1"),
        max_quantity=Decimal("1000"),
        step_size=Decimal("1"),
    )
    await service.add_market(Market(symbol=MARKET, base_asset="BTC", quote_asset="USDT", **bounds))
    await service.add_market(Market(
        symbol=FEE_MARKET, base_asset="ETH", quote_asset="USDT", taker_fee_bps=100, **bounds
    ))

    await service.deposit("alice", "USDT", Decimal("1000"))
    await service.deposit("bob", "BTC", Decimal("10"))
    return service


async def build_fractional_ledger(
    settings: Settings,
    clock: ManualClock,
    store: Optional[ILedgerStore] = None
) -> LedgerService:
    """USDT with 2 decimals, BTC with 8, prices and quantities in 0.01 steps"""
    service = LedgerService(
        store=store or InMemoryLedgerStore(),
        queue=InMemoryMessageQueue(clock=clock),
        event_bus=InMemoryEventBus(),
        settings=settings,
    )
    await service.connect()

    await service.add_asset(Asset(symbol="BTC", decimals=8))
    await service.add_asset(Asset(symbol="USDT", decimals=2))
    await service.add_market(Market(
        symbol=MARKET,
        base_asset="BTC",
        quote_asset="USDT",
        min_price=Decimal("0.01"),
        max_price=Decimal("1000"),
        tick_size=Decimal("0.01"),
        min_quantity=Decimal("0.01"),
        max_quantity=Decimal("1000"),
        step_size=Decimal("0.01"),
    ))

    await service.deposit("alice", "USDT", Decimal("1000.00"))
    await service.deposit("bob", "BTC", Decimal("10"))
    return service


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def ledger(clock) -> LedgerService:
    """Optimistic-cancellation ledger: alice holds 1000 USDT, bob holds 10 BTC"""
    return await build_ledger(make_settings(), clock)


@pytest_asyncio.fixture
async def fractional_ledger(clock) -> LedgerService:
    """alice holds 1000.00 USDT (100000 cents), bob holds 10 BTC (10^9 satoshi)"""
    return await build_fractional_ledger(make_settings(), clock)


@pytest_asyncio.fixture
async def sql_ledger(clock, tmp_path) -> LedgerService:
    """`fractional_ledger` on a SQLite file through the SQL store"""
    store = SqlLedgerStore(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    service = await build_fractional_ledger(make_settings(), clock, store=store)
    yield service
    await store.close()


LEDGER_BUILDERS = {"whole": build_ledger, "fractional": build_fractional_ledger}


@pytest_asyncio.fixture
async def profiled_ledger(request, clock) -> LedgerService:
    """Ledger built by the asset profile named in indirect parametrization"""
    return await LEDGER_BUILDERS[request.param](make_settings(), clock)


@pytest_asyncio.fixture
async def confirmed_ledger(clock) -> LedgerService:
    """Same as `ledger` but cancellations wait for the engine"""
    return await build_ledger(make_settings(cancellation_mode="confirmed"), clock)


@pytest_asyncio.fixture
async def events(ledger) -> List[BaseEvent]:
    """Every event published on the ledger's bus"""
    received: List[BaseEvent] = []

    async def record(event: BaseEvent) -> None:
        received.append(event)

    await ledger.event_bus.subscribe("*", record)
    return received


@pytest.fixture
def engine(ledger) -> ScriptedEngine:
    return ScriptedEngine(ledger.queue)


@pytest.fixture
def consumer(ledger, recording_sleep) -> MarketConsumer:
    return MarketConsumer(
        market=MARKET,
        queue=ledger.queue,
        router=ledger.router,
        event_bus=ledger.event_bus,
        config=ledger.settings.ingestion,
        sleep=recording_sleep,
    )
