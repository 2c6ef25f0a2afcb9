"""
SQL ledger store

Durable store on SQLAlchemy's asyncio extension: PostgreSQL through
asyncpg in production, SQLite through aiosqlite in tests. One
LedgerTransaction is one database transaction on its own session.

Concurrency:
- balance and order reads inside a transaction take row locks
  (SELECT ... FOR UPDATE), so two settlements touching the same rows
  serialize in the database
- the trade id is the primary key of the trades table; a second insert
  raises DuplicateTradeError
- serialization failures, deadlocks, dropped connections and concurrent
  inserts of the same new row surface as TransientStoreError so the
  ingestion consumer retries the whole message

Decimals are stored as exact text; balances are BIGINT minor units.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    exc as sa_exc,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from ..errors import DuplicateTradeError, LedgerError, TransientStoreError
from ..models import (
    Asset,
    Balance,
    FundingTransaction,
    Market,
    Order,
    OrderStatus,
    Trade,
)
from .base import ILedgerStore, LedgerTransaction


# serialization_failure, deadlock_detected
TRANSIENT_SQLSTATES = {"40001", "40P01"}

ModelT = TypeVar("ModelT", bound=BaseModel)


class ExactDecimal(TypeDecorator):
    """Decimal persisted as its string form"""

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value: Optional[Decimal], dialect) -> Optional[str]:
        return None if value is None else str(value)

    def process_result_value(self, value: Optional[str], dialect) -> Optional[Decimal]:
        return None if value is None else Decimal(value)


class Base(DeclarativeBase):
    pass


class AssetRow(Base):
    __tablename__ = "assets"

    symbol: Mapped[str] = mapped_column(String(32), primary_key=True)
    decimals: Mapped[int] = mapped_column(Integer)
    name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)


class MarketRow(Base):
    __tablename__ = "markets"

    symbol: Mapped[str] = mapped_column(String(64), primary_key=True)
    base_asset: Mapped[str] = mapped_column(ForeignKey("assets.symbol"))
    quote_asset: Mapped[str] = mapped_column(ForeignKey("assets.symbol"))
    min_price: Mapped[Decimal] = mapped_column(ExactDecimal)
    max_price: Mapped[Decimal] = mapped_column(ExactDecimal)
    tick_size: Mapped[Decimal] = mapped_column(ExactDecimal)
    min_quantity: Mapped[Decimal] = mapped_column(ExactDecimal)
    max_quantity: Mapped[Decimal] = mapped_column(ExactDecimal)
    step_size: Mapped[Decimal] = mapped_column(ExactDecimal)
    taker_fee_bps: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class BalanceRow(Base):
    __tablename__ = "balances"
    __table_args__ = (
        CheckConstraint("available >= 0", name="ck_balances_available_nonneg"),
        CheckConstraint("locked >= 0", name="ck_balances_locked_nonneg"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    asset: Mapped[str] = mapped_column(String(32), primary_key=True)
    available: Mapped[int] = mapped_column(BigInteger, default=0)
    locked: Mapped[int] = mapped_column(BigInteger, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class OrderRow(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("user_id", "client_order_id", name="uq_orders_user_client_order_id"),
        CheckConstraint("locked_units >= 0", name="ck_orders_locked_units_nonneg"),
        Index("ix_orders_market_status", "market", "status"),
        Index("ix_orders_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    market: Mapped[str] = mapped_column(String(64))
    side: Mapped[str] = mapped_column(String(8))
    order_type: Mapped[str] = mapped_column(String(16))
    price: Mapped[Optional[Decimal]] = mapped_column(ExactDecimal, nullable=True)
    stop_price: Mapped[Optional[Decimal]] = mapped_column(ExactDecimal, nullable=True)
    reserve_price: Mapped[Optional[Decimal]] = mapped_column(ExactDecimal, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(ExactDecimal)
    filled: Mapped[Decimal] = mapped_column(ExactDecimal)
    remaining: Mapped[Decimal] = mapped_column(ExactDecimal)
    locked_units: Mapped[int] = mapped_column(BigInteger, default=0)
    status: Mapped[str] = mapped_column(String(16))
    time_in_force: Mapped[str] = mapped_column(String(8))
    client_order_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    engine_submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


class TradeRow(Base):
    __tablename__ = "trades"
    __table_args__ = (
        Index("ix_trades_market_timestamp", "market", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    market: Mapped[str] = mapped_column(String(64))
    price: Mapped[Decimal] = mapped_column(ExactDecimal)
    quantity: Mapped[Decimal] = mapped_column(ExactDecimal)
    taker_side: Mapped[str] = mapped_column(String(8))
    buy_order_id: Mapped[str] = mapped_column(String(64))
    sell_order_id: Mapped[str] = mapped_column(String(64))
    buyer_id: Mapped[str] = mapped_column(String(64))
    seller_id: Mapped[str] = mapped_column(String(64))
    fee: Mapped[int] = mapped_column(BigInteger, default=0)
    fee_asset: Mapped[str] = mapped_column(String(32))
    timestamp: Mapped[datetime] = mapped_column(DateTime)


class FundingRow(Base):
    __tablename__ = "funding"
    __table_args__ = (
        Index("ix_funding_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    asset: Mapped[str] = mapped_column(String(32))
    type: Mapped[str] = mapped_column(String(16))
    amount: Mapped[int] = mapped_column(BigInteger)
    balance_after: Mapped[int] = mapped_column(BigInteger)
    timestamp: Mapped[datetime] = mapped_column(DateTime)


def _column_values(model: BaseModel) -> Dict[str, Any]:
    """Model fields as column values (enums by value)"""
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in model.model_dump().items()
    }


def _to_model(model_cls: Type[ModelT], row: Base) -> ModelT:
    return model_cls.model_validate({c.key: getattr(row, c.key) for c in row.__table__.columns})


def is_transient(error: sa_exc.DBAPIError) -> bool:
    """Whether retrying the whole transaction may succeed"""
    if error.connection_invalidated or isinstance(error, sa_exc.OperationalError):
        return True
    # Two transactions inserted the same new balance or order row
    if isinstance(error, sa_exc.IntegrityError):
        return True
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(getattr(orig, "__cause__", None), "sqlstate", None)
    return sqlstate in TRANSIENT_SQLSTATES


class SqlTransaction(LedgerTransaction):
    """LedgerTransaction over one AsyncSession"""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_asset(self, symbol: str) -> Optional[Asset]:
        row = await self._session.get(AssetRow, symbol)
        return _to_model(Asset, row) if row else None

    async def get_market(self, symbol: str) -> Optional[Market]:
        row = await self._session.get(MarketRow, symbol)
        return _to_model(Market, row) if row else None

    async def get_balance(self, user_id: str, asset: str) -> Balance:
        stmt = (
            select(BalanceRow)
            .where(BalanceRow.user_id == user_id, BalanceRow.asset == asset)
            .with_for_update()
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return Balance(user_id=user_id, asset=asset)
        return _to_model(Balance, row)

    async def save_balance(self, balance: Balance) -> None:
        balance.updated_at = datetime.utcnow()
        await self._session.merge(BalanceRow(**_column_values(balance)))

    async def get_order(self, order_id: str) -> Optional[Order]:
        stmt = select(OrderRow).where(OrderRow.id == order_id).with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_model(Order, row) if row else None

    async def find_order_by_client_id(
        self,
        user_id: str,
        client_order_id: str
    ) -> Optional[Order]:
        stmt = select(OrderRow).where(
            OrderRow.user_id == user_id,
            OrderRow.client_order_id == client_order_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_model(Order, row) if row else None

    async def insert_order(self, order: Order) -> None:
        if await self._session.get(OrderRow, order.id) is not None:
            raise LedgerError(f"Order already exists: {order.id}")
        self._session.add(OrderRow(**_column_values(order)))

    async def save_order(self, order: Order) -> None:
        if await self._session.get(OrderRow, order.id) is None:
            raise LedgerError(f"Cannot update unknown order: {order.id}")
        order.updated_at = datetime.utcnow()
        await self._session.merge(OrderRow(**_column_values(order)))

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        row = await self._session.get(TradeRow, trade_id)
        return _to_model(Trade, row) if row else None

    async def insert_trade(self, trade: Trade) -> None:
        # Earlier writes flush first so only the trade row can hit the key
        await self._session.flush()
        self._session.add(TradeRow(**_column_values(trade)))
        try:
            await self._session.flush()
        except sa_exc.IntegrityError as e:
            raise DuplicateTradeError(trade.id) from e

    async def insert_funding(self, record: FundingTransaction) -> None:
        self._session.add(FundingRow(**_column_values(record)))


class SqlLedgerStore(ILedgerStore):
    """
    SQLAlchemy ledger store

    Call connect() once before use; it creates missing tables.
    """

    def __init__(self, url: str, echo: bool = False, pool_size: int = 5):
        """
        Initialize SQL store

        Args:
            url: Async SQLAlchemy URL (postgresql+asyncpg://..., sqlite+aiosqlite://...)
            echo: Log every statement
            pool_size: Connection pool size (ignored for SQLite)
        """
        engine_options: Dict[str, Any] = {"echo": echo}
        if not url.startswith("sqlite"):
            engine_options["pool_size"] = pool_size
            engine_options["pool_pre_ping"] = True

        self.url = url
        self._engine = create_async_engine(url, **engine_options)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        self._connected = False
        self._commits = 0
        self._rollbacks = 0

        logger.info(f"Initialized SqlLedgerStore: {self._engine.url.render_as_string(hide_password=True)}")

    async def connect(self) -> None:
        if self._connected:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._connected = True
        logger.info("SqlLedgerStore schema ready")

    async def close(self) -> None:
        await self._engine.dispose()
        self._connected = False
        logger.info("SqlLedgerStore closed")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[LedgerTransaction]:
        async with self._sessions() as session:
            try:
                async with session.begin():
                    yield SqlTransaction(session)
            except sa_exc.DBAPIError as e:
                self._rollbacks += 1
                if is_transient(e):
                    logger.warning(f"Transient store error, transaction rolled back: {e.orig}")
                    raise TransientStoreError(f"Transient store error: {e.orig}", cause=e) from e
                raise
            except BaseException as e:
                self._rollbacks += 1
                logger.debug(f"Transaction rolled back: {type(e).__name__}: {e}")
                raise
            else:
                self._commits += 1

    # ===== Reference data registration =====

    async def add_asset(self, asset: Asset) -> None:
        async with self._sessions() as session, session.begin():
            await session.merge(AssetRow(**_column_values(asset)))
        logger.debug(f"Registered asset {asset.symbol} ({asset.decimals} decimals)")

    async def add_market(self, market: Market) -> None:
        async with self._sessions() as session, session.begin():
            for symbol in (market.base_asset, market.quote_asset):
                if await session.get(AssetRow, symbol) is None:
                    raise LedgerError(f"Market {market.symbol} references unknown asset {symbol}")
            await session.merge(MarketRow(**_column_values(market)))
        logger.debug(f"Registered market {market.symbol}")

    # ===== Read-only queries =====

    async def get_market(self, symbol: str) -> Optional[Market]:
        async with self._sessions() as session:
            row = await session.get(MarketRow, symbol)
            return _to_model(Market, row) if row else None

    async def list_markets(self, active_only: bool = True) -> List[Market]:
        stmt = select(MarketRow).order_by(MarketRow.symbol)
        if active_only:
            stmt = stmt.where(MarketRow.is_active.is_(True))
        return await self._fetch(Market, stmt)

    async def get_balance(self, user_id: str, asset: str) -> Balance:
        async with self._sessions() as session:
            row = await session.get(BalanceRow, (user_id, asset))
            return _to_model(Balance, row) if row else Balance(user_id=user_id, asset=asset)

    async def list_balances(self, user_id: str) -> List[Balance]:
        stmt = select(BalanceRow).where(BalanceRow.user_id == user_id).order_by(BalanceRow.asset)
        return await self._fetch(Balance, stmt)

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._sessions() as session:
            row = await session.get(OrderRow, order_id)
            return _to_model(Order, row) if row else None

    async def list_orders(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
        market: Optional[str] = None
    ) -> List[Order]:
        stmt = select(OrderRow).order_by(OrderRow.created_at.desc())
        if user_id is not None:
            stmt = stmt.where(OrderRow.user_id == user_id)
        if statuses is not None:
            stmt = stmt.where(OrderRow.status.in_([s.value for s in statuses]))
        if market is not None:
            stmt = stmt.where(OrderRow.market == market)
        return await self._fetch(Order, stmt)

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        async with self._sessions() as session:
            row = await session.get(TradeRow, trade_id)
            return _to_model(Trade, row) if row else None

    async def list_trades(self, market: str, limit: int = 100) -> List[Trade]:
        stmt = (
            select(TradeRow)
            .where(TradeRow.market == market)
            .order_by(TradeRow.timestamp.desc())
            .limit(limit)
        )
        return await self._fetch(Trade, stmt)

    async def list_funding(self, user_id: str) -> List[FundingTransaction]:
        stmt = select(FundingRow).where(FundingRow.user_id == user_id).order_by(FundingRow.timestamp)
        return await self._fetch(FundingTransaction, stmt)

    def get_statistics(self) -> Dict[str, int]:
        """Get store statistics"""
        return {"commits": self._commits, "rollbacks": self._rollbacks}

    async def _fetch(self, model_cls: Type[ModelT], stmt) -> List[ModelT]:
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_model(model_cls, row) for row in rows]
