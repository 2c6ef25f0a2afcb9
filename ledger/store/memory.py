"""
In-memory ledger store

Single-process store for development, tests and single-node deployments.
One asyncio.Lock serializes transactions, so every read-modify-write of a
balance or order is atomic. Transactions work on copies and apply them to
the committed state only on clean exit.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ..errors import DuplicateTradeError, LedgerError
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


BalanceKey = Tuple[str, str]


class InMemoryTransaction(LedgerTransaction):
    """Staged view over InMemoryLedgerStore"""

    def __init__(self, store: "InMemoryLedgerStore"):
        self._store = store
        self._balances: Dict[BalanceKey, Balance] = {}
        self._orders: Dict[str, Order] = {}
        self._new_orders: set[str] = set()
        self._trades: Dict[str, Trade] = {}
        self._funding: List[FundingTransaction] = []

    async def get_asset(self, symbol: str) -> Optional[Asset]:
        return self._store._assets.get(symbol)

    async def get_market(self, symbol: str) -> Optional[Market]:
        return self._store._markets.get(symbol)

    async def get_balance(self, user_id: str, asset: str) -> Balance:
        key = (user_id, asset)
        if key in self._balances:
            return self._balances[key].model_copy()
        committed = self._store._balances.get(key)
        if committed is None:
            return Balance(user_id=user_id, asset=asset)
        return committed.model_copy()

    async def save_balance(self, balance: Balance) -> None:
        balance.updated_at = datetime.utcnow()
        self._balances[(balance.user_id, balance.asset)] = balance.model_copy()

    async def get_order(self, order_id: str) -> Optional[Order]:
        if order_id in self._orders:
            return self._orders[order_id].model_copy()
        committed = self._store._orders.get(order_id)
        return committed.model_copy() if committed else None

    async def find_order_by_client_id(
        self,
        user_id: str,
        client_order_id: str
    ) -> Optional[Order]:
        for order in self._orders.values():
            if order.user_id == user_id and order.client_order_id == client_order_id:
                return order.model_copy()
        order_id = self._store._client_ids.get((user_id, client_order_id))
        return await self.get_order(order_id) if order_id else None

    async def insert_order(self, order: Order) -> None:
        if order.id in self._orders or order.id in self._store._orders:
            raise LedgerError(f"Order already exists: {order.id}")
        self._orders[order.id] = order.model_copy()
        self._new_orders.add(order.id)

    async def save_order(self, order: Order) -> None:
        if order.id not in self._orders and order.id not in self._store._orders:
            raise LedgerError(f"Cannot update unknown order: {order.id}")
        order.updated_at = datetime.utcnow()
        self._orders[order.id] = order.model_copy()

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        return self._trades.get(trade_id) or self._store._trades.get(trade_id)

    async def insert_trade(self, trade: Trade) -> None:
        if trade.id in self._trades or trade.id in self._store._trades:
            raise DuplicateTradeError(trade.id)
        self._trades[trade.id] = trade

    async def insert_funding(self, record: FundingTransaction) -> None:
        self._funding.append(record)

    def _commit(self) -> None:
        """Apply staged rows to the committed state"""
        store = self._store
        store._balances.update(self._balances)
        store._orders.update(self._orders)
        for order_id in self._new_orders:
            order = self._orders[order_id]
            if order.client_order_id:
                store._client_ids[(order.user_id, order.client_order_id)] = order_id
        store._trades.update(self._trades)
        store._funding.extend(self._funding)


class InMemoryLedgerStore(ILedgerStore):
    """
    In-memory ledger store

    Fast and simple, but state lives only as long as the process.
    """

    def __init__(self):
        self._assets: Dict[str, Asset] = {}
        self._markets: Dict[str, Market] = {}
        self._balances: Dict[BalanceKey, Balance] = {}
        self._orders: Dict[str, Order] = {}
        self._client_ids: Dict[Tuple[str, str], str] = {}
        self._trades: Dict[str, Trade] = {}
        self._funding: List[FundingTransaction] = []

        self._lock = asyncio.Lock()
        self._commits = 0
        self._rollbacks = 0

        logger.info("Initialized InMemoryLedgerStore")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[LedgerTransaction]:
        async with self._lock:
            tx = InMemoryTransaction(self)
            try:
                yield tx
            except BaseException as e:
                self._rollbacks += 1
                logger.debug(f"Transaction rolled back: {type(e).__name__}: {e}")
                raise
            else:
                tx._commit()
                self._commits += 1

    async def add_asset(self, asset: Asset) -> None:
        self._assets[asset.symbol] = asset
        logger.debug(f"Registered asset {asset.symbol} ({asset.decimals} decimals)")

    async def add_market(self, market: Market) -> None:
        for symbol in (market.base_asset, market.quote_asset):
            if symbol not in self._assets:
                raise LedgerError(f"Market {market.symbol} references unknown asset {symbol}")
        self._markets[market.symbol] = market
        logger.debug(f"Registered market {market.symbol}")

    async def get_market(self, symbol: str) -> Optional[Market]:
        return self._markets.get(symbol)

    async def list_markets(self, active_only: bool = True) -> List[Market]:
        return [m for m in self._markets.values() if m.is_active or not active_only]

    async def get_balance(self, user_id: str, asset: str) -> Balance:
        balance = self._balances.get((user_id, asset))
        return balance.model_copy() if balance else Balance(user_id=user_id, asset=asset)

    async def list_balances(self, user_id: str) -> List[Balance]:
        return [
            b.model_copy() for (uid, _), b in sorted(self._balances.items())
            if uid == user_id
        ]

    async def get_order(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return order.model_copy() if order else None

    async def list_orders(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
        market: Optional[str] = None
    ) -> List[Order]:
        wanted = set(statuses) if statuses is not None else None
        orders = [
            o.model_copy() for o in self._orders.values()
            if (user_id is None or o.user_id == user_id)
            and (wanted is None or o.status in wanted)
            and (market is None or o.market == market)
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        return self._trades.get(trade_id)

    async def list_trades(self, market: str, limit: int = 100) -> List[Trade]:
        trades = [t for t in self._trades.values() if t.market == market]
        trades.sort(key=lambda t: t.timestamp, reverse=True)
        return trades[:limit]

    async def list_funding(self, user_id: str) -> List[FundingTransaction]:
        return [f for f in self._funding if f.user_id == user_id]

    def get_statistics(self) -> Dict[str, int]:
        """Get store statistics"""
        return {
            "balances": len(self._balances),
            "orders": len(self._orders),
            "trades": len(self._trades),
            "commits": self._commits,
            "rollbacks": self._rollbacks,
        }
