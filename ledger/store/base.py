"""
Ledger store interfaces

Every mutation of a balance, order, trade or funding record happens inside
a LedgerTransaction obtained from ILedgerStore.transaction(). A transaction
commits only when its block exits cleanly; any exception discards every
staged write. Implementations must give row-level atomic read-modify-write
across concurrent transactions.

Usage:
    async with store.transaction() as tx:
        balance = await tx.get_balance("alice", "USDT")
        balance.available -= 100
        await tx.save_balance(balance)
"""
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Iterable, List, Optional

from ..models import (
    Asset,
    Balance,
    FundingTransaction,
    Market,
    Order,
    OrderStatus,
    Trade,
)


class LedgerTransaction(ABC):
    """Unit of work over ledger rows"""

    # ===== Reference data =====

    @abstractmethod
    async def get_asset(self, symbol: str) -> Optional[Asset]:
        """Get asset reference data"""
        pass

    @abstractmethod
    async def get_market(self, symbol: str) -> Optional[Market]:
        """Get market reference data"""
        pass

    # ===== Balances =====

    @abstractmethod
    async def get_balance(self, user_id: str, asset: str) -> Balance:
        """
        Get balance row for update

        Returns a zero balance when the user has never held the asset.
        """
        pass

    @abstractmethod
    async def save_balance(self, balance: Balance) -> None:
        """Stage balance update"""
        pass

    # ===== Orders =====

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        """Get order row for update"""
        pass

    @abstractmethod
    async def find_order_by_client_id(
        self,
        user_id: str,
        client_order_id: str
    ) -> Optional[Order]:
        """Look up an order by the caller-supplied client order id"""
        pass

    @abstractmethod
    async def insert_order(self, order: Order) -> None:
        """Stage new order"""
        pass

    @abstractmethod
    async def save_order(self, order: Order) -> None:
        """Stage order update"""
        pass

    # ===== Trades and funding =====

    @abstractmethod
    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        """Get recorded trade"""
        pass

    @abstractmethod
    async def insert_trade(self, trade: Trade) -> None:
        """
        Stage new trade

        Raises:
            DuplicateTradeError: trade id already recorded
        """
        pass

    @abstractmethod
    async def insert_funding(self, record: FundingTransaction) -> None:
        """Stage deposit/withdrawal record"""
        pass


class ILedgerStore(ABC):
    """Abstract ledger store"""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[LedgerTransaction]:
        """Open an atomic transaction"""
        pass

    # ===== Reference data registration =====

    @abstractmethod
    async def add_asset(self, asset: Asset) -> None:
        pass

    @abstractmethod
    async def add_market(self, market: Market) -> None:
        pass

    # ===== Read-only queries =====

    @abstractmethod
    async def get_market(self, symbol: str) -> Optional[Market]:
        pass

    @abstractmethod
    async def list_markets(self, active_only: bool = True) -> List[Market]:
        pass

    @abstractmethod
    async def get_balance(self, user_id: str, asset: str) -> Balance:
        pass

    @abstractmethod
    async def list_balances(self, user_id: str) -> List[Balance]:
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_orders(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
        market: Optional[str] = None
    ) -> List[Order]:
        """List orders, most recent first"""
        pass

    @abstractmethod
    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        pass

    @abstractmethod
    async def list_trades(self, market: str, limit: int = 100) -> List[Trade]:
        """List trades for a market, most recent first"""
        pass

    @abstractmethod
    async def list_funding(self, user_id: str) -> List[FundingTransaction]:
        pass

    async def list_open_orders(self, user_id: str) -> List[Order]:
        """Orders still resting in the engine"""
        return await self.list_orders(
            user_id=user_id,
            statuses=(OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED)
        )

    async def list_order_history(self, user_id: str) -> List[Order]:
        """Orders in a terminal state"""
        return await self.list_orders(
            user_id=user_id,
            statuses=(OrderStatus.FILLED, OrderStatus.CANCELED)
        )

    async def connect(self) -> None:
        """Open connections and prepare the schema"""
        pass

    async def close(self) -> None:
        """Release store resources"""
        pass
