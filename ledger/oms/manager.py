"""
Order Manager

Entry point used by the order API:
- Place orders (funds locked, NewOrder emitted)
- Cancel orders
- Read-only order and balance queries

Persisted entities are exposed read-only; every write goes through the
placement and cancellation issuers.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from loguru import logger

from ..models import Balance, Order, OrderSide, OrderStatus, OrderType, PlaceOrderRequest, TimeInForce, Trade
from ..store import ILedgerStore
from .cancellation import CancellationIssuer
from .placement import OrderPlacementIssuer


class OrderManager:
    """
    Order Management facade

    Responsibilities:
    - Accept order submissions
    - Accept cancellations
    - Serve order, balance and trade queries
    """

    def __init__(
        self,
        store: ILedgerStore,
        placement_issuer: OrderPlacementIssuer,
        cancellation_issuer: CancellationIssuer
    ):
        """
        Initialize Order Manager

        Args:
            store: Ledger store (read side)
            placement_issuer: Creates funded orders
            cancellation_issuer: Cancels orders and releases funds
        """
        self.store = store
        self.placement_issuer = placement_issuer
        self.cancellation_issuer = cancellation_issuer

        logger.info("Initialized OrderManager")

    async def submit_order(
        self,
        user_id: str,
        market: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        price: Optional[Decimal] = None,
        stop_price: Optional[Decimal] = None,
        time_in_force: TimeInForce = TimeInForce.GTC,
        client_order_id: Optional[str] = None
    ) -> Order:
        """
        Submit order for execution

        Args:
            user_id: Order owner
            market: Market symbol
            side: Buy or sell
            order_type: Limit, market, stop variants
            quantity: Order quantity
            price: Limit price (protection price for market buys)
            stop_price: Trigger price for stop orders
            time_in_force: Time in force
            client_order_id: Caller idempotency key

        Returns:
            The persisted order
        """
        request = PlaceOrderRequest(
            user_id=user_id,
            market=market,
            side=side,
            order_type=order_type,
            quantity=quantity,
            price=price,
            stop_price=stop_price,
            time_in_force=time_in_force,
            client_order_id=client_order_id,
        )
        return await self.placement_issuer.place(request)

    async def cancel_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        """Cancel an order"""
        return await self.cancellation_issuer.cancel(order_id, user_id=user_id)

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Get order by ID"""
        return await self.store.get_order(order_id)

    async def get_open_orders(self, user_id: str) -> List[Order]:
        """Orders still resting in the engine"""
        return await self.store.list_open_orders(user_id)

    async def get_order_history(self, user_id: str, limit: int = 100) -> List[Order]:
        """Filled and canceled orders, most recent first"""
        return (await self.store.list_order_history(user_id))[:limit]

    async def get_balances(self, user_id: str) -> List[Balance]:
        """All balances held by a user"""
        return await self.store.list_balances(user_id)

    async def get_trades(self, market: str, limit: int = 100) -> List[Trade]:
        """Recent trades in a market"""
        return await self.store.list_trades(market, limit=limit)

    async def get_statistics(self) -> Dict[str, Any]:
        """Get OMS statistics"""
        orders = await self.store.list_orders()
        total_orders = len(orders)

        filled = len([o for o in orders if o.status == OrderStatus.FILLED])
        canceled = len([o for o in orders if o.status == OrderStatus.CANCELED])

        return {
            "total_orders": total_orders,
            "active_orders": len([o for o in orders if o.is_active]),
            "filled_orders": filled,
            "canceled_orders": canceled,
            "fill_rate": filled / total_orders if total_orders > 0 else 0,
        }
