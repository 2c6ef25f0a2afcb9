"""
Order Placement Issuer

Flow, one atomic transaction:
1. Load market (UnknownMarket if absent or inactive)
2. Validate price/quantity against market bounds
3. Size the lock: buy -> reserve_price x quantity of quote rounded up, sell -> quantity of base
4. Lock funds (InsufficientFunds propagates unchanged)
5. Persist the order

Only after commit is the NewOrder command emitted. If emitting fails the
order stays locked but unsubmitted; resubmit_unsubmitted() is the sweep
that re-emits those orders.
"""
from datetime import datetime, timedelta
from decimal import ROUND_UP, Decimal
from typing import List, Optional

from loguru import logger

from ..accounts import BalanceLedger
from ..engine import IEngineGateway
from ..errors import UnknownMarket
from ..events import IEventBus, OrderPlacedEvent
from ..models import Market, Order, OrderSide, OrderStatus, PlaceOrderRequest
from ..orders import OrderStore
from ..store import ILedgerStore


class OrderPlacementIssuer:
    """
    Accept new orders into the ledger

    Responsibilities:
    - Validate the request against the market
    - Lock funds and persist the order atomically
    - Emit NewOrder after commit
    - Re-emit orders whose command never reached the engine
    """

    def __init__(
        self,
        store: ILedgerStore,
        balance_ledger: BalanceLedger,
        order_store: OrderStore,
        gateway: IEngineGateway,
        event_bus: Optional[IEventBus] = None
    ):
        """
        Initialize placement issuer

        Args:
            store: Ledger store
            balance_ledger: Fund lock primitives
            order_store: Order persistence
            gateway: Engine command emitter
            event_bus: Optional bus for OrderPlaced notifications
        """
        self.store = store
        self.balance_ledger = balance_ledger
        self.order_store = order_store
        self.gateway = gateway
        self.event_bus = event_bus

    async def place(self, request: PlaceOrderRequest) -> Order:
        """
        Place an order

        A repeated (user_id, client_order_id) returns the existing order
        without locking funds again.

        Returns:
            The persisted order

        Raises:
            UnknownMarket, InvalidOrderError, PrecisionError, InsufficientFunds
        """
        async with self.store.transaction() as tx:
            market = await tx.get_market(request.market)
            if market is None or not market.is_active:
                raise UnknownMarket(request.market)

            if request.client_order_id:
                existing = await tx.find_order_by_client_id(request.user_id, request.client_order_id)
                if existing is not None:
                    logger.info(
                        f"Duplicate client order id {request.client_order_id} for {request.user_id}, "
                        f"returning order {existing.id}"
                    )
                    return existing

            self._validate(request, market)

            order = Order(
                user_id=request.user_id,
                market=market.symbol,
                side=request.side,
                order_type=request.order_type,
                price=request.price if request.order_type.is_priced else None,
                stop_price=request.stop_price,
                reserve_price=self._reserve_price(request, market),
                quantity=request.quantity,
                time_in_force=request.time_in_force,
                client_order_id=request.client_order_id,
            )

            # Buy locks round up to whole quote units; sell quantities must be exact
            lock_asset = order.locked_asset(market)
            lock_amount = await self.balance_ledger.to_minor_units(
                tx, lock_asset, order.reserved_amount(order.quantity),
                rounding=ROUND_UP if order.side == OrderSide.BUY else None,
            )
            await self.balance_ledger.lock_funds(tx, order.user_id, lock_asset, lock_amount)
            order.locked_units = lock_amount
            await self.order_store.create(tx, order)

        logger.info(
            f"Placed order {order.id}: {order.side.value} {order.quantity} {order.market} "
            f"@ {order.price or 'MARKET'} | locked {lock_amount} {lock_asset}"
        )

        if self.event_bus:
            await self.event_bus.publish(OrderPlacedEvent.from_order(order, lock_asset, lock_amount))

        await self._submit(order)
        return order

    async def resubmit_unsubmitted(self, older_than: timedelta = timedelta(seconds=30)) -> int:
        """
        Re-emit NewOrder for open orders whose command never reached the engine

        Args:
            older_than: Only orders created at least this long ago

        Returns:
            Number of orders successfully resubmitted
        """
        cutoff = datetime.utcnow() - older_than
        candidates: List[Order] = [
            o for o in await self.store.list_orders(statuses=(OrderStatus.OPEN,))
            if o.engine_submitted_at is None and o.created_at <= cutoff
        ]

        submitted = 0
        for order in candidates:
            if await self._submit(order):
                submitted += 1

        if candidates:
            logger.info(f"Resubmitted {submitted}/{len(candidates)} unsubmitted order(s)")
        return submitted

    async def _submit(self, order: Order) -> bool:
        """Emit NewOrder and stamp the order; failures leave it for the sweep"""
        try:
            await self.gateway.submit_new_order(order)
        except Exception as e:
            logger.error(
                f"Failed to submit order {order.id} to engine, left for resubmission: {e}"
            )
            return False

        async with self.store.transaction() as tx:
            await self.order_store.mark_submitted(tx, order.id)
        return True

    @staticmethod
    def _validate(request: PlaceOrderRequest, market: Market) -> None:
        market.validate_quantity(request.quantity)
        if request.price is not None:
            market.validate_price(request.price)
        if request.stop_price is not None:
            market.validate_price(request.stop_price, label="Stop price")

    @staticmethod
    def _reserve_price(request: PlaceOrderRequest, market: Market) -> Optional[Decimal]:
        """
        Per-unit quote price a buy order's lock is sized at

        Priced orders reserve at their limit. Market buys reserve at the
        client's protection price if given, otherwise at the market's
        maximum price: an upper bound on any fill the engine may produce.
        """
        if request.side == OrderSide.SELL:
            return None
        if request.price is not None:
            return request.price
        return market.max_price
