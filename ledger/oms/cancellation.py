"""
Cancellation Issuer

Two modes, chosen by LedgerSettings.cancellation_mode:

optimistic (default)
    Cancel the order and unlock its remaining funds in one transaction,
    then emit CancelOrder. The engine may still fill the order between the
    local commit and processing the command; such a fill is rejected by
    settlement with CancelRaceError and raised as an integrity alert.

confirmed
    Only validate and emit CancelOrder. The order stays active and its
    funds stay locked until the engine's cancel_processed SUCCESS arrives
    (see EngineConfirmationHandler).
"""
from typing import Optional, Tuple

from loguru import logger

from ..accounts import BalanceLedger
from ..engine import IEngineGateway
from ..errors import InvalidStateError, OrderNotFound, UnknownMarket
from ..events import IEventBus, IntegrityAlertEvent, OrderCanceledEvent
from ..models import Order
from ..orders import OrderStore
from ..store import ILedgerStore, LedgerTransaction


OPTIMISTIC = "optimistic"
CONFIRMED = "confirmed"


class CancellationIssuer:
    """Cancel orders and release their remaining funds"""

    def __init__(
        self,
        store: ILedgerStore,
        balance_ledger: BalanceLedger,
        order_store: OrderStore,
        gateway: IEngineGateway,
        event_bus: Optional[IEventBus] = None,
        mode: str = OPTIMISTIC
    ):
        if mode not in (OPTIMISTIC, CONFIRMED):
            raise ValueError(f"Unknown cancellation mode: {mode}")

        self.store = store
        self.balance_ledger = balance_ledger
        self.order_store = order_store
        self.gateway = gateway
        self.event_bus = event_bus
        self.mode = mode

        logger.info(f"Initialized CancellationIssuer: mode={mode}")

    async def cancel(self, order_id: str, user_id: Optional[str] = None) -> Order:
        """
        Cancel an order

        Args:
            order_id: Order to cancel
            user_id: If given, the order must belong to this user

        Returns:
            The order (canceled in optimistic mode, still active in confirmed mode)

        Raises:
            OrderNotFound: no such order (or not owned by user_id)
            InvalidStateError: order already filled or canceled
        """
        if self.mode == CONFIRMED:
            return await self._request_cancel(order_id, user_id)

        async with self.store.transaction() as tx:
            order, asset, amount = await self.cancel_in_transaction(tx, order_id, user_id=user_id)

        logger.info(f"Canceled order {order_id}: unlocked {amount} {asset}")
        await self.publish_canceled(order, asset, amount)

        try:
            await self.gateway.submit_cancel(order)
        except Exception as e:
            # Funds are already released locally while the order may still rest in the book
            logger.critical(f"Order {order_id} canceled locally but CancelOrder was not sent: {e}")
            if self.event_bus:
                await self.event_bus.publish(IntegrityAlertEvent(
                    market=order.market,
                    error_type="CancelCommandNotSent",
                    error_message=str(e),
                    context={"order_id": order_id},
                ))

        return order

    async def cancel_in_transaction(
        self,
        tx: LedgerTransaction,
        order_id: str,
        reason: str = "user",
        user_id: Optional[str] = None
    ) -> Tuple[Order, str, int]:
        """
        Cancel an order and unlock its remaining funds inside `tx`

        The unlock is whatever part of the placement lock the order still
        holds after its fills (its locked_units).

        Returns:
            (canceled order, unlocked asset, unlocked minor units)
        """
        order = await self.order_store.get(tx, order_id)
        if user_id is not None and order.user_id != user_id:
            raise OrderNotFound(order_id)

        market = await tx.get_market(order.market)
        if market is None:
            raise UnknownMarket(order.market)

        amount = order.locked_units
        order = await self.order_store.cancel(tx, order_id, reason=reason)

        asset = order.locked_asset(market)
        await self.balance_ledger.unlock_funds(tx, order.user_id, asset, amount)

        return order, asset, amount

    async def publish_canceled(self, order: Order, asset: str, amount: int) -> None:
        if self.event_bus:
            await self.event_bus.publish(OrderCanceledEvent(
                market=order.market,
                order_id=order.id,
                user_id=order.user_id,
                remaining=order.remaining,
                unlocked_asset=asset,
                unlocked_amount=amount,
                reason=order.cancel_reason or "user",
            ))

    async def _request_cancel(self, order_id: str, user_id: Optional[str]) -> Order:
        """Confirmed mode: validate and emit, mutate nothing"""
        order = await self.store.get_order(order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise OrderNotFound(order_id)
        if not order.is_active:
            raise InvalidStateError(order_id, order.status.value, "cancel")

        await self.gateway.submit_cancel(order)
        logger.info(f"Cancel requested for order {order_id}, awaiting engine confirmation")
        return order
