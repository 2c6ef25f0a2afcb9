"""
Order Store

Order CRUD plus the fill/cancel state machine:

    open -> partially_filled -> ... -> filled      (terminal)
    open | partially_filled -> canceled            (terminal)

Each order tracks the minor units of its lock still outstanding
(locked_units). Fills release part of it; the final fill and a cancel
release whatever is left, so a terminal order always holds nothing.

All methods run inside the caller's transaction.
"""
from datetime import datetime
from decimal import Decimal

from loguru import logger

from ..errors import InvalidStateError, InvariantViolation, OrderNotFound, OverfillError
from ..models import Order, OrderStatus
from ..store import LedgerTransaction


class OrderStore:
    """Order entity persistence and state transitions"""

    async def get(self, tx: LedgerTransaction, order_id: str) -> Order:
        """
        Load an order for update

        Raises:
            OrderNotFound: no such order
        """
        order = await tx.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def create(self, tx: LedgerTransaction, order: Order) -> Order:
        """Insert a new order with filled=0, remaining=quantity, status=open"""
        order.filled = Decimal("0")
        order.remaining = order.quantity
        order.status = OrderStatus.OPEN
        await tx.insert_order(order)

        logger.debug(
            f"Created order {order.id}: {order.side.value} {order.quantity} {order.market} "
            f"locked_units={order.locked_units}"
        )
        return order

    async def apply_fill(
        self,
        tx: LedgerTransaction,
        order_id: str,
        fill_quantity: Decimal,
        released_units: int = 0
    ) -> Order:
        """
        Apply a fill of `fill_quantity` to an order

        Args:
            tx: Enclosing transaction
            order_id: Order being filled
            fill_quantity: Filled quantity
            released_units: Minor units of the order's lock consumed by this fill

        Raises:
            InvalidStateError: order was canceled
            OverfillError: remaining would go negative
            InvariantViolation: the fill releases more than the order still holds,
                or a completed order would keep part of its lock
        """
        if fill_quantity <= 0:
            raise InvariantViolation(f"Fill quantity must be positive, got {fill_quantity}")

        order = await self.get(tx, order_id)

        if order.status == OrderStatus.CANCELED:
            raise InvalidStateError(order_id, order.status.value, "fill")

        new_remaining = order.remaining - fill_quantity
        if new_remaining < 0:
            raise OverfillError(order_id, order.remaining, fill_quantity)

        new_locked = order.locked_units - released_units
        if new_locked < 0 or (new_remaining == 0 and new_locked != 0):
            raise InvariantViolation(
                f"Fill of order {order_id} releases {released_units} of {order.locked_units} locked units",
                order_id=order_id,
            )

        order.remaining = new_remaining
        order.filled = order.filled + fill_quantity
        order.locked_units = new_locked
        order.status = OrderStatus.FILLED if new_remaining == 0 else OrderStatus.PARTIALLY_FILLED
        await tx.save_order(order)

        logger.debug(
            f"Filled {fill_quantity} of order {order_id}: "
            f"filled={order.filled} remaining={order.remaining} status={order.status.value}"
        )
        return order

    async def cancel(
        self,
        tx: LedgerTransaction,
        order_id: str,
        reason: str = "user"
    ) -> Order:
        """
        Mark an active order canceled

        The order's locked_units drop to zero; the caller unlocks the units
        the order held before the call.

        Raises:
            InvalidStateError: order is not open or partially filled
        """
        order = await self.get(tx, order_id)

        if not order.is_active:
            raise InvalidStateError(order_id, order.status.value, "cancel")

        order.status = OrderStatus.CANCELED
        order.canceled_at = datetime.utcnow()
        order.cancel_reason = reason
        order.locked_units = 0
        await tx.save_order(order)

        logger.debug(f"Canceled order {order_id} ({reason}), remaining={order.remaining}")
        return order

    async def mark_submitted(self, tx: LedgerTransaction, order_id: str) -> Order:
        """Record that the NewOrder command reached the engine queue"""
        order = await self.get(tx, order_id)
        order.engine_submitted_at = datetime.utcnow()
        await tx.save_order(order)
        return order
