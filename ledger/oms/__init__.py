"""
Order Management

Components:
- OrderPlacementIssuer: validate, lock funds, persist, emit NewOrder
- CancellationIssuer: cancel, unlock remaining funds, emit CancelOrder
- EngineConfirmationHandler: apply engine order/cancel acknowledgements
- OrderManager: facade used by the order API

Usage:
    manager = OrderManager(store, placement_issuer, cancellation_issuer)

    order = await manager.submit_order(
        "alice", "BTC_USDT", OrderSide.BUY, OrderType.LIMIT,
        quantity=Decimal("5"), price=Decimal("100"),
    )
    await manager.cancel_order(order.id, user_id="alice")
"""

from .placement import OrderPlacementIssuer
from .cancellation import CONFIRMED, OPTIMISTIC, CancellationIssuer
from .confirmations import EngineConfirmationHandler
from .manager import OrderManager

__all__ = [
    "OrderPlacementIssuer",
    "CancellationIssuer",
    "CONFIRMED",
    "OPTIMISTIC",
    "EngineConfirmationHandler",
    "OrderManager",
]
