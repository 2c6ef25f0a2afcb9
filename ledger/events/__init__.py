"""
Ledger Event System

Read-only notifications published after ledger transactions commit, for
the order API, UI fan-out and operational alerting.

Usage:
    from ledger.events import InMemoryEventBus, TradeSettledEvent

    bus = InMemoryEventBus()

    async def on_trade(event: TradeSettledEvent):
        print(f"Trade {event.trade_id}: {event.quantity} @ {event.price}")

    await bus.subscribe("trade_settled", on_trade)
"""

from .base import BaseEvent

from .ledger import (
    OrderPlacedEvent,
    OrderCanceledEvent,
    OrderFilledEvent,
    TradeSettledEvent,
    MessageDeadLetteredEvent,
    IntegrityAlertEvent,
)

from .bus import (
    IEventBus,
    InMemoryEventBus,
    RedisEventBus,
    create_event_bus,
)

__all__ = [
    # Base
    "BaseEvent",
    # Ledger
    "OrderPlacedEvent",
    "OrderCanceledEvent",
    "OrderFilledEvent",
    "TradeSettledEvent",
    "MessageDeadLetteredEvent",
    "IntegrityAlertEvent",
    # Bus
    "IEventBus",
    "InMemoryEventBus",
    "RedisEventBus",
    "create_event_bus",
]
