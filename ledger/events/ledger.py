"""
Ledger events

Facts published after a ledger transaction commits:
- OrderPlaced: order persisted and funds locked
- OrderCanceled: order canceled and remaining funds released
- OrderFilled: order received a fill
- TradeSettled: trade applied to both counterparties
- MessageDeadLettered: engine message moved to the dead-letter channel
- IntegrityAlert: engine/ledger desynchronization detected
"""
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field

from ..models import Order, OrderSide, OrderStatus, Trade
from .base import BaseEvent


class OrderPlacedEvent(BaseEvent):
    """Order created with funds locked"""
    event_type: Literal["order_placed"] = "order_placed"

    order_id: str
    user_id: str
    side: OrderSide
    quantity: Decimal
    price: Optional[Decimal] = None
    locked_asset: str
    locked_amount: int

    @classmethod
    def from_order(cls, order: Order, locked_asset: str, locked_amount: int) -> "OrderPlacedEvent":
        return cls(
            market=order.market,
            order_id=order.id,
            user_id=order.user_id,
            side=order.side,
            quantity=order.quantity,
            price=order.price,
            locked_asset=locked_asset,
            locked_amount=locked_amount,
        )


class OrderCanceledEvent(BaseEvent):
    """Order canceled, remaining funds unlocked"""
    event_type: Literal["order_canceled"] = "order_canceled"

    order_id: str
    user_id: str
    remaining: Decimal
    unlocked_asset: str
    unlocked_amount: int
    reason: str = "user"


class OrderFilledEvent(BaseEvent):
    """Order received a fill"""
    event_type: Literal["order_filled"] = "order_filled"

    order_id: str
    user_id: str
    trade_id: str
    fill_quantity: Decimal
    filled: Decimal
    remaining: Decimal
    status: OrderStatus

    @classmethod
    def from_fill(cls, order: Order, trade: Trade) -> "OrderFilledEvent":
        return cls(
            market=order.market,
            order_id=order.id,
            user_id=order.user_id,
            trade_id=trade.id,
            fill_quantity=trade.quantity,
            filled=order.filled,
            remaining=order.remaining,
            status=order.status,
        )


class TradeSettledEvent(BaseEvent):
    """Trade applied to balances and orders"""
    event_type: Literal["trade_settled"] = "trade_settled"

    trade_id: str
    price: Decimal
    quantity: Decimal
    buyer_id: str
    seller_id: str
    buy_order_status: OrderStatus
    sell_order_status: OrderStatus

    @classmethod
    def from_trade(
        cls,
        trade: Trade,
        buy_order: Order,
        sell_order: Order
    ) -> "TradeSettledEvent":
        return cls(
            market=trade.market,
            trade_id=trade.id,
            price=trade.price,
            quantity=trade.quantity,
            buyer_id=trade.buyer_id,
            seller_id=trade.seller_id,
            buy_order_status=buy_order.status,
            sell_order_status=sell_order.status,
        )


class MessageDeadLetteredEvent(BaseEvent):
    """Engine message failed and was parked for inspection"""
    event_type: Literal["message_dead_lettered"] = "message_dead_lettered"

    channel: str
    error_type: str
    error_message: str
    message: str = Field(description="Raw message body")


class IntegrityAlertEvent(BaseEvent):
    """
    Engine and ledger disagree about financial state

    Operators must reconcile; the triggering message is in the dead-letter
    channel and nothing was applied.
    """
    event_type: Literal["integrity_alert"] = "integrity_alert"

    error_type: str
    error_message: str
    severity: str = "critical"
    context: dict[str, str] = Field(default_factory=dict)
