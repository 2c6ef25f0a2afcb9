"""
Matching engine wire messages

Commands (ledger -> engine), one JSON object per queue message:
    {"command": "NewOrder", "payload": {...}}
    {"command": "CancelOrder", "payload": {"order_id": ...}}

Events (engine -> ledger), one JSON envelope per queue message:
    {"type": "trade", "payload": {...}}
    {"type": "order_processed", "payload": {"orderId": ..., "status": "SUCCESS"}}
    {"type": "cancel_processed", "payload": {"orderId": ..., "status": "FAILURE"}}
"""
import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import MalformedEvent
from ..models import Order, OrderSide, OrderType, TimeInForce, normalize_symbol


# ===== Commands =====


class NewOrderCommand(BaseModel):
    """Submit a persisted, funded order to the engine"""
    order_id: str
    market: str
    user_id: str
    order_type: OrderType
    side: OrderSide
    price: str
    quantity: str
    stop_price: Optional[str] = None
    time_in_force: TimeInForce = TimeInForce.GTC

    @classmethod
    def from_order(cls, order: Order) -> "NewOrderCommand":
        price = order.price if order.price is not None else Decimal("0")
        return cls(
            order_id=order.id,
            market=order.market,
            user_id=order.user_id,
            order_type=order.order_type,
            side=order.side,
            price=str(price),
            quantity=str(order.quantity),
            stop_price=str(order.stop_price) if order.stop_price is not None else None,
            time_in_force=order.time_in_force,
        )


class CancelOrderCommand(BaseModel):
    """Remove a resting order from the book"""
    order_id: str


def encode_command(command: Union[NewOrderCommand, CancelOrderCommand]) -> str:
    """Serialize a command to its queue representation"""
    name = "NewOrder" if isinstance(command, NewOrderCommand) else "CancelOrder"
    return json.dumps({"command": name, "payload": command.model_dump(mode="json")})


# ===== Events =====


class ProcessingStatus(str, Enum):
    """Engine acknowledgement status"""
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class TradeMessage(BaseModel):
    """Matched trade emitted by the engine"""
    id: str = Field(min_length=1, description="Engine trade id, the idempotency key")
    market: str
    price: Decimal
    quantity: Decimal
    maker_order_id: str = Field(alias="makerOrderId")
    taker_order_id: str = Field(alias="takerOrderId")
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

    @field_validator("market")
    @classmethod
    def _normalize_market(cls, v: str) -> str:
        return normalize_symbol(v)


class OrderProcessedMessage(BaseModel):
    """Engine accepted (or rejected) a NewOrder command"""
    order_id: str = Field(alias="orderId")
    status: ProcessingStatus
    reason: Optional[str] = None

    class Config:
        populate_by_name = True


class CancelProcessedMessage(BaseModel):
    """Engine processed (or refused) a CancelOrder command"""
    order_id: str = Field(alias="orderId")
    status: ProcessingStatus
    reason: Optional[str] = None

    class Config:
        populate_by_name = True


EngineMessage = Union[TradeMessage, OrderProcessedMessage, CancelProcessedMessage]


class EngineEnvelope(BaseModel):
    """Typed wrapper around every engine event"""
    type: Literal["trade", "order_processed", "cancel_processed"]
    payload: dict[str, Any]


PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "trade": TradeMessage,
    "order_processed": OrderProcessedMessage,
    "cancel_processed": CancelProcessedMessage,
}


def parse_engine_message(body: str) -> EngineMessage:
    """
    Parse and validate an engine event

    Raises:
        MalformedEvent: body is not valid JSON or fails validation
    """
    try:
        envelope = EngineEnvelope.model_validate_json(body)
        return PAYLOAD_MODELS[envelope.type].model_validate(envelope.payload)
    except ValidationError as e:
        raise MalformedEvent(f"Invalid engine message: {e.error_count()} validation error(s)", detail=str(e)) from e


def encode_event(message: EngineMessage) -> str:
    """Serialize an engine event (used by tests and replay tooling)"""
    if isinstance(message, TradeMessage):
        event_type = "trade"
    elif isinstance(message, OrderProcessedMessage):
        event_type = "order_processed"
    else:
        event_type = "cancel_processed"
    return json.dumps({
        "type": event_type,
        "payload": message.model_dump(mode="json", by_alias=True),
    })
