"""
Matching engine collaborator interface

The engine is external and opaque: the ledger emits NewOrder/CancelOrder
commands and consumes trade and confirmation events, all through queues.
"""

from .channels import cancel_command_queue, engine_event_channels, order_command_queue
from .gateway import IEngineGateway, QueueEngineGateway
from .messages import (
    CancelOrderCommand,
    CancelProcessedMessage,
    EngineEnvelope,
    EngineMessage,
    NewOrderCommand,
    OrderProcessedMessage,
    ProcessingStatus,
    TradeMessage,
    encode_command,
    encode_event,
    parse_engine_message,
)

__all__ = [
    "cancel_command_queue",
    "engine_event_channels",
    "order_command_queue",
    "IEngineGateway",
    "QueueEngineGateway",
    "CancelOrderCommand",
    "CancelProcessedMessage",
    "EngineEnvelope",
    "EngineMessage",
    "NewOrderCommand",
    "OrderProcessedMessage",
    "ProcessingStatus",
    "TradeMessage",
    "encode_command",
    "encode_event",
    "parse_engine_message",
]
