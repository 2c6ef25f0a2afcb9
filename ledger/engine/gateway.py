"""
Engine Gateway

Command side of the matching engine collaborator. The ledger never shares
state with the engine; it only pushes commands onto the engine's per-market
queues.
"""
from abc import ABC, abstractmethod

from loguru import logger

from ..models import Order
from ..queues import IMessageQueue
from .channels import cancel_command_queue, order_command_queue
from .messages import CancelOrderCommand, NewOrderCommand, encode_command


class IEngineGateway(ABC):
    """Abstract command emitter"""

    @abstractmethod
    async def submit_new_order(self, order: Order) -> None:
        """Send a NewOrder command for a persisted order"""
        pass

    @abstractmethod
    async def submit_cancel(self, order: Order) -> None:
        """Send a CancelOrder command"""
        pass


class QueueEngineGateway(IEngineGateway):
    """Emit commands onto the engine's Redis (or in-memory) queues"""

    def __init__(self, queue: IMessageQueue):
        self.queue = queue

    async def submit_new_order(self, order: Order) -> None:
        channel = order_command_queue(order.market)
        await self.queue.enqueue(channel, encode_command(NewOrderCommand.from_order(order)))
        logger.debug(f"NewOrder {order.id} -> {channel}")

    async def submit_cancel(self, order: Order) -> None:
        channel = cancel_command_queue(order.market)
        await self.queue.enqueue(channel, encode_command(CancelOrderCommand(order_id=order.id)))
        logger.debug(f"CancelOrder {order.id} -> {channel}")
