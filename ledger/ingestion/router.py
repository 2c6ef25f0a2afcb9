"""
Engine event router

Parses one raw engine message and hands it to the component that owns it:
- trade            -> TradeSettlementProcessor
- order_processed  -> EngineConfirmationHandler.on_order_processed
- cancel_processed -> EngineConfirmationHandler.on_cancel_processed
"""
from loguru import logger

from ..engine import (
    CancelProcessedMessage,
    EngineMessage,
    OrderProcessedMessage,
    TradeMessage,
    parse_engine_message,
)
from ..errors import MalformedEvent
from ..models import normalize_symbol
from ..oms import EngineConfirmationHandler
from ..settlement import TradeSettlementProcessor


class EngineEventRouter:
    """Dispatch engine events to their handlers"""

    def __init__(
        self,
        settlement: TradeSettlementProcessor,
        confirmations: EngineConfirmationHandler
    ):
        self.settlement = settlement
        self.confirmations = confirmations

    async def dispatch(self, body: str, market: str) -> EngineMessage:
        """
        Parse and handle a message read from `market`'s event queue

        Args:
            body: Raw queue message
            market: Market whose queue the message came from

        Returns:
            The parsed message

        Raises:
            MalformedEvent: unparseable, or a trade published on another market's queue
            LedgerError: anything raised by the handler
        """
        message = parse_engine_message(body)

        if isinstance(message, TradeMessage):
            if message.market != normalize_symbol(market):
                raise MalformedEvent(
                    f"Trade {message.id} for {message.market} received on {market} queue"
                )
            await self.settlement.settle(message)
        elif isinstance(message, OrderProcessedMessage):
            await self.confirmations.on_order_processed(message)
        elif isinstance(message, CancelProcessedMessage):
            await self.confirmations.on_cancel_processed(message)

        logger.debug(f"Handled {type(message).__name__} on {market}")
        return message
