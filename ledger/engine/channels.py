"""
Queue naming shared with the matching engine
"""
from ..queues import QueueChannels


def _symbol_key(market: str) -> str:
    return market.upper()


def order_command_queue(market: str) -> str:
    """NewOrder commands for one market"""
    return f"orderbook:orders:{_symbol_key(market)}"


def cancel_command_queue(market: str) -> str:
    """CancelOrder commands for one market"""
    return f"orderbook:cancel:{_symbol_key(market)}"


def engine_event_channels(market: str) -> QueueChannels:
    """Engine -> ledger event queue (trades and confirmations) for one market"""
    return QueueChannels.for_base(f"engine:events:{_symbol_key(market)}")
