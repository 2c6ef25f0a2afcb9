"""
Trade settlement
"""

from .processor import TradeSettlementProcessor

__all__ = ["TradeSettlementProcessor"]
