"""
Ledger domain models

Reference data:
- Asset: symbol and minor-unit scale
- Market: base/quote assets, price and quantity bounds, fee schedule

Ledger-owned rows:
- Balance: available/locked minor units per (user, asset)
- Order: order entity with fill state
- Trade: settled trade, keyed by engine trade id
- FundingTransaction: deposits and withdrawals
"""

from .domain import (
    ACTIVE_STATUSES,
    Asset,
    Balance,
    FundingTransaction,
    FundingType,
    Market,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    TimeInForce,
    Trade,
    normalize_symbol,
)
from .requests import PlaceOrderRequest, ReferenceData

__all__ = [
    "ACTIVE_STATUSES",
    "Asset",
    "Balance",
    "FundingTransaction",
    "FundingType",
    "Market",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "TimeInForce",
    "Trade",
    "normalize_symbol",
    "PlaceOrderRequest",
    "ReferenceData",
]
