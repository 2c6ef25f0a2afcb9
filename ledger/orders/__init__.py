"""
Order Store & state machine
"""

from .store import OrderStore

__all__ = [
    "OrderStore",
]
