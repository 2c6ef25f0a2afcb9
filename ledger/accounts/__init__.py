"""
Accounts

- BalanceLedger: lock/unlock/settle primitives used inside transactions
- FundingService: deposits and withdrawals
"""

from .ledger import BalanceLedger
from .funding import FundingService

__all__ = [
    "BalanceLedger",
    "FundingService",
]
