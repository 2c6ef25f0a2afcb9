"""
Ledger persistence boundary

- ILedgerStore / LedgerTransaction: atomic unit of work over ledger rows
- InMemoryLedgerStore: single-process implementation
- SqlLedgerStore: durable SQLAlchemy implementation (PostgreSQL, SQLite)
"""

from .base import ILedgerStore, LedgerTransaction
from .memory import InMemoryLedgerStore, InMemoryTransaction
from .sql import SqlLedgerStore, SqlTransaction

__all__ = [
    "ILedgerStore",
    "LedgerTransaction",
    "InMemoryLedgerStore",
    "InMemoryTransaction",
    "SqlLedgerStore",
    "SqlTransaction",
]
