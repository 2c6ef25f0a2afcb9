"""
Ledger error taxonomy

User errors are surfaced to the caller and never retried by the system.
Integrity errors mean the engine and the ledger disagree about financial
state: the transaction aborts, the triggering message is dead-lettered and
an operational alert is raised. Malformed input is dead-lettered at once.
Transient store errors are retried with backoff by the ingestion loop.
"""
from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger errors"""

    category: str = "ledger"
    retryable: bool = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


# ===== User errors =====


class UserError(LedgerError):
    """Caller-correctable error; the transaction is rolled back"""
    category = "user"


class InsufficientFunds(UserError):
    """Available balance is smaller than the amount to lock or withdraw"""

    def __init__(self, user_id: str, asset: str, required: int, available: int):
        super().__init__(
            f"Insufficient {asset} for user {user_id}: required {required}, available {available}",
            user_id=user_id,
            asset=asset,
            required=required,
            available=available,
        )
        self.user_id = user_id
        self.asset = asset
        self.required = required
        self.available = available


class UnknownMarket(UserError):
    """Market symbol is not registered (or not active)"""

    def __init__(self, market: str):
        super().__init__(f"Unknown market: {market}", market=market)
        self.market = market


class UnknownAsset(UserError):
    """Asset symbol is not registered"""

    def __init__(self, asset: str):
        super().__init__(f"Unknown asset: {asset}", asset=asset)
        self.asset = asset


class OrderNotFound(UserError):
    """No order with this id"""

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}", order_id=order_id)
        self.order_id = order_id


class InvalidStateError(UserError):
    """Order state does not allow the requested transition"""

    def __init__(self, order_id: str, status: str, action: str):
        super().__init__(
            f"Cannot {action} order {order_id} in state {status}",
            order_id=order_id,
            status=status,
            action=action,
        )
        self.order_id = order_id
        self.status = status


class InvalidOrderError(UserError):
    """Order request violates market bounds or is otherwise ill-formed"""


class PrecisionError(UserError):
    """Amount is not representable in the asset's minor units"""


# ===== Integrity errors =====


class IntegrityError(LedgerError):
    """Engine/ledger desynchronization; fatal for the enclosing transaction"""
    category = "integrity"


class InvariantViolation(IntegrityError):
    """A balance would go negative"""


class OverfillError(IntegrityError):
    """A fill would push an order's remaining quantity below zero"""

    def __init__(self, order_id: str, remaining, fill_quantity):
        super().__init__(
            f"Order {order_id} would be overfilled: remaining {remaining}, fill {fill_quantity}",
            order_id=order_id,
            remaining=str(remaining),
            fill_quantity=str(fill_quantity),
        )
        self.order_id = order_id


class NegativeRefundError(IntegrityError):
    """Engine matched a buy order above its limit price"""


class CancelRaceError(IntegrityError):
    """A fill arrived for an order the ledger already canceled"""


# ===== Input and infrastructure errors =====


class MalformedEvent(LedgerError):
    """Engine message could not be parsed or fails validation"""
    category = "malformed"


class DuplicateTradeError(LedgerError):
    """Trade id already recorded"""
    category = "duplicate"

    def __init__(self, trade_id: str):
        super().__init__(f"Trade already recorded: {trade_id}", trade_id=trade_id)
        self.trade_id = trade_id


class TransientStoreError(LedgerError):
    """Temporary persistence failure; safe to retry"""
    category = "transient"
    retryable = True

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
