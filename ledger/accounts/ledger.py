"""
Balance Ledger

Fund movement primitives over per-(user, asset) balances. Every operation
runs inside the caller's transaction and is never committed on its own; a
failed precondition raises and aborts the whole enclosing transaction.

Operations:
- lock_funds: available -> locked
- unlock_funds: locked -> available
- settle_debit_locked: consume locked funds on final transfer
- settle_credit: credit available funds
"""
from decimal import Decimal
from typing import Optional

from loguru import logger

from ..errors import InsufficientFunds, InvalidOrderError, InvariantViolation, UnknownAsset
from ..models import Balance
from ..store import LedgerTransaction


class BalanceLedger:
    """Atomic lock/unlock/transfer primitives"""

    async def to_minor_units(
        self,
        tx: LedgerTransaction,
        asset: str,
        amount: Decimal,
        rounding: Optional[str] = None
    ) -> int:
        """
        Convert a display amount of `asset` to minor units

        Raises:
            UnknownAsset: asset not registered
            PrecisionError: amount finer than the asset's scale and no rounding given
        """
        ref = await tx.get_asset(asset)
        if ref is None:
            raise UnknownAsset(asset)
        return ref.to_minor_units(amount, rounding=rounding)

    async def lock_funds(
        self,
        tx: LedgerTransaction,
        user_id: str,
        asset: str,
        amount: int
    ) -> Balance:
        """
        Move `amount` from available to locked

        Raises:
            InvalidOrderError: amount is not positive
            InsufficientFunds: available < amount
        """
        if amount <= 0:
            raise InvalidOrderError(f"Lock amount must be positive, got {amount}")

        balance = await tx.get_balance(user_id, asset)
        if balance.available < amount:
            raise InsufficientFunds(user_id, asset, amount, balance.available)

        balance.available -= amount
        balance.locked += amount
        await tx.save_balance(balance)

        logger.debug(f"Locked {amount} {asset} for {user_id}: {balance.available}/{balance.locked}")
        return balance

    async def unlock_funds(
        self,
        tx: LedgerTransaction,
        user_id: str,
        asset: str,
        amount: int
    ) -> Balance:
        """
        Move `amount` from locked back to available

        Raises:
            InvariantViolation: locked would go negative
        """
        if amount < 0:
            raise InvariantViolation(f"Unlock amount must not be negative, got {amount}")

        balance = await tx.get_balance(user_id, asset)
        if balance.locked < amount:
            raise InvariantViolation(
                f"Unlock of {amount} {asset} for {user_id} exceeds locked {balance.locked}",
                user_id=user_id,
                asset=asset,
            )

        balance.locked -= amount
        balance.available += amount
        await tx.save_balance(balance)

        logger.debug(f"Unlocked {amount} {asset} for {user_id}: {balance.available}/{balance.locked}")
        return balance

    async def settle_debit_locked(
        self,
        tx: LedgerTransaction,
        user_id: str,
        asset: str,
        amount: int
    ) -> Balance:
        """
        Consume previously locked funds (paying side of a trade)

        Raises:
            InvariantViolation: locked would go negative
        """
        if amount < 0:
            raise InvariantViolation(f"Debit amount must not be negative, got {amount}")

        balance = await tx.get_balance(user_id, asset)
        if balance.locked < amount:
            raise InvariantViolation(
                f"Debit of {amount} locked {asset} for {user_id} exceeds locked {balance.locked}",
                user_id=user_id,
                asset=asset,
            )

        balance.locked -= amount
        await tx.save_balance(balance)
        return balance

    async def settle_credit(
        self,
        tx: LedgerTransaction,
        user_id: str,
        asset: str,
        amount: int
    ) -> Balance:
        """Credit available funds (receiving side of a trade)"""
        if amount < 0:
            raise InvariantViolation(f"Credit amount must not be negative, got {amount}")

        balance = await tx.get_balance(user_id, asset)
        balance.available += amount
        await tx.save_balance(balance)
        return balance
