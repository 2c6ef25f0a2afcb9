"""
Funding Service

Deposits and withdrawals: the only way value enters or leaves the ledger.
Each call is its own transaction and appends a FundingTransaction record.
"""
from decimal import Decimal

from loguru import logger

from ..errors import InsufficientFunds, InvalidOrderError
from ..models import Balance, FundingTransaction, FundingType
from ..store import ILedgerStore
from .ledger import BalanceLedger


class FundingService:
    """Apply external deposits and withdrawals"""

    def __init__(self, store: ILedgerStore, balance_ledger: BalanceLedger):
        self.store = store
        self.balance_ledger = balance_ledger

    async def deposit(self, user_id: str, asset: str, amount: Decimal) -> Balance:
        """
        Credit `amount` (display units) to the user's available balance

        Returns:
            Balance after the deposit
        """
        async with self.store.transaction() as tx:
            units = await self.balance_ledger.to_minor_units(tx, asset, amount)
            if units <= 0:
                raise InvalidOrderError(f"Deposit amount must be positive, got {amount}")

            balance = await self.balance_ledger.settle_credit(tx, user_id, asset, units)
            await tx.insert_funding(FundingTransaction(
                user_id=user_id,
                asset=asset,
                type=FundingType.DEPOSIT,
                amount=units,
                balance_after=balance.available,
            ))

        logger.info(f"Deposit: {user_id} +{amount} {asset}")
        return balance

    async def withdraw(self, user_id: str, asset: str, amount: Decimal) -> Balance:
        """
        Debit `amount` (display units) from the user's available balance

        Raises:
            InsufficientFunds: available balance too small
        """
        async with self.store.transaction() as tx:
            units = await self.balance_ledger.to_minor_units(tx, asset, amount)
            if units <= 0:
                raise InvalidOrderError(f"Withdrawal amount must be positive, got {amount}")

            balance = await tx.get_balance(user_id, asset)
            if balance.available < units:
                raise InsufficientFunds(user_id, asset, units, balance.available)

            balance.available -= units
            await tx.save_balance(balance)
            await tx.insert_funding(FundingTransaction(
                user_id=user_id,
                asset=asset,
                type=FundingType.WITHDRAWAL,
                amount=units,
                balance_after=balance.available,
            ))

        logger.info(f"Withdrawal: {user_id} -{amount} {asset}")
        return balance
