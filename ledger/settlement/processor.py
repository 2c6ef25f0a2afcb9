"""
Trade Settlement Processor

Applies one matched trade to both counterparties in a single transaction:

    Orders: apply_fill(maker, qty), apply_fill(taker, qty)
    Seller: locked base  -qty            available quote +value (-fee)
    Buyer:  available base +qty (-fee)   locked quote -reserved, available quote +refund
    Trade:  inserted under the engine trade id

reserved is the slice of the buy order's lock backing this fill
(reserve_price x qty rounded down, or everything the order still holds on
its final fill); value is price x qty rounded down; refund = reserved -
value is returned to available. A trade id that is already recorded is
acknowledged without touching any balance or order.
"""
from decimal import ROUND_DOWN
from typing import Optional, Tuple

from loguru import logger

from ..accounts import BalanceLedger
from ..engine import TradeMessage
from ..errors import (
    CancelRaceError,
    DuplicateTradeError,
    MalformedEvent,
    NegativeRefundError,
    PrecisionError,
)
from ..events import IEventBus, OrderFilledEvent, TradeSettledEvent
from ..models import Market, Order, OrderSide, OrderStatus, Trade
from ..orders import OrderStore
from ..store import ILedgerStore, LedgerTransaction


BPS_DENOMINATOR = 10_000


class TradeSettlementProcessor:
    """
    Settle engine trades against the ledger

    Responsibilities:
    - Transfer base and quote between buyer and seller
    - Release the buy-side price improvement (refund)
    - Charge the taker fee
    - Advance both orders' fill state
    - Record the trade exactly once per trade id
    """

    def __init__(
        self,
        store: ILedgerStore,
        balance_ledger: BalanceLedger,
        order_store: OrderStore,
        event_bus: Optional[IEventBus] = None,
        fee_account_id: str = "exchange"
    ):
        """
        Initialize settlement processor

        Args:
            store: Ledger store
            balance_ledger: Fund movement primitives
            order_store: Order state machine
            event_bus: Optional bus for TradeSettled/OrderFilled notifications
            fee_account_id: Account credited with taker fees
        """
        self.store = store
        self.balance_ledger = balance_ledger
        self.order_store = order_store
        self.event_bus = event_bus
        self.fee_account_id = fee_account_id

        logger.info(f"Initialized TradeSettlementProcessor: fee_account={fee_account_id}")

    async def settle(self, message: TradeMessage) -> Trade:
        """
        Settle a trade

        Args:
            message: Trade event from the engine

        Returns:
            The recorded trade (the existing record for a replayed trade id)

        Raises:
            MalformedEvent: non-positive quantity/price, unknown orders,
                inconsistent sides or market, amounts finer than the asset scale
            CancelRaceError: a fill arrived for a canceled order
            NegativeRefundError: buy order matched above its reserve price
            OverfillError: fill exceeds an order's remaining quantity
        """
        try:
            async with self.store.transaction() as tx:
                existing = await tx.get_trade(message.id)
                if existing is not None:
                    logger.info(f"Trade {message.id} already settled, skipping")
                    return existing

                trade, buy_order, sell_order = await self._settle_in_transaction(tx, message)
        except DuplicateTradeError:
            # Recorded concurrently by another consumer; the store rolled this one back
            logger.info(f"Trade {message.id} settled concurrently, skipping")
            return await self.store.get_trade(message.id)

        logger.info(
            f"Settled trade {trade.id}: {trade.quantity} {trade.market} @ {trade.price} | "
            f"buyer={trade.buyer_id} ({buy_order.status.value}) "
            f"seller={trade.seller_id} ({sell_order.status.value}) fee={trade.fee} {trade.fee_asset}"
        )

        if self.event_bus:
            await self.event_bus.publish(TradeSettledEvent.from_trade(trade, buy_order, sell_order))
            for order in (buy_order, sell_order):
                await self.event_bus.publish(OrderFilledEvent.from_fill(order, trade))

        return trade

    async def _settle_in_transaction(
        self,
        tx: LedgerTransaction,
        message: TradeMessage
    ) -> Tuple[Trade, Order, Order]:
        if message.quantity <= 0:
            raise MalformedEvent(f"Trade {message.id} has non-positive quantity {message.quantity}")
        if message.price <= 0:
            raise MalformedEvent(f"Trade {message.id} has non-positive price {message.price}")

        maker = await tx.get_order(message.maker_order_id)
        taker = await tx.get_order(message.taker_order_id)
        if maker is None or taker is None:
            missing = message.maker_order_id if maker is None else message.taker_order_id
            raise MalformedEvent(f"Trade {message.id} references unknown order {missing}")
        if maker.side == taker.side:
            raise MalformedEvent(f"Trade {message.id} matches two {maker.side.value} orders")
        if maker.market != message.market or taker.market != message.market:
            raise MalformedEvent(f"Trade {message.id} crosses markets")

        market = await tx.get_market(message.market)
        if market is None:
            raise MalformedEvent(f"Trade {message.id} for unknown market {message.market}")

        for order in (maker, taker):
            if order.status == OrderStatus.CANCELED:
                raise CancelRaceError(
                    f"Trade {message.id} fills order {order.id} already canceled by the ledger",
                    order_id=order.id,
                    trade_id=message.id,
                )

        buy_order, sell_order = (maker, taker) if maker.side == OrderSide.BUY else (taker, maker)

        if message.price > buy_order.reserve_price:
            raise NegativeRefundError(
                f"Trade {message.id} at {message.price} exceeds buy order {buy_order.id} "
                f"reserve price {buy_order.reserve_price}",
                order_id=buy_order.id,
                trade_id=message.id,
            )

        qty_units, value_units, reserved_units = await self._amounts(tx, market, message, buy_order)

        # Fill state first so an overfill surfaces as OverfillError
        buy_order = await self.order_store.apply_fill(
            tx, buy_order.id, message.quantity, released_units=reserved_units
        )
        sell_order = await self.order_store.apply_fill(
            tx, sell_order.id, message.quantity, released_units=qty_units
        )

        refund_units = reserved_units - value_units
        if refund_units < 0:
            raise NegativeRefundError(
                f"Trade {message.id} value {value_units} exceeds the {reserved_units} units "
                f"buy order {buy_order.id} holds for it",
                order_id=buy_order.id,
                trade_id=message.id,
            )

        # Taker fee is charged in the asset the taker receives
        if taker.side == OrderSide.BUY:
            fee_asset = market.base_asset
            buyer_fee = qty_units * market.taker_fee_bps // BPS_DENOMINATOR
            seller_fee = 0
        else:
            fee_asset = market.quote_asset
            buyer_fee = 0
            seller_fee = value_units * market.taker_fee_bps // BPS_DENOMINATOR
        fee = buyer_fee + seller_fee

        # Seller
        await self.balance_ledger.settle_debit_locked(tx, sell_order.user_id, market.base_asset, qty_units)
        await self.balance_ledger.settle_credit(tx, sell_order.user_id, market.quote_asset, value_units - seller_fee)

        # Buyer
        await self.balance_ledger.settle_credit(tx, buy_order.user_id, market.base_asset, qty_units - buyer_fee)
        await self.balance_ledger.settle_debit_locked(tx, buy_order.user_id, market.quote_asset, reserved_units)
        if refund_units:
            await self.balance_ledger.settle_credit(tx, buy_order.user_id, market.quote_asset, refund_units)

        if fee:
            await self.balance_ledger.settle_credit(tx, self.fee_account_id, fee_asset, fee)

        trade = Trade(
            id=message.id,
            market=market.symbol,
            price=message.price,
            quantity=message.quantity,
            taker_side=taker.side,
            buy_order_id=buy_order.id,
            sell_order_id=sell_order.id,
            buyer_id=buy_order.user_id,
            seller_id=sell_order.user_id,
            fee=fee,
            fee_asset=fee_asset,
            timestamp=message.timestamp,
        )
        await tx.insert_trade(trade)

        return trade, buy_order, sell_order

    async def _amounts(
        self,
        tx: LedgerTransaction,
        market: Market,
        message: TradeMessage,
        buy_order: Order
    ) -> Tuple[int, int, int]:
        """
        (quantity in base units, value in quote units, buy lock released in quote units)

        The value rounds down to whole quote units. A partial fill releases
        reserve_price x quantity rounded down; the fill that completes the
        order releases everything it still holds, so placement's round-up
        is returned to the buyer as refund.
        """
        try:
            qty_units = await self.balance_ledger.to_minor_units(tx, market.base_asset, message.quantity)
        except PrecisionError as e:
            raise MalformedEvent(f"Trade {message.id}: {e.message}") from e

        value_units = await self.balance_ledger.to_minor_units(
            tx, market.quote_asset, message.price * message.quantity, rounding=ROUND_DOWN
        )
        if message.quantity >= buy_order.remaining:
            reserved_units = buy_order.locked_units
        else:
            reserved_units = await self.balance_ledger.to_minor_units(
                tx, market.quote_asset, buy_order.reserved_amount(message.quantity), rounding=ROUND_DOWN
            )
        return qty_units, value_units, reserved_units
