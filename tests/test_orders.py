"""
Tests for order models and the order state machine
"""
from decimal import ROUND_DOWN, ROUND_UP, Decimal

import pytest
from pydantic import ValidationError

from ledger.errors import (
    InvalidOrderError,
    InvalidStateError,
    InvariantViolation,
    OrderNotFound,
    OverfillError,
    PrecisionError,
)
from ledger.models import (
    Asset,
    Market,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    PlaceOrderRequest,
)


def make_order(side: OrderSide = OrderSide.BUY, quantity: str = "5") -> Order:
    return Order(
        user_id="alice",
        market="BTC_USDT",
        side=side,
        order_type=OrderType.LIMIT,
        price=Decimal("100"),
        reserve_price=Decimal("100") if side == OrderSide.BUY else None,
        quantity=Decimal(quantity),
    )


class TestModels:
    """Test reference data and request validation"""

    def test_minor_units_round_trip(self):
        """Test display <-> minor unit conversion"""
        usdt = Asset(symbol="USDT", decimals=6)

        assert usdt.to_minor_units(Decimal("1.5")) == 1_500_000
        assert usdt.from_minor_units(1_500_000) == Decimal("1.5")

    def test_minor_units_rejects_excess_precision(self):
        """Test amounts finer than the scale are rejected, not rounded"""
        btc = Asset(symbol="BTC", decimals=8)

        with pytest.raises(PrecisionError):
            btc.to_minor_units(Decimal("0.000000001"))

    def test_market_bounds(self):
        """Test price and quantity validation"""
        market = Market(symbol="BTC_USDT", base_asset="BTC", quote_asset="USDT")

        market.validate_price(Decimal("100.01"))
        market.validate_quantity(Decimal("0.5"))

        with pytest.raises(InvalidOrderError):
            market.validate_price(Decimal("100.001"))
        with pytest.raises(InvalidOrderError):
            market.validate_price(Decimal("2000000"))
        with pytest.raises(InvalidOrderError):
            market.validate_quantity(Decimal("0.00001"))
        with pytest.raises(InvalidOrderError):
            market.validate_quantity(Decimal("0"))

    def test_limit_request_requires_price(self):
        """Test limit orders need a price"""
        with pytest.raises(ValidationError):
            PlaceOrderRequest(
                user_id="alice",
                market="BTC_USDT",
                side=OrderSide.BUY,
                order_type=OrderType.LIMIT,
                quantity=Decimal("1"),
            )

    def test_stop_request_requires_stop_price(self):
        """Test stop orders need a trigger price"""
        with pytest.raises(ValidationError):
            PlaceOrderRequest(
                user_id="alice",
                market="BTC_USDT",
                side=OrderSide.SELL,
                order_type=OrderType.STOP_MARKET,
                quantity=Decimal("1"),
            )

    def test_request_rejects_non_positive_quantity(self):
        """Test quantity must be positive"""
        with pytest.raises(ValidationError):
            PlaceOrderRequest(
                user_id="alice",
                market="BTC_USDT",
                side=OrderSide.SELL,
                order_type=OrderType.MARKET,
                quantity=Decimal("0"),
            )

    def test_minor_units_rounding(self):
        """Test explicit rounding instead of a precision error"""
        usdt = Asset(symbol="USDT", decimals=2)

        assert usdt.to_minor_units(Decimal("50.005"), rounding=ROUND_DOWN) == 5000
        assert usdt.to_minor_units(Decimal("33.0033"), rounding=ROUND_UP) == 3301
        assert usdt.to_minor_units(Decimal("12.34"), rounding=ROUND_UP) == 1234

    def test_market_symbol_upper_cased(self):
        """Test market symbols have one canonical form"""
        market = Market(symbol="btc_usdt", base_asset="BTC", quote_asset="USDT")
        request = PlaceOrderRequest(
            user_id="alice",
            market=" eth_usdt ",
            side=OrderSide.SELL,
            order_type=OrderType.MARKET,
            quantity=Decimal("1"),
        )

        assert market.symbol == "BTC_USDT"
        assert request.market == "ETH_USDT"

    def test_reserved_amount(self):
        """Test lock sizing by side"""
        assert make_order(OrderSide.BUY).reserved_amount(Decimal("3")) == Decimal("300")
        assert make_order(OrderSide.SELL).reserved_amount(Decimal("3")) == Decimal("3")


class TestOrderStore:
    """Test fill and cancel transitions"""

    @pytest.mark.asyncio
    async def test_create_initializes_fill_state(self, ledger):
        """Test new orders start open with nothing filled"""
        order = make_order()
        order.filled = Decimal("2")

        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)

        stored = await ledger.store.get_order(order.id)
        assert stored.status == OrderStatus.OPEN
        assert stored.filled == 0
        assert stored.remaining == Decimal("5")

    @pytest.mark.asyncio
    async def test_partial_then_full_fill(self, ledger):
        """Test open -> partially_filled -> filled"""
        order = make_order()
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)

        async with ledger.store.transaction() as tx:
            partial = await ledger.order_store.apply_fill(tx, order.id, Decimal("2"))
        assert partial.status == OrderStatus.PARTIALLY_FILLED
        assert partial.filled == Decimal("2")
        assert partial.remaining == Decimal("3")

        async with ledger.store.transaction() as tx:
            full = await ledger.order_store.apply_fill(tx, order.id, Decimal("3"))
        assert full.status == OrderStatus.FILLED
        assert full.remaining == 0
        assert full.filled + full.remaining == full.quantity

    @pytest.mark.asyncio
    async def test_overfill_rejected(self, ledger):
        """Test remaining can never go negative"""
        order = make_order()
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)

        with pytest.raises(OverfillError):
            async with ledger.store.transaction() as tx:
                await ledger.order_store.apply_fill(tx, order.id, Decimal("6"))

        stored = await ledger.store.get_order(order.id)
        assert stored.remaining == Decimal("5")
        assert stored.status == OrderStatus.OPEN

    @pytest.mark.asyncio
    async def test_fill_canceled_order_rejected(self, ledger):
        """Test canceled orders are terminal for fills"""
        order = make_order()
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)
            await ledger.order_store.cancel(tx, order.id)

        with pytest.raises(InvalidStateError):
            async with ledger.store.transaction() as tx:
                await ledger.order_store.apply_fill(tx, order.id, Decimal("1"))

    @pytest.mark.asyncio
    async def test_cancel_records_reason(self, ledger):
        """Test cancel transition"""
        order = make_order()
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)
            canceled = await ledger.order_store.cancel(tx, order.id, reason="rejected_by_engine")

        assert canceled.status == OrderStatus.CANCELED
        assert canceled.cancel_reason == "rejected_by_engine"
        assert canceled.canceled_at is not None

    @pytest.mark.asyncio
    async def test_cancel_filled_order_rejected(self, ledger):
        """Test filled orders cannot be canceled"""
        order = make_order(quantity="1")
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)
            await ledger.order_store.apply_fill(tx, order.id, Decimal("1"))

        with pytest.raises(InvalidStateError):
            async with ledger.store.transaction() as tx:
                await ledger.order_store.cancel(tx, order.id)

    @pytest.mark.asyncio
    async def test_get_unknown_order(self, ledger):
        """Test missing order lookup"""
        with pytest.raises(OrderNotFound):
            async with ledger.store.transaction() as tx:
                await ledger.order_store.get(tx, "missing")

    @pytest.mark.asyncio
    async def test_fills_release_locked_units(self, ledger):
        """Test each fill gives up part of the lock and the last fill the rest"""
        order = make_order(quantity="3")
        order.locked_units = 301
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)

        async with ledger.store.transaction() as tx:
            partial = await ledger.order_store.apply_fill(tx, order.id, Decimal("1"), released_units=100)
        assert partial.locked_units == 201

        async with ledger.store.transaction() as tx:
            full = await ledger.order_store.apply_fill(tx, order.id, Decimal("2"), released_units=201)
        assert full.status == OrderStatus.FILLED
        assert full.locked_units == 0

    @pytest.mark.asyncio
    async def test_fill_releasing_too_much_rejected(self, ledger):
        """Test a fill cannot release more than the order holds"""
        order = make_order(quantity="3")
        order.locked_units = 300
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)

        with pytest.raises(InvariantViolation):
            async with ledger.store.transaction() as tx:
                await ledger.order_store.apply_fill(tx, order.id, Decimal("1"), released_units=301)

        assert (await ledger.store.get_order(order.id)).locked_units == 300

    @pytest.mark.asyncio
    async def test_completed_order_keeping_units_rejected(self, ledger):
        """Test a filled order cannot keep part of its lock"""
        order = make_order(quantity="3")
        order.locked_units = 300
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)

        with pytest.raises(InvariantViolation):
            async with ledger.store.transaction() as tx:
                await ledger.order_store.apply_fill(tx, order.id, Decimal("3"), released_units=299)

    @pytest.mark.asyncio
    async def test_cancel_clears_locked_units(self, ledger):
        """Test canceled orders hold nothing"""
        order = make_order()
        order.locked_units = 500
        async with ledger.store.transaction() as tx:
            await ledger.order_store.create(tx, order)
            canceled = await ledger.order_store.cancel(tx, order.id)

        assert canceled.locked_units == 0
