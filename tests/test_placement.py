"""
Tests for order placement
"""
import json
from datetime import timedelta
from decimal import Decimal

import pytest

from ledger.engine import IEngineGateway, order_command_queue
from ledger.errors import InsufficientFunds, InvalidOrderError, UnknownMarket
from ledger.events import OrderPlacedEvent
from ledger.models import Market, Order, OrderSide, OrderStatus, OrderType, PlaceOrderRequest


class UnreachableEngineGateway(IEngineGateway):
    """Gateway whose queue is down"""

    def __init__(self):
        self.attempts = 0

    async def submit_new_order(self, order: Order) -> None:
        self.attempts += 1
        raise ConnectionError("engine queue unavailable")

    async def submit_cancel(self, order: Order) -> None:
        self.attempts += 1
        raise ConnectionError("engine queue unavailable")


class TestOrderPlacement:
    """Test placement locks funds and emits NewOrder"""

    @pytest.mark.asyncio
    async def test_buy_limit_locks_quote(self, ledger, events):
        """Test buying 5 @ 100 locks 500 of 1000 USDT"""
        order = await ledger.orders.submit_order(
            "alice", "BTC_USDT", OrderSide.BUY, OrderType.LIMIT, Decimal("5"), price=Decimal("100")
        )

        balance = await ledger.store.get_balance("alice", "USDT")
        assert balance.available == 500
        assert balance.locked == 500

        stored = await ledger.store.get_order(order.id)
        assert stored.status == OrderStatus.OPEN
        assert stored.remaining == Decimal("5")
        assert stored.filled == 0
        assert stored.engine_submitted_at is not None

        placed = [e for e in events if isinstance(e, OrderPlacedEvent)]
        assert len(placed) == 1
        assert placed[0].locked_asset == "USDT"
        assert placed[0].locked_amount == 500

    @pytest.mark.asyncio
    async def test_sell_limit_locks_base(self, ledger):
        """Test selling locks the base quantity"""
        await ledger.orders.submit_order(
            "bob", "BTC_USDT", OrderSide.SELL, OrderType.LIMIT, Decimal("3"), price=Decimal("100")
        )

        balance = await ledger.store.get_balance("bob", "BTC")
        assert balance.available == 7
        assert balance.locked == 3

    @pytest.mark.asyncio
    async def test_new_order_command_emitted(self, ledger):
        """Test the NewOrder command lands on the market's order queue"""
        order = await ledger.orders.submit_order(
            "alice", "BTC_USDT", OrderSide.BUY, OrderType.LIMIT, Decimal("2"), price=Decimal("100")
        )

        commands = ledger.queue.peek(order_command_queue("BTC_USDT"))
        assert len(commands) == 1

        command = json.loads(commands[0])
        assert command["command"] == "NewOrder"
        assert command["payload"]["order_id"] == order.id
        assert command["payload"]["user_id"] == "alice"
        assert command["payload"]["side"] == "buy"
        assert command["payload"]["order_type"] == "limit"
        assert Decimal(command["payload"]["price"]) == Decimal("100")
        assert Decimal(command["payload"]["quantity"]) == Decimal("2")

    @pytest.mark.asyncio
    async def test_insufficient_funds_changes_nothing(self, ledger):
        """Test a failed lock leaves no order and no balance change"""
        with pytest.raises(InsufficientFunds):
            await ledger.orders.submit_order(
                "alice", "BTC_USDT", OrderSide.BUY, OrderType.LIMIT, Decimal("11"), price=Decimal("100")
            )

        balance = await ledger.store.get_balance("alice", "USDT")
        assert balance.available == 1000
        assert balance.locked == 0
        assert await ledger.store.list_orders(user_id="alice") == []
        assert ledger.queue.peek(order_command_queue("BTC_USDT")) == []

    @pytest.mark.asyncio
    async def test_unknown_market(self, ledger):
        """Test placing on an unregistered market"""
        with pytest.raises(UnknownMarket):
            await ledger.orders.submit_order(
                "alice", "DOGE_USDT", OrderSide.BUY, OrderType.LIMIT, Decimal("1"), price=Decimal("1")
            )

    @pytest.mark.asyncio
    async def test_inactive_market_is_unknown(self, ledger):
        """Test inactive markets do not accept orders"""
        await ledger.add_market(Market(
            symbol="OLD_USDT", base_asset="ETH", quote_asset="USDT", is_active=False
        ))

        with pytest.raises(UnknownMarket):
            await ledger.orders.submit_order(
                "alice", "OLD_USDT", OrderSide.BUY, OrderType.LIMIT, Decimal("1"), price=Decimal("1")
            )

    @pytest.mark.asyncio
    async def test_price_off_tick_rejected(self, ledger):
        """Test market bounds are enforced"""
        with pytest.raises(InvalidOrderError):
            await ledger.orders.submit_order(
                "alice", "BTC_USDT", OrderSide.BUY, OrderType.LIMIT, Decimal("1"), price=Decimal("100.5")
            )

        assert (await ledger.store.get_balance("alice", "USDT")).locked == 0

    @pytest.mark.asyncio
    async def test_duplicate_client_order_id_returns_existing(self, ledger):
        """Test a retried submission does not lock funds twice"""
        request = PlaceOrderRequest(
            user_id="alice",
            market="BTC_USDT",
            side=OrderSide.BUY,
            order_type=OrderType.LIMIT,
            quantity=Decimal("2"),
            price=Decimal("100"),
            client_order_id="client-1",
        )

        first = await ledger.placement.place(request)
        second = await ledger.placement.place(request)

        assert second.id == first.id
        assert (await ledger.store.get_balance("alice", "USDT")).locked == 200
        assert len(await ledger.store.list_orders(user_id="alice")) == 1

    @pytest.mark.asyncio
    async def test_market_buy_reserves_at_protection_price(self, ledger):
        """Test market buys lock at the client's cap"""
        order = await ledger.orders.submit_order(
            "alice", "BTC_USDT", OrderSide.BUY, OrderType.MARKET, Decimal("2"), price=Decimal("150")
        )

        assert order.price is None
        assert order.reserve_price == Decimal("150")
        assert (await ledger.store.get_balance("alice", "USDT")).locked == 300

    @pytest.mark.asyncio
    async def test_market_buy_without_cap_reserves_at_max_price(self, ledger):
        """Test market buys without a cap lock at the market's max price"""
        order = await ledger.orders.submit_order(
            "alice", "BTC_USDT", OrderSide.BUY, OrderType.MARKET, Decimal("1")
        )

        assert order.reserve_price == Decimal("1000")
        balance = await ledger.store.get_balance("alice", "USDT")
        assert balance.locked == 1000
        assert balance.available == 0

    @pytest.mark.asyncio
    async def test_emit_failure_leaves_order_for_resubmission(self, ledger):
        """Test an unreachable engine does not undo the placement"""
        gateway = UnreachableEngineGateway()
        ledger.placement.gateway = gateway

        order = await ledger.orders.submit_order(
            "alice", "BTC_USDT", OrderSide.BUY, OrderType.LIMIT, Decimal("1"), price=Decimal("100")
        )

        stored = await ledger.store.get_order(order.id)
        assert stored.status == OrderStatus.OPEN
        assert stored.engine_submitted_at is None
        assert (await ledger.store.get_balance("alice", "USDT")).locked == 100

        # Sweep while the engine is still down
        assert await ledger.placement.resubmit_unsubmitted(older_than=timedelta(0)) == 0
        assert gateway.attempts == 2

        # Engine queue back
        ledger.placement.gateway = ledger.gateway
        assert await ledger.placement.resubmit_unsubmitted(older_than=timedelta(0)) == 1

        stored = await ledger.store.get_order(order.id)
        assert stored.engine_submitted_at is not None
        assert len(ledger.queue.peek(order_command_queue("BTC_USDT"))) == 1

        # Nothing left to resubmit
        assert await ledger.placement.resubmit_unsubmitted(older_than=timedelta(0)) == 0
