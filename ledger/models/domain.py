"""
Ledger domain models

Reference data (Asset, Market) is immutable. Balance, Order, Trade and
FundingTransaction rows are owned by the ledger and are only changed
through ledger operations inside a store transaction.

Amounts on balances are integer minor units of the asset. Prices and
quantities on orders and trades are Decimals in display units; they are
converted with Asset.to_minor_units() at the point where they touch a
balance.

Market symbols are upper case everywhere (Market, orders, engine events).
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
import uuid

from pydantic import BaseModel, Field, field_validator

from ..errors import InvalidOrderError, PrecisionError


def normalize_symbol(symbol: str) -> str:
    """Canonical form of a market symbol"""
    return symbol.strip().upper()


class OrderSide(str, Enum):
    """Order side"""
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type"""
    LIMIT = "limit"
    MARKET = "market"
    STOP_LIMIT = "stop_limit"
    STOP_MARKET = "stop_market"

    @property
    def is_priced(self) -> bool:
        """Carries a limit price"""
        return self in (OrderType.LIMIT, OrderType.STOP_LIMIT)

    @property
    def is_stop(self) -> bool:
        return self in (OrderType.STOP_LIMIT, OrderType.STOP_MARKET)


class OrderStatus(str, Enum):
    """Order lifecycle state"""
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.CANCELED)


ACTIVE_STATUSES = (OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED)


class TimeInForce(str, Enum):
    """Time in force"""
    GTC = "gtc"  # Good till cancel
    IOC = "ioc"  # Immediate or cancel
    FOK = "fok"  # Fill or kill


class FundingType(str, Enum):
    """External funding movement"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class Asset(BaseModel):
    """Asset reference data"""

    symbol: str
    decimals: int = Field(ge=0, le=18, description="Minor-unit scale")
    name: Optional[str] = None

    class Config:
        frozen = True

    def to_minor_units(self, amount: Decimal, rounding: Optional[str] = None) -> int:
        """
        Convert a display amount to integer minor units

        Args:
            amount: Display amount
            rounding: decimal rounding mode (ROUND_DOWN, ROUND_UP); None
                requires the amount to be exact

        Raises:
            PrecisionError: amount has more precision than the asset allows
                and no rounding mode was given
        """
        scaled = Decimal(amount).scaleb(self.decimals)
        if rounding is not None:
            return int(scaled.to_integral_value(rounding=rounding))
        if scaled != scaled.to_integral_value():
            raise PrecisionError(
                f"{amount} {self.symbol} is not representable with {self.decimals} decimals"
            )
        return int(scaled)

    def from_minor_units(self, units: int) -> Decimal:
        """Convert integer minor units back to a display amount"""
        return Decimal(units).scaleb(-self.decimals)


class Market(BaseModel):
    """Market reference data (read-only to the ledger)"""

    symbol: str
    base_asset: str
    quote_asset: str

    # Bounds
    min_price: Decimal = Decimal("0.01")
    max_price: Decimal = Decimal("1000000")
    tick_size: Decimal = Decimal("0.01")
    min_quantity: Decimal = Decimal("0.0001")
    max_quantity: Decimal = Decimal("1000")
    step_size: Decimal = Decimal("0.0001")

    # Fees
    taker_fee_bps: int = Field(default=0, ge=0, le=10000)

    is_active: bool = True

    class Config:
        frozen = True

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, v: str) -> str:
        return normalize_symbol(v)

    def validate_quantity(self, quantity: Decimal) -> None:
        """Check quantity bounds and step"""
        if quantity <= 0:
            raise InvalidOrderError(f"Quantity must be positive, got {quantity}")
        if quantity < self.min_quantity or quantity > self.max_quantity:
            raise InvalidOrderError(
                f"Quantity {quantity} outside [{self.min_quantity}, {self.max_quantity}] for {self.symbol}"
            )
        if quantity % self.step_size != 0:
            raise InvalidOrderError(
                f"Quantity {quantity} is not a multiple of step size {self.step_size}"
            )

    def validate_price(self, price: Decimal, label: str = "Price") -> None:
        """Check price bounds and tick"""
        if price <= 0:
            raise InvalidOrderError(f"{label} must be positive, got {price}")
        if price < self.min_price or price > self.max_price:
            raise InvalidOrderError(
                f"{label} {price} outside [{self.min_price}, {self.max_price}] for {self.symbol}"
            )
        if price % self.tick_size != 0:
            raise InvalidOrderError(
                f"{label} {price} is not a multiple of tick size {self.tick_size}"
            )


class Balance(BaseModel):
    """Per-(user, asset) balance in minor units"""

    user_id: str
    asset: str
    available: int = 0
    locked: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def total(self) -> int:
        return self.available + self.locked


class Order(BaseModel):
    """
    Order row

    Invariant: filled + remaining == quantity, remaining >= 0.
    reserve_price is the per-unit quote price the buy-side lock was sized
    at; it equals price for priced orders. locked_units is the part of the
    lock (minor units of locked_asset) still held for the unfilled
    remainder; it is zero once the order is terminal.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    market: str
    side: OrderSide
    order_type: OrderType
    price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    reserve_price: Optional[Decimal] = None
    quantity: Decimal
    filled: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    locked_units: int = Field(default=0, ge=0)
    status: OrderStatus = OrderStatus.OPEN
    time_in_force: TimeInForce = TimeInForce.GTC
    client_order_id: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    canceled_at: Optional[datetime] = None
    engine_submitted_at: Optional[datetime] = None

    cancel_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def locked_asset(self, market: Market) -> str:
        """Asset this order's funds are locked in"""
        return market.quote_asset if self.side == OrderSide.BUY else market.base_asset

    def reserved_amount(self, quantity: Decimal) -> Decimal:
        """
        Display amount locked for `quantity` of this order

        Buy orders lock reserve_price x quantity of the quote asset, sell
        orders lock the quantity of the base asset. The result is exact;
        callers round it to minor units.
        """
        if self.side == OrderSide.BUY:
            return self.reserve_price * quantity
        return quantity


class Trade(BaseModel):
    """Settled trade; immutable once recorded"""

    id: str
    market: str
    price: Decimal
    quantity: Decimal
    taker_side: OrderSide
    buy_order_id: str
    sell_order_id: str
    buyer_id: str
    seller_id: str
    fee: int = 0
    fee_asset: str
    timestamp: datetime

    class Config:
        frozen = True


class FundingTransaction(BaseModel):
    """Deposit or withdrawal applied to a balance"""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    asset: str
    type: FundingType
    amount: int
    balance_after: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True
