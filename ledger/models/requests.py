"""
Inbound request models
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .domain import Asset, Market, OrderSide, OrderType, TimeInForce, normalize_symbol


class PlaceOrderRequest(BaseModel):
    """
    Validated new-order request from the order API

    Priced orders (limit, stop-limit) require a price. For market buys the
    price is optional and acts as a protection cap: funds are reserved at
    that price instead of the market's maximum price.
    """

    user_id: str = Field(min_length=1)
    market: str = Field(min_length=1)
    side: OrderSide
    order_type: OrderType
    quantity: Decimal = Field(gt=0)
    price: Optional[Decimal] = Field(default=None, gt=0)
    stop_price: Optional[Decimal] = Field(default=None, gt=0)
    time_in_force: TimeInForce = TimeInForce.GTC
    client_order_id: Optional[str] = None

    @field_validator("market")
    @classmethod
    def _normalize_market(cls, v: str) -> str:
        return normalize_symbol(v)

    @model_validator(mode="after")
    def _check_prices(self) -> "PlaceOrderRequest":
        if self.order_type.is_priced and self.price is None:
            raise ValueError(f"A price is required for {self.order_type.value} orders")
        if self.order_type.is_stop and self.stop_price is None:
            raise ValueError(f"A stop price is required for {self.order_type.value} orders")
        return self


class ReferenceData(BaseModel):
    """Assets and markets to register at startup"""

    assets: List[Asset] = Field(default_factory=list)
    markets: List[Market] = Field(default_factory=list)
