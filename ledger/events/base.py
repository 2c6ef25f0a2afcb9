"""
Ledger notification envelope

Every event published by the ledger shares this envelope. Events are
emitted only after the owning transaction commits and carry no state the
ledger itself reads back, so a lost notification never affects balances.

Wire form (Redis pub/sub) is msgpack over the JSON-mode dump, so Decimal
quantities travel as strings and timestamps as ISO-8601.
"""
from datetime import datetime
from typing import Any, Optional
import uuid

import msgpack
from pydantic import BaseModel, Field


class BaseEvent(BaseModel):
    """Envelope shared by all ledger notifications"""

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: str = Field(description="Topic suffix, e.g. 'trade_settled'")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    market: Optional[str] = Field(default=None, description="Market symbol, e.g. 'BTC_USDT'")
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    def topic(self, prefix: str) -> str:
        """Pub/sub channel this event is published on"""
        return f"{prefix}.{self.event_type}"

    def to_wire(self) -> bytes:
        return msgpack.packb(self.model_dump(mode="json"), use_bin_type=True)

    @staticmethod
    def decode_wire(data: bytes) -> dict[str, Any]:
        payload = msgpack.unpackb(data, raw=False)
        if not isinstance(payload, dict) or "event_type" not in payload:
            raise ValueError("event payload has no event_type")
        return payload
