"""
Reliable engine event ingestion

Components:
- EngineEventRouter: parse and dispatch one engine message
- MarketConsumer: FIFO ack / retry / dead-letter loop for one market
- IngestionWorker: one consumer per market plus lease reclaim
"""

from .router import EngineEventRouter
from .consumer import MarketConsumer
from .worker import IngestionWorker

__all__ = [
    "EngineEventRouter",
    "MarketConsumer",
    "IngestionWorker",
]
