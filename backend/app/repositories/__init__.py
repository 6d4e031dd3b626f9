"""Repository abstractions for database interactions."""

from .market_repository import MarketRepository
from .sync_repository import SyncInProgressError, SyncRepository

__all__ = [
    "MarketRepository",
    "SyncInProgressError",
    "SyncRepository",
]
