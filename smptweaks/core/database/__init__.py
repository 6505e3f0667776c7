"""
Database subsystem for SMPtweaks.

Provides the bounded connection pool over an async SQLAlchemy engine and
the in-process store metrics shared by the progression backends.
"""

from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.database.pool import (
    DEFAULT_CAPACITY,
    ConnectionPool,
    PoolStats,
)

__all__ = [
    "ConnectionPool",
    "PoolStats",
    "DEFAULT_CAPACITY",
    "StoreMetrics",
]
