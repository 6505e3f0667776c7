"""
Progression store backends.

- **protocol.py**: StoreBackend capability interface
- **schema.py**: table definition and shared queries (ProgressionTable)
- **embedded.py**: EmbeddedFileStore (SQLite via aiosqlite)
- **networked.py**: NetworkedStore (MySQL via aiomysql, PostgreSQL via asyncpg)
- **factory.py**: StoreSettings and backend selection
"""

from smptweaks.progression.store.embedded import EmbeddedFileStore
from smptweaks.progression.store.factory import StoreSettings, create_store_backend
from smptweaks.progression.store.networked import NetworkedStore
from smptweaks.progression.store.protocol import StoreBackend
from smptweaks.progression.store.schema import (
    DEFAULT_TABLE_NAME,
    REQUIRED_COLUMNS,
    ProgressionTable,
    build_progression_table,
)

__all__ = [
    "StoreBackend",
    "EmbeddedFileStore",
    "NetworkedStore",
    "StoreSettings",
    "create_store_backend",
    "ProgressionTable",
    "build_progression_table",
    "DEFAULT_TABLE_NAME",
    "REQUIRED_COLUMNS",
]
