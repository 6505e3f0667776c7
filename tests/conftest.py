"""
Pytest Configuration and Fixtures for SMPtweaks Tests
=====================================================

Purpose
-------
Centralized fixtures for the progression persistence test suite.

Responsibilities
----------------
- In-memory StoreBackend double for manager and autosave unit tests
- Embedded (SQLite) store on a temporary directory for integration tests
- ConfigManager built from in-memory settings
- Record factories for test data

Architecture Notes
------------------
- Unit tests use the in-memory backend (fast, isolated)
- Integration tests use a real SQLite file; networked tests use
  testcontainers and skip when Docker is unavailable
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio

from smptweaks.core.config.manager import ConfigManager
from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.exceptions import ConnectivityError, SchemaError, StoreError
from smptweaks.core.logging.logger import clear_log_context, get_logger
from smptweaks.progression.record import (
    PlayerId,
    ProgressionRecord,
    TimestampField,
    coerce_player_id,
)
from smptweaks.progression.store.embedded import EmbeddedFileStore
from smptweaks.progression.timestamps import EPOCH, TimestampCodec

logger = get_logger(__name__)

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure pytest environment."""
    os.environ["ENVIRONMENT"] = "testing"
    os.environ["LOG_LEVEL"] = "DEBUG"


@pytest.fixture(autouse=True)
def _reset_log_context():
    clear_log_context()
    yield
    clear_log_context()


# ============================================================================
# IN-MEMORY BACKEND (Unit Tests)
# ============================================================================


class InMemoryBackend:
    """
    StoreBackend double keeping rows in a dict.

    Set `fail_connect`, `reachable`, `schema_valid` or `fail_operations` to
    drive the manager's degraded paths.
    """

    def __init__(self) -> None:
        self.rows: Dict[uuid.UUID, ProgressionRecord] = {}
        self.timestamps: Dict[uuid.UUID, Dict[TimestampField, datetime]] = {}
        self.calls: List[str] = []
        self.fail_connect = False
        self.reachable = True
        self.schema_valid = True
        self.fail_ensure_schema = False
        self.fail_operations = False
        self.connected = False
        self.closed = False

    @property
    def name(self) -> str:
        return "memory"

    @property
    def table_name(self) -> str:
        return "smptweaks_player"

    def _check(self, operation: str, player_id: Optional[Any] = None) -> None:
        self.calls.append(operation)
        if self.fail_operations:
            raise StoreError(operation, player_id, message="simulated failure")

    async def connect(self) -> None:
        self.calls.append("connect")
        if self.fail_connect:
            raise ConnectivityError(self.name, "simulated outage")
        self.connected = True

    async def is_reachable(self) -> bool:
        return self.reachable

    async def is_schema_valid(self) -> bool:
        return self.schema_valid

    async def ensure_schema(self) -> None:
        self.calls.append("ensure_schema")
        if self.fail_ensure_schema:
            raise SchemaError(self.table_name, RuntimeError("read-only"))
        self.schema_valid = True

    async def fetch(self, player_id: PlayerId) -> Optional[ProgressionRecord]:
        self._check("fetch", player_id)
        stored = self.rows.get(coerce_player_id(player_id))
        if stored is None:
            return None
        stamps = self.timestamps.get(stored.player_id, {})
        return ProgressionRecord(
            player_id=stored.player_id,
            display_name=stored.display_name,
            level=stored.level,
            total_xp=stored.total_xp,
            xp_display_mode=stored.xp_display_mode,
            last_reward_claimed_at=stamps.get(TimestampField.LAST_REWARD_CLAIMED),
            last_special_drop_at=stamps.get(TimestampField.LAST_SPECIAL_DROP),
            existed_before_load=True,
        )

    async def exists(self, player_id: PlayerId) -> bool:
        self._check("exists", player_id)
        return coerce_player_id(player_id) in self.rows

    async def upsert(self, record: ProgressionRecord) -> bool:
        self._check("upsert", record.player_id)
        inserted = record.player_id not in self.rows
        self.rows[record.player_id] = ProgressionRecord(
            player_id=record.player_id,
            display_name=record.display_name,
            level=record.level,
            total_xp=record.total_xp,
            xp_display_mode=record.xp_display_mode,
        )
        return inserted

    async def read_timestamp(self, player_id: PlayerId, field: TimestampField) -> datetime:
        self._check("read_timestamp", player_id)
        return self.timestamps.get(coerce_player_id(player_id), {}).get(field, EPOCH)

    async def write_timestamp(
        self,
        player_id: PlayerId,
        field: TimestampField,
        value: Optional[datetime] = None,
    ) -> None:
        self._check("write_timestamp", player_id)
        key = coerce_player_id(player_id)
        if key not in self.rows:
            raise StoreError("write_timestamp", player_id, message=f"no progression row for {key}")
        self.timestamps.setdefault(key, {})[field] = value or TimestampCodec().now()

    async def close(self) -> None:
        self.calls.append("close")
        self.closed = True


@pytest.fixture
def memory_backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def metrics() -> StoreMetrics:
    return StoreMetrics()


# ============================================================================
# EMBEDDED STORE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def embedded_store(tmp_path, metrics) -> AsyncGenerator[EmbeddedFileStore, None]:
    """
    Connected EmbeddedFileStore with its table created.

    Scope: function (fresh database file per test)
    """
    store = EmbeddedFileStore(tmp_path / "data", pool_size=4, metrics=metrics)
    await store.connect()
    await store.ensure_schema()
    logger.debug("Embedded test store ready", extra={"path": str(store.path)})

    yield store

    await store.close()


# ============================================================================
# CONFIG & DATA FIXTURES
# ============================================================================


@pytest.fixture
def config_factory():
    """Build a ConfigManager from overrides merged over the defaults."""

    def _factory(data: Optional[Dict[str, Any]] = None, **environ: str) -> ConfigManager:
        return ConfigManager.from_dict(data or {}, environ=environ)

    return _factory


@pytest.fixture
def player_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def record_factory():
    """Create ProgressionRecord instances with sensible defaults."""

    def _factory(player_id: Optional[PlayerId] = None, **overrides: Any) -> ProgressionRecord:
        values: Dict[str, Any] = {
            "player_id": player_id or uuid.uuid4(),
            "display_name": "Steve",
        }
        values.update(overrides)
        return ProgressionRecord(**values)

    return _factory
