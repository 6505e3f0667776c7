"""
Integration Tests for EmbeddedFileStore
=======================================

Purpose
-------
Test the SQLite backend end-to-end on a real database file: schema
creation, keyed reads/writes, native upserts under concurrency and
timestamp handling.

Testing Strategy
----------------
- Fresh database file per test (tmp_path)
- Raw SQL through the store's pool to inspect and corrupt rows
"""

import asyncio
import uuid
from datetime import datetime

import pytest
from sqlalchemy import text

from smptweaks.core.exceptions import ConnectivityError, StoreError
from smptweaks.progression.record import ProgressionRecord, TimestampField, XpDisplayMode
from smptweaks.progression.store.embedded import EmbeddedFileStore
from smptweaks.progression.store.protocol import StoreBackend
from smptweaks.progression.timestamps import EPOCH


async def _row_count(store: EmbeddedFileStore) -> int:
    async with store.pool.acquire() as conn:
        return (await conn.execute(text(f"SELECT COUNT(*) FROM {store.table_name}"))).scalar_one()


# ============================================================================
# CONNECTION & SCHEMA
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestConnectionAndSchema:
    """Test file creation and table setup."""

    async def test_connect_creates_file_and_directory(self, tmp_path):
        """Test the database directory and file are created on connect."""
        # Arrange
        store = EmbeddedFileStore(tmp_path / "nested" / "data")

        # Act
        await store.connect()

        # Assert
        try:
            assert store.path.exists()
            assert await store.is_reachable() is True
            assert await store.is_schema_valid() is False
        finally:
            await store.close()

    async def test_ensure_schema(self, embedded_store):
        """Test the table exists with every required column."""
        assert await embedded_store.is_schema_valid() is True

    async def test_ensure_schema_is_idempotent(self, embedded_store):
        await embedded_store.ensure_schema()
        assert await embedded_store.is_schema_valid() is True

    async def test_incomplete_table_is_invalid(self, tmp_path):
        """Test a table missing columns fails the schema check."""
        # Arrange
        store = EmbeddedFileStore(tmp_path)
        await store.connect()
        async with store.pool.acquire(transactional=True) as conn:
            await conn.execute(text("CREATE TABLE smptweaks_player (player_id TEXT PRIMARY KEY)"))

        # Act & Assert
        try:
            assert await store.is_schema_valid() is False
        finally:
            await store.close()

    async def test_unwritable_location_raises(self, tmp_path):
        """Test a data directory below a regular file cannot be used."""
        # Arrange
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = EmbeddedFileStore(blocker / "data")

        # Act & Assert
        with pytest.raises(ConnectivityError):
            await store.connect()
        assert await store.is_reachable() is False

    async def test_operations_after_close_raise(self, embedded_store, player_id):
        """Test a closed store refuses work."""
        await embedded_store.close()
        with pytest.raises(ConnectivityError):
            await embedded_store.fetch(player_id)

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(EmbeddedFileStore(tmp_path), StoreBackend)


# ============================================================================
# RECORDS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestRecords:
    """Test keyed reads and upserts."""

    async def test_fetch_missing(self, embedded_store, player_id):
        """Test an unknown key reads as None."""
        assert await embedded_store.fetch(player_id) is None
        assert await embedded_store.exists(player_id) is False

    async def test_round_trip(self, embedded_store, player_id):
        """Test a stored record reads back equal."""
        # Arrange
        record = ProgressionRecord(
            player_id=player_id,
            display_name="Alex",
            level=4,
            total_xp=460,
            xp_display_mode=XpDisplayMode.PERCENTAGE,
        )

        # Act
        inserted = await embedded_store.upsert(record)
        loaded = await embedded_store.fetch(player_id)

        # Assert
        assert inserted is True
        assert loaded == record
        assert loaded.existed_before_load is True
        assert await embedded_store.exists(str(player_id)) is True

    async def test_upsert_updates_single_row(self, embedded_store, record_factory):
        """Test repeated upserts update in place."""
        # Arrange
        record = record_factory(total_xp=10)
        await embedded_store.upsert(record)
        record.total_xp = 500
        record.level = 4
        record.display_name = "Renamed"

        # Act
        inserted = await embedded_store.upsert(record)

        # Assert
        assert inserted is False
        assert await _row_count(embedded_store) == 1
        loaded = await embedded_store.fetch(record.player_id)
        assert (loaded.display_name, loaded.level, loaded.total_xp) == ("Renamed", 4, 500)

    async def test_upsert_keeps_timestamps(self, embedded_store, record_factory):
        """Test saving a record never clears its cooldown timestamps."""
        # Arrange
        record = record_factory()
        await embedded_store.upsert(record)
        stamp = datetime(2024, 5, 1, 12, 0)
        await embedded_store.write_timestamp(record.player_id, TimestampField.LAST_REWARD_CLAIMED, stamp)

        # Act
        await embedded_store.upsert(record)

        # Assert
        loaded = await embedded_store.fetch(record.player_id)
        assert loaded.last_reward_claimed_at == stamp

    async def test_concurrent_upserts_same_key(self, embedded_store, player_id):
        """Test concurrent writers for one key leave exactly one row."""
        # Arrange
        records = [
            ProgressionRecord(player_id=player_id, display_name=f"Alex{i}", total_xp=i)
            for i in range(12)
        ]

        # Act
        results = await asyncio.gather(*(embedded_store.upsert(r) for r in records))

        # Assert
        assert results.count(True) == 1
        assert await _row_count(embedded_store) == 1

    async def test_concurrent_upserts_many_keys(self, embedded_store, record_factory):
        records = [record_factory() for _ in range(25)]
        await asyncio.gather(*(embedded_store.upsert(r) for r in records))
        assert await _row_count(embedded_store) == 25

    async def test_corrupt_row_raises_store_error(self, embedded_store, player_id):
        """Test rows violating record invariants surface as StoreError."""
        # Arrange
        async with embedded_store.pool.acquire(transactional=True) as conn:
            await conn.execute(
                text(
                    "INSERT INTO smptweaks_player (player_id, display_name, level, total_xp, xp_display_mode) "
                    "VALUES (:id, 'Alex', 0, 0, 0)"
                ),
                {"id": str(player_id)},
            )

        # Act & Assert
        with pytest.raises(StoreError):
            await embedded_store.fetch(player_id)


# ============================================================================
# TIMESTAMPS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestTimestamps:
    """Test cooldown timestamp columns."""

    async def test_missing_row_reads_epoch(self, embedded_store, player_id):
        assert await embedded_store.read_timestamp(player_id, TimestampField.LAST_SPECIAL_DROP) == EPOCH

    async def test_null_reads_epoch(self, embedded_store, record_factory):
        """Test a never-set timestamp reads as the epoch sentinel."""
        record = record_factory()
        await embedded_store.upsert(record)
        assert await embedded_store.read_timestamp(record.player_id, TimestampField.LAST_REWARD_CLAIMED) == EPOCH

    async def test_write_then_read(self, embedded_store, record_factory):
        """Test timestamps are stored at second precision."""
        # Arrange
        record = record_factory()
        await embedded_store.upsert(record)

        # Act
        await embedded_store.write_timestamp(
            record.player_id,
            TimestampField.LAST_SPECIAL_DROP,
            datetime(2024, 5, 1, 12, 30, 15, 987000),
        )

        # Assert
        assert await embedded_store.read_timestamp(
            record.player_id, TimestampField.LAST_SPECIAL_DROP
        ) == datetime(2024, 5, 1, 12, 30, 15)
        assert await embedded_store.read_timestamp(
            record.player_id, TimestampField.LAST_REWARD_CLAIMED
        ) == EPOCH

    async def test_stored_text_format(self, embedded_store, record_factory):
        """Test the on-disk representation is YYYY-MM-DD HH:MM:SS."""
        # Arrange
        record = record_factory()
        await embedded_store.upsert(record)
        await embedded_store.write_timestamp(
            record.player_id, TimestampField.LAST_REWARD_CLAIMED, datetime(2024, 1, 2, 3, 4, 5)
        )

        # Act
        async with embedded_store.pool.acquire() as conn:
            raw = (
                await conn.execute(
                    text("SELECT last_reward_claimed FROM smptweaks_player WHERE player_id = :id"),
                    {"id": str(record.player_id)},
                )
            ).scalar_one()

        # Assert
        assert raw == "2024-01-02 03:04:05"

    async def test_malformed_value_reads_epoch(self, embedded_store, record_factory):
        """Test an unparsable stored value is treated as never."""
        # Arrange
        record = record_factory()
        await embedded_store.upsert(record)
        async with embedded_store.pool.acquire(transactional=True) as conn:
            await conn.execute(
                text("UPDATE smptweaks_player SET last_reward_claimed = 'garbage' WHERE player_id = :id"),
                {"id": str(record.player_id)},
            )

        # Act
        value = await embedded_store.read_timestamp(record.player_id, TimestampField.LAST_REWARD_CLAIMED)
        loaded = await embedded_store.fetch(record.player_id)

        # Assert
        assert value == EPOCH
        assert loaded.last_reward_claimed_at is None

    async def test_write_without_row_raises(self, embedded_store):
        """Test timestamps cannot be written for unknown players."""
        with pytest.raises(StoreError):
            await embedded_store.write_timestamp(uuid.uuid4(), TimestampField.LAST_REWARD_CLAIMED)
