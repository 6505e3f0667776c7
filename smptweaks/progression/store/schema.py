"""
Progression table definition and the queries shared by every backend.

Purpose
-------
Define the ``smptweaks_player`` table with SQLAlchemy Core and implement the
keyed reads/writes against it once, so EmbeddedFileStore and NetworkedStore
differ only in how they build their engine.

Responsibilities
----------------
- Build the table for a configurable name, with dialect variants
  (TINYINT display mode on MySQL, fixed text timestamps on SQLite)
- Check and create the schema
- fetch / exists / upsert / read_timestamp / write_timestamp over a
  ConnectionPool, wrapping query failures in StoreError
- Native conflict-resolving upserts per dialect

Architecture Notes
------------------
- Backends own a ProgressionTable and `bind()` it to their pool after
  `connect()`; nothing here is shared between backend instances.
- Timestamps are read through ``CAST(... AS VARCHAR)`` and parsed by the
  TimestampCodec so a malformed stored value cannot break row decoding.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    SmallInteger,
    String,
    Table,
    cast,
    inspect,
    select,
    text,
    update,
)
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.database.pool import ConnectionPool
from smptweaks.core.exceptions import (
    ConnectivityError,
    ParseError,
    SchemaError,
    StoreError,
)
from smptweaks.core.logging.logger import get_logger
from smptweaks.progression.record import (
    PlayerId,
    ProgressionRecord,
    RecordValidationError,
    TimestampField,
    XpDisplayMode,
    coerce_player_id,
)
from smptweaks.progression.timestamps import EPOCH, TimestampCodec

logger = get_logger(__name__)

DEFAULT_TABLE_NAME = "smptweaks_player"

REQUIRED_COLUMNS = frozenset(
    {
        "player_id",
        "display_name",
        "level",
        "total_xp",
        "xp_display_mode",
        TimestampField.LAST_REWARD_CLAIMED.value,
        TimestampField.LAST_SPECIAL_DROP.value,
    }
)

UPSERT_COLUMNS = ("display_name", "level", "total_xp", "xp_display_mode")

_SQLITE_TIMESTAMP = sqlite.DATETIME(
    storage_format=(
        "%(year)04d-%(month)02d-%(day)02d "
        "%(hour)02d:%(minute)02d:%(second)02d"
    )
)


def _timestamp_type() -> DateTime:
    return DateTime().with_variant(_SQLITE_TIMESTAMP, "sqlite")


def build_progression_table(table_name: str = DEFAULT_TABLE_NAME) -> Table:
    """Core table for `table_name` bound to its own MetaData."""
    display_mode_type = (
        SmallInteger()
        .with_variant(mysql.TINYINT(), "mysql")
        .with_variant(mysql.TINYINT(), "mariadb")
    )
    return Table(
        table_name,
        MetaData(),
        Column("player_id", String(36), primary_key=True),
        Column("display_name", String(255), nullable=False),
        Column("level", SmallInteger, nullable=False, default=1, server_default=text("1")),
        Column("total_xp", Integer, nullable=False, default=0, server_default=text("0")),
        Column(
            "xp_display_mode",
            display_mode_type,
            nullable=False,
            default=0,
            server_default=text("0"),
        ),
        Column(TimestampField.LAST_REWARD_CLAIMED.value, _timestamp_type(), nullable=True),
        Column(TimestampField.LAST_SPECIAL_DROP.value, _timestamp_type(), nullable=True),
    )


class ProgressionTable:
    """
    Query helpers for one progression table, composed by a backend.

    Usage
    -----
    >>> table = ProgressionTable("smptweaks_player", backend="embedded", codec=codec)
    >>> table.bind(pool)
    >>> record = await table.fetch(player_id)
    """

    def __init__(
        self,
        table_name: str = DEFAULT_TABLE_NAME,
        *,
        backend: str,
        codec: Optional[TimestampCodec] = None,
        metrics: Optional[StoreMetrics] = None,
    ) -> None:
        self.table = build_progression_table(table_name)
        self.backend = backend
        self.codec = codec or TimestampCodec()
        self.metrics = metrics or StoreMetrics()
        self._pool: Optional[ConnectionPool] = None

    @property
    def name(self) -> str:
        return self.table.name

    def bind(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def unbind(self) -> Optional[ConnectionPool]:
        pool, self._pool = self._pool, None
        return pool

    @property
    def pool(self) -> ConnectionPool:
        if self._pool is None or self._pool.disposed:
            raise ConnectivityError(self.backend, "store is not connected")
        return self._pool

    # =========================================================================
    # Operation wrapper
    # =========================================================================

    @asynccontextmanager
    async def _operation(
        self, operation: str, player_id: Optional[Any] = None
    ) -> AsyncGenerator[None, None]:
        start = time.perf_counter()
        success = False
        try:
            yield
            success = True
        except (SQLAlchemyError, RecordValidationError) as exc:
            logger.error(
                "Store operation failed",
                extra={
                    "backend": self.backend,
                    "table": self.name,
                    "store_operation": operation,
                    "player": str(player_id) if player_id is not None else None,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise StoreError(operation, player_id, original_error=exc) from exc
        finally:
            self.metrics.record_operation(
                operation,
                duration_ms=(time.perf_counter() - start) * 1000.0,
                success=success,
            )

    # =========================================================================
    # Schema
    # =========================================================================

    async def is_schema_valid(self) -> bool:
        def _check(sync_conn: Any) -> bool:
            inspector = inspect(sync_conn)
            if not inspector.has_table(self.name):
                return False
            present = {column["name"] for column in inspector.get_columns(self.name)}
            return REQUIRED_COLUMNS.issubset(present)

        try:
            async with self.pool.acquire() as conn:
                valid = await conn.run_sync(_check)
        except (SQLAlchemyError, ConnectivityError) as exc:
            logger.warning(
                "Schema check failed",
                extra={
                    "backend": self.backend,
                    "table": self.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False

        if not valid:
            logger.debug(
                "Progression table missing or incomplete",
                extra={"backend": self.backend, "table": self.name},
            )
        return valid

    async def ensure_schema(self) -> None:
        try:
            async with self.pool.acquire(transactional=True) as conn:
                await conn.run_sync(self.table.metadata.create_all, checkfirst=True)
        except (SQLAlchemyError, ConnectivityError) as exc:
            logger.error(
                "Could not create progression table",
                extra={
                    "backend": self.backend,
                    "table": self.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise SchemaError(self.name, exc) from exc

        logger.info(
            "Progression table ready",
            extra={"backend": self.backend, "table": self.name},
        )

    # =========================================================================
    # Keyed reads
    # =========================================================================

    async def _exists(self, conn: AsyncConnection, key: str) -> bool:
        result = await conn.execute(
            select(self.table.c.player_id).where(self.table.c.player_id == key).limit(1)
        )
        return result.first() is not None

    async def exists(self, player_id: PlayerId) -> bool:
        pool = self.pool
        async with self._operation("exists", player_id):
            key = str(coerce_player_id(player_id))
            async with pool.acquire() as conn:
                return await self._exists(conn, key)

    async def fetch(self, player_id: PlayerId) -> Optional[ProgressionRecord]:
        pool = self.pool
        c = self.table.c
        reward_col = c[TimestampField.LAST_REWARD_CLAIMED.value]
        drop_col = c[TimestampField.LAST_SPECIAL_DROP.value]

        async with self._operation("fetch", player_id):
            key = str(coerce_player_id(player_id))
            stmt = select(
                c.player_id,
                c.display_name,
                c.level,
                c.total_xp,
                c.xp_display_mode,
                cast(reward_col, String).label("last_reward_claimed"),
                cast(drop_col, String).label("last_special_drop"),
            ).where(c.player_id == key)

            async with pool.acquire() as conn:
                row = (await conn.execute(stmt)).mappings().first()

            if row is None:
                return None

            return ProgressionRecord(
                player_id=row["player_id"],
                display_name=row["display_name"],
                level=int(row["level"]),
                total_xp=int(row["total_xp"]),
                xp_display_mode=XpDisplayMode.parse(row["xp_display_mode"]),
                last_reward_claimed_at=self._decode_timestamp(
                    row["last_reward_claimed"], key, TimestampField.LAST_REWARD_CLAIMED
                ),
                last_special_drop_at=self._decode_timestamp(
                    row["last_special_drop"], key, TimestampField.LAST_SPECIAL_DROP
                ),
                existed_before_load=True,
            )

    def _decode_timestamp(
        self, raw: Any, key: str, field: TimestampField
    ) -> Optional[datetime]:
        """Parsed value, or None for null and malformed values (logged)."""
        if raw is None:
            return None
        try:
            value = self.codec.parse(raw)
        except ParseError as exc:
            logger.warning(
                "Malformed stored timestamp treated as never",
                extra={
                    "backend": self.backend,
                    "player": key,
                    "column": field.value,
                    **exc.details,
                },
            )
            return None
        return None if value == EPOCH else value

    async def read_timestamp(self, player_id: PlayerId, field: TimestampField) -> datetime:
        pool = self.pool
        field = TimestampField(field)
        async with self._operation("read_timestamp", player_id):
            key = str(coerce_player_id(player_id))
            column = self.table.c[field.value]
            stmt = select(cast(column, String)).where(self.table.c.player_id == key)
            async with pool.acquire() as conn:
                raw = (await conn.execute(stmt)).scalar_one_or_none()

        value = self._decode_timestamp(raw, key, field)
        return EPOCH if value is None else value

    # =========================================================================
    # Writes
    # =========================================================================

    def _upsert_statement(self, dialect_name: str, values: Dict[str, Any]) -> Any:
        changes = {name: values[name] for name in UPSERT_COLUMNS}
        if dialect_name == "sqlite":
            stmt = sqlite.insert(self.table).values(**values)
            return stmt.on_conflict_do_update(
                index_elements=[self.table.c.player_id], set_=changes
            )
        if dialect_name == "postgresql":
            stmt = postgresql.insert(self.table).values(**values)
            return stmt.on_conflict_do_update(
                index_elements=[self.table.c.player_id], set_=changes
            )
        if dialect_name in ("mysql", "mariadb"):
            stmt = mysql.insert(self.table).values(**values)
            return stmt.on_duplicate_key_update(**changes)
        raise StoreError(
            "upsert",
            values.get("player_id"),
            message=f"dialect {dialect_name!r} has no native upsert",
        )

    async def upsert(self, record: ProgressionRecord) -> bool:
        """Insert or update `record`; True when a new row was created."""
        pool = self.pool
        values = record.persisted_values()
        key = values["player_id"]

        async with self._operation("upsert", record.player_id):
            async with pool.acquire(transactional=True) as conn:
                existed = await self._exists(conn, key)
                await conn.execute(self._upsert_statement(conn.dialect.name, values))

        logger.debug(
            "Progression record saved",
            extra={
                "backend": self.backend,
                "player": key,
                "inserted": not existed,
                "level": record.level,
                "total_xp": record.total_xp,
            },
        )
        return not existed

    async def write_timestamp(
        self,
        player_id: PlayerId,
        field: TimestampField,
        value: Optional[datetime] = None,
    ) -> datetime:
        """Store `value` (default: now) and return the stored, normalized value."""
        pool = self.pool
        field = TimestampField(field)
        stamp = self.codec.normalize(value) if value is not None else self.codec.now()

        async with self._operation("write_timestamp", player_id):
            key = str(coerce_player_id(player_id))
            stmt = (
                update(self.table)
                .where(self.table.c.player_id == key)
                .values({field.value: stamp})
            )
            async with pool.acquire(transactional=True) as conn:
                result = await conn.execute(stmt)
                updated = result.rowcount

        if updated == 0:
            raise StoreError(
                "write_timestamp",
                player_id,
                message=f"no progression row for {key}",
            )
        return stamp
