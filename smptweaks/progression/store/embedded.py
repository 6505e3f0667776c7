"""
EmbeddedFileStore: progression records in a local SQLite file.

The file (``<data_dir>/smptweaks.db`` by default) and its directory are
created on first use. Connections go through aiosqlite so queries never
block the event loop; every transaction starts with ``BEGIN IMMEDIATE`` so
concurrent writers queue on the file lock instead of failing on upgrade.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.database.pool import DEFAULT_CAPACITY, ConnectionPool
from smptweaks.core.exceptions import ConnectivityError
from smptweaks.core.logging.logger import get_logger
from smptweaks.progression.record import PlayerId, ProgressionRecord, TimestampField
from smptweaks.progression.store.schema import DEFAULT_TABLE_NAME, ProgressionTable
from smptweaks.progression.timestamps import TimestampCodec

logger = get_logger(__name__)

DEFAULT_FILE_NAME = "smptweaks.db"

# sqlite3 busy timeout, seconds
BUSY_TIMEOUT = 30


def _install_sqlite_transaction_hooks(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Let SQLAlchemy's begin event control transactions instead of pysqlite.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class EmbeddedFileStore:
    """
    StoreBackend over a single SQLite file.

    Args:
        data_dir: Directory holding the database file (created if missing)
        file_name: Database file name
        table_name: Progression table name
        pool_size: Connection pool capacity
        acquire_timeout: Optional bound on waiting for a pooled connection
        codec: Timestamp codec (zone and format)
        metrics: Shared StoreMetrics
    """

    def __init__(
        self,
        data_dir: Union[str, Path],
        *,
        file_name: str = DEFAULT_FILE_NAME,
        table_name: str = DEFAULT_TABLE_NAME,
        pool_size: int = DEFAULT_CAPACITY,
        acquire_timeout: Optional[float] = None,
        codec: Optional[TimestampCodec] = None,
        metrics: Optional[StoreMetrics] = None,
    ) -> None:
        self.path = Path(data_dir) / file_name
        self._pool_size = pool_size
        self._acquire_timeout = acquire_timeout
        self._metrics = metrics or StoreMetrics()
        self._table = ProgressionTable(
            table_name,
            backend=self.name,
            codec=codec,
            metrics=self._metrics,
        )

    @property
    def name(self) -> str:
        return "embedded"

    @property
    def table_name(self) -> str:
        return self._table.name

    @property
    def pool(self) -> ConnectionPool:
        return self._table.pool

    @property
    def url(self) -> str:
        return f"sqlite+aiosqlite:///{self.path}"

    async def connect(self) -> None:
        stale = self._table.unbind()
        if stale is not None:
            logger.debug("EmbeddedFileStore reconnecting", extra={"path": str(self.path)})
            await stale.dispose()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=True)
        except OSError as exc:
            logger.error(
                "Could not create embedded database file",
                extra={
                    "path": str(self.path),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise ConnectivityError(self.name, f"cannot create {self.path}", exc) from exc

        try:
            engine = create_async_engine(
                self.url,
                poolclass=AsyncAdaptedQueuePool,
                pool_size=self._pool_size,
                max_overflow=0,
                connect_args={"timeout": BUSY_TIMEOUT},
            )
        except SQLAlchemyError as exc:
            raise ConnectivityError(self.name, "engine creation failed", exc) from exc

        _install_sqlite_transaction_hooks(engine)

        self._table.bind(
            ConnectionPool(
                engine,
                capacity=self._pool_size,
                backend=self.name,
                acquire_timeout=self._acquire_timeout,
                metrics=self._metrics,
            )
        )
        logger.info(
            "EmbeddedFileStore connected",
            extra={"path": str(self.path), "pool_size": self._pool_size},
        )

    async def is_reachable(self) -> bool:
        try:
            pool = self._table.pool
        except ConnectivityError:
            return False
        return await pool.ping()

    async def is_schema_valid(self) -> bool:
        return await self._table.is_schema_valid()

    async def ensure_schema(self) -> None:
        await self._table.ensure_schema()

    async def fetch(self, player_id: PlayerId) -> Optional[ProgressionRecord]:
        return await self._table.fetch(player_id)

    async def exists(self, player_id: PlayerId) -> bool:
        return await self._table.exists(player_id)

    async def upsert(self, record: ProgressionRecord) -> bool:
        return await self._table.upsert(record)

    async def read_timestamp(self, player_id: PlayerId, field: TimestampField) -> datetime:
        return await self._table.read_timestamp(player_id, field)

    async def write_timestamp(
        self,
        player_id: PlayerId,
        field: TimestampField,
        value: Optional[datetime] = None,
    ) -> None:
        await self._table.write_timestamp(player_id, field, value)

    async def close(self) -> None:
        pool = self._table.unbind()
        if pool is not None:
            await pool.dispose()
            logger.info("EmbeddedFileStore closed", extra={"path": str(self.path)})
