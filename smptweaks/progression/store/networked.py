"""
NetworkedStore: progression records in a remote MySQL or PostgreSQL database.

Connections use the async drivers (aiomysql, asyncpg) with pre-ping and a
connect timeout. There is no reconnect loop: when the server is down at
startup the manager runs degraded, and each later operation opens its own
connection attempt through the pool.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.database.pool import DEFAULT_CAPACITY, ConnectionPool
from smptweaks.core.exceptions import ConnectivityError
from smptweaks.core.logging.logger import get_logger
from smptweaks.progression.record import PlayerId, ProgressionRecord, TimestampField
from smptweaks.progression.store.schema import DEFAULT_TABLE_NAME, ProgressionTable
from smptweaks.progression.timestamps import TimestampCodec

logger = get_logger(__name__)

# driver -> (SQLAlchemy drivername, default port, connect-timeout argument)
DRIVERS: Dict[str, Tuple[str, int, str]] = {
    "mysql": ("mysql+aiomysql", 3306, "connect_timeout"),
    "postgresql": ("postgresql+asyncpg", 5432, "timeout"),
}

POOL_RECYCLE_SECONDS = 1800


def split_host_port(host: str, port: Optional[int]) -> Tuple[str, Optional[int]]:
    """
    Accept ``host`` or ``host:port``; an explicit `port` wins.

    Example:
        >>> split_host_port("db.example.net:3307", None)
        ('db.example.net', 3307)
    """
    if host.count(":") == 1:
        name, _, raw_port = host.partition(":")
        if raw_port.isdigit():
            return name, port if port is not None else int(raw_port)
    return host, port


class NetworkedStore:
    """
    StoreBackend over a networked relational database.

    Args:
        driver: "mysql" or "postgresql"
        host: Server host, optionally "host:port"
        port: Server port (driver default when None)
        database: Database name
        username, password: Credentials
        table_name: Progression table name
        pool_size: Connection pool capacity
        acquire_timeout: Optional bound on waiting for a pooled connection
        connect_timeout: Seconds before a connection attempt is abandoned
        codec: Timestamp codec (zone and format)
        metrics: Shared StoreMetrics
    """

    def __init__(
        self,
        *,
        driver: str = "mysql",
        host: str = "localhost",
        port: Optional[int] = None,
        database: str = "smptweaks",
        username: str = "",
        password: str = "",
        table_name: str = DEFAULT_TABLE_NAME,
        pool_size: int = DEFAULT_CAPACITY,
        acquire_timeout: Optional[float] = None,
        connect_timeout: float = 10,
        codec: Optional[TimestampCodec] = None,
        metrics: Optional[StoreMetrics] = None,
    ) -> None:
        if driver not in DRIVERS:
            raise ValueError(f"unsupported driver {driver!r}; expected one of {sorted(DRIVERS)}")
        self.driver = driver
        self.host, explicit_port = split_host_port(host, port)
        self.port = explicit_port if explicit_port is not None else DRIVERS[driver][1]
        self.database = database
        self.username = username
        self._password = password
        self._pool_size = pool_size
        self._acquire_timeout = acquire_timeout
        self._connect_timeout = connect_timeout
        self._metrics = metrics or StoreMetrics()
        self._table = ProgressionTable(
            table_name,
            backend=self.name,
            codec=codec,
            metrics=self._metrics,
        )

    @property
    def name(self) -> str:
        return "networked"

    @property
    def table_name(self) -> str:
        return self._table.name

    @property
    def pool(self) -> ConnectionPool:
        return self._table.pool

    @property
    def url(self) -> URL:
        return URL.create(
            DRIVERS[self.driver][0],
            username=self.username or None,
            password=self._password or None,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def _connect_args(self) -> Dict[str, Any]:
        return {DRIVERS[self.driver][2]: self._connect_timeout}

    async def connect(self) -> None:
        stale = self._table.unbind()
        if stale is not None:
            await stale.dispose()

        try:
            engine = create_async_engine(
                self.url,
                poolclass=AsyncAdaptedQueuePool,
                pool_size=self._pool_size,
                max_overflow=0,
                pool_pre_ping=True,
                pool_recycle=POOL_RECYCLE_SECONDS,
                connect_args=self._connect_args(),
            )
        except (SQLAlchemyError, ImportError) as exc:
            logger.error(
                "Could not create database engine",
                extra={
                    "driver": self.driver,
                    "host": self.host,
                    "port": self.port,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise ConnectivityError(self.name, "engine creation failed", exc) from exc

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
            "NetworkedStore configured",
            extra={
                "driver": self.driver,
                "host": self.host,
                "port": self.port,
                "database": self.database,
                "pool_size": self._pool_size,
            },
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
            logger.info(
                "NetworkedStore closed",
                extra={"driver": self.driver, "host": self.host},
            )
