"""
Bounded connection pool over an async SQLAlchemy engine.

Purpose
-------
Hand out at most `capacity` database connections at a time to the
progression backends, with scoped acquisition that always gives the slot
and the connection back, whether the body succeeds, fails logically or
raises something unexpected.

Architecture Notes
------------------
- An `asyncio.Semaphore` enforces the capacity; the engine's own pool is
  sized identically with no overflow, so the two never disagree.
- `acquire()` yields an `AsyncConnection`. With `transactional=True` the
  body runs inside `conn.begin()`: committed on clean exit, rolled back on
  any exception.
- Failures to open a connection become `ConnectivityError`; errors raised
  inside the body propagate unchanged.
- Waiting for a slot is unbounded unless `acquire_timeout` is set.

Usage Example
-------------
>>> pool = ConnectionPool(engine, capacity=10, backend="embedded")
>>> async with pool.acquire(transactional=True) as conn:
...     await conn.execute(stmt)
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.exceptions import ConnectivityError, ProgressionStoreException
from smptweaks.core.logging.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CAPACITY = 10

# Errors that mean "could not open a connection" rather than "query failed".
CONNECT_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


@dataclass(frozen=True, slots=True)
class PoolStats:
    capacity: int
    checked_out: int
    available: int
    waiting: int


class ConnectionPool:
    """Fixed-capacity connection pool owned by exactly one backend."""

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        capacity: int = DEFAULT_CAPACITY,
        backend: str = "store",
        acquire_timeout: Optional[float] = None,
        metrics: Optional[StoreMetrics] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"pool capacity must be >= 1, got {capacity}")
        if acquire_timeout is not None and acquire_timeout <= 0:
            raise ValueError(f"acquire_timeout must be positive, got {acquire_timeout}")

        self._engine = engine
        self._capacity = capacity
        self._backend = backend
        self._acquire_timeout = acquire_timeout
        self._metrics = metrics or StoreMetrics()
        self._semaphore = asyncio.Semaphore(capacity)
        self._checked_out = 0
        self._waiting = 0
        self._disposed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def _wait_for_slot(self) -> None:
        self._waiting += 1
        try:
            if self._acquire_timeout is None:
                await self._semaphore.acquire()
                return
            try:
                await asyncio.wait_for(self._semaphore.acquire(), self._acquire_timeout)
            except asyncio.TimeoutError as exc:
                self._metrics.record_acquire_timeout()
                logger.warning(
                    "Timed out waiting for a pooled connection",
                    extra={
                        "backend": self._backend,
                        "capacity": self._capacity,
                        "acquire_timeout": self._acquire_timeout,
                    },
                )
                raise ConnectivityError(
                    self._backend,
                    f"no connection available within {self._acquire_timeout}s",
                    exc,
                ) from exc
        finally:
            self._waiting -= 1

    async def _open(self) -> AsyncConnection:
        try:
            return await self._engine.connect()
        except CONNECT_ERRORS as exc:
            self._metrics.record_connect_failure(error_type=type(exc).__name__)
            logger.warning(
                "Could not open database connection",
                extra={
                    "backend": self._backend,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise ConnectivityError(self._backend, "connection failed", exc) from exc

    @asynccontextmanager
    async def acquire(
        self, transactional: bool = False
    ) -> AsyncGenerator[AsyncConnection, None]:
        """
        Check out one connection for the duration of the block.

        Args:
            transactional: Run the block inside a transaction that commits on
                success and rolls back on any exception.

        Raises:
            ConnectivityError: Pool disposed, wait timed out, or the
                connection could not be opened.
        """
        if self._disposed:
            raise ConnectivityError(self._backend, "connection pool is closed")

        await self._wait_for_slot()
        try:
            conn = await self._open()
            self._checked_out += 1
            self._metrics.record_checkout()
            try:
                if transactional:
                    async with conn.begin():
                        yield conn
                else:
                    yield conn
            finally:
                self._checked_out -= 1
                await conn.close()
        finally:
            self._semaphore.release()

    async def ping(self) -> bool:
        """Open and release one connection; never raises."""
        start = time.perf_counter()
        try:
            async with self.acquire() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (ProgressionStoreException, SQLAlchemyError) as exc:
            logger.warning(
                "Store ping failed",
                extra={
                    "backend": self._backend,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False
        except Exception as exc:
            logger.error(
                "Unexpected error during store ping",
                extra={
                    "backend": self._backend,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return False
        finally:
            logger.debug(
                "Store ping completed",
                extra={
                    "backend": self._backend,
                    "duration_ms": round((time.perf_counter() - start) * 1000.0, 3),
                },
            )

    def stats(self) -> PoolStats:
        return PoolStats(
            capacity=self._capacity,
            checked_out=self._checked_out,
            available=self._capacity - self._checked_out,
            waiting=self._waiting,
        )

    async def dispose(self) -> None:
        """Close every pooled connection; idempotent."""
        if self._disposed:
            return
        self._disposed = True
        await self._engine.dispose()
        logger.info(
            "Connection pool disposed",
            extra={"backend": self._backend, "capacity": self._capacity},
        )
