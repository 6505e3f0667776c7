"""StoreBackend protocol for progression persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from smptweaks.progression.record import PlayerId, ProgressionRecord, TimestampField


@runtime_checkable
class StoreBackend(Protocol):
    """
    Capability interface implemented by EmbeddedFileStore and NetworkedStore.

    Implementations raise `ConnectivityError` when used before `connect()`
    succeeded, and wrap query failures in `StoreError`.
    """

    @property
    def name(self) -> str:
        """Short backend name used in logs ("embedded", "networked")."""
        ...

    @property
    def table_name(self) -> str:
        ...

    async def connect(self) -> None:
        """Build the engine and pool; raises ConnectivityError."""
        ...

    async def is_reachable(self) -> bool:
        """Open and release one connection. Never raises."""
        ...

    async def is_schema_valid(self) -> bool:
        """True when the table exists with every required column. Never raises."""
        ...

    async def ensure_schema(self) -> None:
        """Create the table if absent; raises SchemaError."""
        ...

    async def fetch(self, player_id: PlayerId) -> Optional[ProgressionRecord]:
        """Keyed read; None when no row matches."""
        ...

    async def exists(self, player_id: PlayerId) -> bool:
        ...

    async def upsert(self, record: ProgressionRecord) -> bool:
        """Insert or update in one transaction; True when a row was inserted."""
        ...

    async def read_timestamp(self, player_id: PlayerId, field: TimestampField) -> datetime:
        """Stored timestamp, or the epoch for null/missing/unparsable values."""
        ...

    async def write_timestamp(
        self,
        player_id: PlayerId,
        field: TimestampField,
        value: Optional[datetime] = None,
    ) -> None:
        """Set the timestamp (default: now); raises StoreError for unknown keys."""
        ...

    async def close(self) -> None:
        """Dispose the pool; idempotent."""
        ...
