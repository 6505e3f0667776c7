"""
ProgressionManager: orchestration of progression persistence.

Purpose
-------
The only entry point gameplay code (event listeners, commands, schedulers)
uses to touch persisted progression. Owns the store backend, the leveling
curve, and the live view of connected players.

Responsibilities
----------------
- Startup sequence: connect, reachability check, schema check/creation;
  any failure puts the manager in degraded mode instead of raising
- Keyed loads/saves and cooldown timestamp reads/writes, returned as
  `StoreResult` values (callers never see persistence exceptions)
- Live view: load on join, XP awards in memory, flush on leave, periodic
  flush (via AutosaveTask) and a final flush on shutdown

Non-Responsibilities
--------------------
- SQL and dialect handling (StoreBackend implementations)
- XP math (ProgressionCurve)
- Scheduling (AutosaveTask, host event loop)

Architecture Notes
------------------
- Explicit instance, constructed by bootstrap and passed to collaborators.
- Degraded mode makes every persistence call a no-op returning its safe
  default; it is entered before `start()` and after `stop()` as well.
- Per-player calls are not serialized here; the live view keeps a single
  authoritative in-memory record per connected player.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.exceptions import (
    ConnectivityError,
    ErrorSeverity,
    ProgressionStoreException,
    SchemaError,
    StoreError,
)
from smptweaks.core.logging.logger import LogContext, get_logger
from smptweaks.progression.curve import DEFAULT_CURVE, ProgressionCurve
from smptweaks.progression.record import (
    PlayerId,
    ProgressionRecord,
    TimestampField,
    coerce_player_id,
)
from smptweaks.progression.result import StoreResult
from smptweaks.progression.store.protocol import StoreBackend
from smptweaks.progression.timestamps import EPOCH, TimestampCodec

logger = get_logger(__name__)

T = TypeVar("T")

NOT_STARTED = "not started"
STOPPED = "stopped"
DEFAULT_REWARD_COOLDOWN = timedelta(hours=24)

_LOG_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ProgressionManager:
    """
    Progression persistence facade with degraded-mode handling.

    Usage
    -----
    >>> manager = ProgressionManager(backend, xp_multiplier=1.5)
    >>> await manager.start()
    >>> record = await manager.join(player_id, "Steve")
    >>> manager.award_xp(player_id, 40)
    >>> await manager.leave(player_id)
    >>> await manager.stop()
    """

    def __init__(
        self,
        backend: StoreBackend,
        *,
        curve: ProgressionCurve = DEFAULT_CURVE,
        codec: Optional[TimestampCodec] = None,
        xp_multiplier: float = 1.0,
        reward_cooldown: timedelta = DEFAULT_REWARD_COOLDOWN,
        metrics: Optional[StoreMetrics] = None,
    ) -> None:
        if xp_multiplier < 0:
            raise ValueError(f"xp_multiplier cannot be negative, got {xp_multiplier}")
        self._backend = backend
        self.curve = curve
        self.codec = codec or TimestampCodec()
        self.xp_multiplier = xp_multiplier
        self.reward_cooldown = reward_cooldown
        self.metrics = metrics or StoreMetrics()
        self._degraded_reason: Optional[str] = NOT_STARTED
        self._active: Dict[uuid.UUID, ProgressionRecord] = {}

    @property
    def backend(self) -> StoreBackend:
        return self._backend

    @property
    def degraded(self) -> bool:
        return self._degraded_reason is not None

    @property
    def degraded_reason(self) -> Optional[str]:
        return self._degraded_reason

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _enter_degraded(self, reason: str, error: Optional[BaseException] = None) -> None:
        self._degraded_reason = reason
        logger.error(
            "Progression persistence disabled; running degraded",
            extra={
                "backend": self._backend.name,
                "reason": reason,
                "error": str(error) if error else None,
                "error_type": type(error).__name__ if error else None,
            },
        )

    async def start(self) -> bool:
        """
        Connect the backend and make sure the table exists.

        Returns:
            True when persistence is available; False when degraded. Never raises.
        """
        async with LogContext(component="progression", operation="start"):
            try:
                await self._backend.connect()
            except ConnectivityError as exc:
                self._enter_degraded(f"store unreachable: {exc.message}", exc)
                return False
            except Exception as exc:
                logger.error("Unexpected error connecting store backend", exc_info=True)
                self._enter_degraded("store connect failed", exc)
                return False

            if not await self._backend.is_reachable():
                self._enter_degraded("store unreachable")
                return False

            if not await self._backend.is_schema_valid():
                logger.warning(
                    "Progression table missing or incomplete; creating it",
                    extra={"backend": self._backend.name, "table": self._backend.table_name},
                )
                try:
                    await self._backend.ensure_schema()
                except SchemaError as exc:
                    self._enter_degraded(f"schema setup failed: {exc.message}", exc)
                    return False
                except Exception as exc:
                    logger.error("Unexpected error creating progression table", exc_info=True)
                    self._enter_degraded("schema setup failed", exc)
                    return False
                # create_all skips an existing table, however incomplete
                if not await self._backend.is_schema_valid():
                    self._enter_degraded(
                        f"schema setup failed: table {self._backend.table_name!r} "
                        "exists but is missing required columns"
                    )
                    return False
                logger.info(
                    "Progression table created",
                    extra={"backend": self._backend.name, "table": self._backend.table_name},
                )

            self._degraded_reason = None
            logger.info(
                "Progression persistence ready",
                extra={"backend": self._backend.name, "table": self._backend.table_name},
            )
            return True

    async def stop(self) -> int:
        """
        Flush every active record, clear the live view and close the backend.

        Returns:
            Number of records persisted by the final flush. Never raises.
        """
        flushed = 0
        async with LogContext(component="progression", operation="stop"):
            try:
                flushed = await self.flush_active()
            except Exception:
                logger.error("Unexpected error during final flush", exc_info=True)

            active_count = len(self._active)
            self._active.clear()

            try:
                await self._backend.close()
            except Exception:
                logger.error("Error while closing store backend", exc_info=True)

            self._degraded_reason = STOPPED
            logger.info(
                "Progression persistence stopped",
                extra={
                    "flushed": flushed,
                    "active_records": active_count,
                    "metrics": self.metrics.snapshot(),
                },
            )
        return flushed

    # =========================================================================
    # GUARDED CALLS
    # =========================================================================

    async def _guarded(
        self,
        operation: str,
        player_id: Any,
        call: Callable[[], Awaitable[T]],
        default: T,
    ) -> StoreResult[T]:
        if self.degraded:
            self.metrics.record_degraded(operation)
            logger.debug(
                "Persistence skipped in degraded mode",
                extra={"store_operation": operation, "reason": self._degraded_reason},
            )
            return StoreResult.degraded(default, self._degraded_reason or "degraded")

        async with LogContext(player_id=player_id, operation=operation):
            try:
                value = await call()
            except ProgressionStoreException as exc:
                self.metrics.record_degraded(operation)
                logger.log(
                    _LOG_LEVELS.get(exc.severity, logging.ERROR),
                    "Progression %s failed; returning default",
                    operation,
                    extra={"error_code": exc.error_code, "details": exc.details},
                )
                return StoreResult.degraded(default, exc.message, exc)
            except Exception as exc:
                self.metrics.record_degraded(operation)
                logger.error(
                    "Unexpected error during progression %s",
                    operation,
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                wrapped = StoreError(operation, player_id, original_error=exc)
                return StoreResult.degraded(default, wrapped.message, wrapped)
        return StoreResult.success(value)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def load(self, player_id: PlayerId) -> StoreResult[Optional[ProgressionRecord]]:
        return await self._guarded(
            "load", player_id, lambda: self._backend.fetch(player_id), None
        )

    async def save(self, record: ProgressionRecord) -> StoreResult[bool]:
        async def _save() -> bool:
            await self._backend.upsert(record)
            record.existed_before_load = True
            return True

        return await self._guarded("save", record.player_id, _save, False)

    async def _read_timestamp(
        self, operation: str, player_id: PlayerId, field: TimestampField
    ) -> StoreResult[datetime]:
        return await self._guarded(
            operation,
            player_id,
            lambda: self._backend.read_timestamp(player_id, field),
            EPOCH,
        )

    async def _mark_timestamp(
        self, operation: str, player_id: PlayerId, field: TimestampField
    ) -> StoreResult[bool]:
        stamp = self.codec.now()

        async def _mark() -> bool:
            key = coerce_player_id(player_id)
            active = self._active.get(key)
            if active is not None and not active.existed_before_load:
                # Row must exist before its timestamp can be set.
                await self._backend.upsert(active)
                active.existed_before_load = True
            await self._backend.write_timestamp(key, field, stamp)
            if active is not None:
                active.set_timestamp(field, stamp)
            return True

        return await self._guarded(operation, player_id, _mark, False)

    async def get_last_reward_claimed(self, player_id: PlayerId) -> StoreResult[datetime]:
        return await self._read_timestamp(
            "get_last_reward_claimed", player_id, TimestampField.LAST_REWARD_CLAIMED
        )

    async def mark_reward_claimed(self, player_id: PlayerId) -> StoreResult[bool]:
        return await self._mark_timestamp(
            "mark_reward_claimed", player_id, TimestampField.LAST_REWARD_CLAIMED
        )

    async def get_last_special_drop(self, player_id: PlayerId) -> StoreResult[datetime]:
        return await self._read_timestamp(
            "get_last_special_drop", player_id, TimestampField.LAST_SPECIAL_DROP
        )

    async def mark_special_drop(self, player_id: PlayerId) -> StoreResult[bool]:
        return await self._mark_timestamp(
            "mark_special_drop", player_id, TimestampField.LAST_SPECIAL_DROP
        )

    async def is_reward_available(
        self, player_id: PlayerId, cooldown: Optional[timedelta] = None
    ) -> bool:
        """True when the reward cooldown has passed (always True if never claimed)."""
        last = await self.get_last_reward_claimed(player_id)
        return self.codec.cooldown_elapsed(
            last.value, cooldown if cooldown is not None else self.reward_cooldown
        )

    # =========================================================================
    # LIVE VIEW
    # =========================================================================

    async def join(self, player_id: PlayerId, display_name: str) -> ProgressionRecord:
        """Load (or create) the player's record and register it as active."""
        key = coerce_player_id(player_id)
        existing = self._active.get(key)
        if existing is not None:
            return existing

        name = display_name.strip() if isinstance(display_name, str) else ""
        result = await self.load(key)
        # a blank name falls back to the stored one, then to the player id
        record = result.value or ProgressionRecord.fresh(key, name or str(key))
        if name:
            record.display_name = name

        record = self._active.setdefault(key, record)
        logger.info(
            "Player progression loaded",
            extra={
                "player": str(key),
                "level": record.level,
                "total_xp": record.total_xp,
                "existed": record.existed_before_load,
                "degraded": not result.ok,
            },
        )
        return record

    def get_active(self, player_id: PlayerId) -> Optional[ProgressionRecord]:
        return self._active.get(coerce_player_id(player_id))

    def active_records(self) -> List[ProgressionRecord]:
        return list(self._active.values())

    def award_xp(
        self,
        player_id: PlayerId,
        raw_xp: int,
        multiplier: Optional[float] = None,
    ) -> int:
        """
        Apply the XP multiplier and add the XP to an active player's record.

        Returns:
            Levels gained; 0 for players that are not active.
        """
        record = self._active.get(coerce_player_id(player_id))
        if record is None:
            return 0
        gained_xp = self.curve.apply_multiplier(
            raw_xp, self.xp_multiplier if multiplier is None else multiplier
        )
        levels = record.add_xp(gained_xp, self.curve)
        if levels:
            logger.info(
                "Player leveled up",
                extra={"player": str(record.player_id), "level": record.level, "levels_gained": levels},
            )
        return levels

    def describe_progress(self, player_id: PlayerId) -> Optional[str]:
        """Progress line in the player's preferred display mode."""
        record = self._active.get(coerce_player_id(player_id))
        if record is None:
            return None
        return self.curve.format_progress(record.total_xp, record.xp_display_mode)

    async def leave(self, player_id: PlayerId) -> StoreResult[bool]:
        """Flush and discard an active record."""
        key = coerce_player_id(player_id)
        record = self._active.get(key)
        if record is None:
            return StoreResult.success(False)
        result = await self.save(record)
        self._active.pop(key, None)
        return result

    async def flush_active(self) -> int:
        """Save every active record; returns how many were persisted."""
        persisted = 0
        for record in list(self._active.values()):
            result = await self.save(record)
            if result.ok and result.value:
                persisted += 1
        return persisted
