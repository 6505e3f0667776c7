"""
Periodic flush of active progression records.

Connected players' records only live in memory between join and leave, so a
crash would lose everything earned since join. AutosaveTask saves the live
view on a fixed interval.

Usage Example
-------------
>>> stop_event = asyncio.Event()
>>> autosave = AutosaveTask(manager, interval_seconds=300)
>>> task = asyncio.create_task(autosave.run_forever(stop_event=stop_event))
>>> # ... server runs ...
>>> stop_event.set()
>>> await task
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from smptweaks.core.config.manager import ConfigManager
from smptweaks.core.logging.logger import LogContext, get_logger
from smptweaks.progression.manager import ProgressionManager

logger = get_logger(__name__)


@dataclass(frozen=True)
class AutosaveConfig:
    interval_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError(f"autosave interval must be positive, got {self.interval_seconds}")

    @classmethod
    def from_config(cls, config: ConfigManager) -> "AutosaveConfig":
        return cls(
            interval_seconds=config.get_float("server_levels.autosave_interval_seconds", 300)
        )


class AutosaveTask:
    """Flushes a manager's active records every `interval_seconds`."""

    def __init__(self, manager: ProgressionManager, interval_seconds: float = 300.0) -> None:
        self._manager = manager
        self._config = AutosaveConfig(interval_seconds=interval_seconds)
        self.runs = 0

    @property
    def interval_seconds(self) -> float:
        return self._config.interval_seconds

    async def run_forever(self, *, stop_event: asyncio.Event) -> None:
        """Flush on every interval until `stop_event` is set."""
        logger.info(
            "Autosave started",
            extra={"interval_seconds": self._config.interval_seconds},
        )

        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self._config.interval_seconds,
                    )
                except asyncio.TimeoutError:
                    await self.tick_once()
        finally:
            logger.info("Autosave stopped", extra={"runs": self.runs})

    async def tick_once(self) -> int:
        """Flush the live view once; returns the number of records persisted."""
        async with LogContext(component="progression", operation="autosave"):
            if self._manager.degraded:
                logger.debug(
                    "Autosave skipped; persistence degraded",
                    extra={"reason": self._manager.degraded_reason},
                )
                return 0

            try:
                flushed = await self._manager.flush_active()
            except Exception:
                logger.error("Unexpected error during autosave", exc_info=True)
                return 0

            self.runs += 1
            self._manager.metrics.record_autosave(flushed=flushed)
            logger.debug(
                "Autosave flushed active records",
                extra={
                    "flushed": flushed,
                    "active": len(self._manager.active_records()),
                },
            )
            return flushed
