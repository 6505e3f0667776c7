"""
Progression Subsystem Bootstrap

Purpose
-------
Single entry point for building, starting and shutting down the progression
persistence subsystem from configuration.

Bootstrap Sequence
------------------
1. Load settings (YAML + env overrides) unless a ConfigManager is passed in
2. Validate store settings and the leveling curve (ConfigurationError is fatal)
3. Build the selected backend and the ProgressionManager
4. `manager.start()`: connect, reachability, schema; failures degrade, never raise
5. Optionally schedule the AutosaveTask

Shutdown Sequence
-----------------
1. Stop the autosave loop
2. `manager.stop()`: final flush of every active record, close the backend

Usage Example
-------------
>>> subsystem = await initialize_progression_subsystem()
>>> manager = subsystem.manager
>>> # ... server runs ...
>>> await shutdown_progression_subsystem(subsystem)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union

from smptweaks.core.config.config import Config
from smptweaks.core.config.errors import ConfigValidationError
from smptweaks.core.config.manager import ConfigManager
from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.exceptions import ConfigurationError
from smptweaks.core.logging.logger import LogContext, get_logger
from smptweaks.progression.autosave import AutosaveConfig, AutosaveTask
from smptweaks.progression.curve import ProgressionCurve
from smptweaks.progression.manager import ProgressionManager
from smptweaks.progression.store.factory import StoreSettings, create_store_backend
from smptweaks.progression.timestamps import TimestampCodec

logger = get_logger(__name__)


@dataclass
class ProgressionSubsystem:
    manager: ProgressionManager
    settings: StoreSettings
    autosave: Optional[AutosaveTask] = None
    autosave_task: Optional["asyncio.Task[None]"] = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)


def build_curve(config: ConfigManager) -> ProgressionCurve:
    try:
        return ProgressionCurve(
            base_xp=config.get_int("server_levels.base_xp", 100),
            growth_xp=config.get_int("server_levels.growth_xp", 50),
        )
    except (ConfigValidationError, ValueError) as exc:
        raise ConfigurationError("server_levels", str(exc)) from exc


def build_manager(
    config: ConfigManager,
    settings: StoreSettings,
    data_dir: Union[str, Path],
    metrics: Optional[StoreMetrics] = None,
) -> ProgressionManager:
    """Wire backend, curve and gameplay tunables into a (not yet started) manager."""
    metrics = metrics or StoreMetrics()
    try:
        multiplier = config.get_float("xp_multiplier", 1.0)
        cooldown_hours = config.get_float("rewards.cooldown_hours", 24)
    except ConfigValidationError as exc:
        raise ConfigurationError("xp_multiplier", str(exc)) from exc
    if multiplier < 0:
        raise ConfigurationError("xp_multiplier", f"cannot be negative, got {multiplier}")
    if cooldown_hours < 0:
        raise ConfigurationError("rewards.cooldown_hours", f"cannot be negative, got {cooldown_hours}")

    return ProgressionManager(
        create_store_backend(settings, data_dir, metrics),
        curve=build_curve(config),
        codec=TimestampCodec(settings.timestamp_zone),
        xp_multiplier=multiplier,
        reward_cooldown=timedelta(hours=cooldown_hours),
        metrics=metrics,
    )


async def initialize_progression_subsystem(
    config: Optional[ConfigManager] = None,
    *,
    data_dir: Optional[Union[str, Path]] = None,
    start_autosave: bool = True,
) -> ProgressionSubsystem:
    """
    Build and start the progression subsystem.

    Raises
    ------
    ConfigurationError
        If the settings are invalid. Store connectivity problems do not
        raise; the returned manager is degraded instead.
    """
    async with LogContext(component="progression", operation="bootstrap"):
        logger.info("Initializing progression subsystem", extra={"config": Config.summary()})

        if config is None:
            config = ConfigManager(Config.CONFIG_FILE).load()

        settings = StoreSettings.from_config(config)
        manager = build_manager(config, settings, data_dir if data_dir is not None else Config.DATA_DIR)
        await manager.start()

        subsystem = ProgressionSubsystem(manager=manager, settings=settings)

        if start_autosave:
            try:
                autosave_config = AutosaveConfig.from_config(config)
            except (ConfigValidationError, ValueError) as exc:
                await manager.stop()
                raise ConfigurationError(
                    "server_levels.autosave_interval_seconds", str(exc)
                ) from exc
            subsystem.autosave = AutosaveTask(manager, autosave_config.interval_seconds)
            subsystem.autosave_task = asyncio.create_task(
                subsystem.autosave.run_forever(stop_event=subsystem.stop_event),
                name="smptweaks-autosave",
            )

        logger.info(
            "Progression subsystem initialized",
            extra={
                "store": settings.describe(),
                "degraded": manager.degraded,
                "degraded_reason": manager.degraded_reason,
                "autosave": start_autosave,
            },
        )
        return subsystem


async def shutdown_progression_subsystem(subsystem: ProgressionSubsystem) -> None:
    """Stop autosave, flush active records and close the store. Never raises."""
    async with LogContext(component="progression", operation="shutdown"):
        logger.info("Shutting down progression subsystem")

        subsystem.stop_event.set()
        if subsystem.autosave_task is not None:
            try:
                await subsystem.autosave_task
            except Exception:
                logger.error("Autosave task ended with an error", exc_info=True)
            subsystem.autosave_task = None

        flushed = await subsystem.manager.stop()
        logger.info("Progression subsystem shutdown complete", extra={"flushed": flushed})
