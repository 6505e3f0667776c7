"""
Store settings and backend selection.

`StoreSettings.from_config()` turns the ``store.*`` section of the settings
file into a validated, immutable snapshot; `create_store_backend()` builds the
matching backend. Invalid values raise `ConfigurationError`: a deployment
mistake should stop bootstrap rather than silently run degraded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from smptweaks.core.config.errors import ConfigValidationError
from smptweaks.core.config.manager import ConfigManager
from smptweaks.core.database.metrics import StoreMetrics
from smptweaks.core.exceptions import ConfigurationError
from smptweaks.core.logging.logger import get_logger
from smptweaks.progression.store.embedded import DEFAULT_FILE_NAME, EmbeddedFileStore
from smptweaks.progression.store.networked import DRIVERS, NetworkedStore
from smptweaks.progression.store.protocol import StoreBackend
from smptweaks.progression.store.schema import DEFAULT_TABLE_NAME
from smptweaks.progression.timestamps import VALID_ZONES, TimestampCodec

logger = get_logger(__name__)

STORE_KINDS = ("embedded", "networked")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,63}$")


@dataclass(frozen=True)
class StoreSettings:
    kind: str = "embedded"
    table_name: str = DEFAULT_TABLE_NAME
    file_name: str = DEFAULT_FILE_NAME
    driver: str = "mysql"
    host: str = "localhost"
    port: Optional[int] = None
    database: str = "smptweaks"
    username: str = ""
    password: str = ""
    pool_size: int = 10
    acquire_timeout_seconds: Optional[float] = None
    connect_timeout_seconds: float = 10
    timestamp_zone: str = "utc"

    def __post_init__(self) -> None:
        if self.kind not in STORE_KINDS:
            raise ConfigurationError("store.kind", f"must be one of {STORE_KINDS}, got {self.kind!r}")
        if not _IDENTIFIER.match(self.table_name):
            raise ConfigurationError(
                "store.table_name", f"{self.table_name!r} is not a valid table identifier"
            )
        if not self.file_name or Path(self.file_name).name != self.file_name:
            raise ConfigurationError("store.file_name", f"{self.file_name!r} must be a bare file name")
        if self.driver not in DRIVERS:
            raise ConfigurationError(
                "store.driver", f"must be one of {sorted(DRIVERS)}, got {self.driver!r}"
            )
        if self.port is not None and not 0 < self.port < 65536:
            raise ConfigurationError("store.port", f"{self.port} is not a valid port")
        if self.pool_size < 1:
            raise ConfigurationError("store.pool_size", f"must be >= 1, got {self.pool_size}")
        if self.acquire_timeout_seconds is not None and self.acquire_timeout_seconds <= 0:
            raise ConfigurationError(
                "store.acquire_timeout_seconds",
                f"must be positive, got {self.acquire_timeout_seconds}",
            )
        if self.connect_timeout_seconds <= 0:
            raise ConfigurationError(
                "store.connect_timeout_seconds",
                f"must be positive, got {self.connect_timeout_seconds}",
            )
        if self.timestamp_zone not in VALID_ZONES:
            raise ConfigurationError(
                "store.timestamp_zone", f"must be one of {VALID_ZONES}, got {self.timestamp_zone!r}"
            )

    @classmethod
    def from_config(cls, config: ConfigManager) -> "StoreSettings":
        """
        Read and validate the ``store`` section.

        Raises:
            ConfigurationError: A value has the wrong type or is out of range.
        """
        try:
            port = config.get("store.port")
            return cls(
                kind=config.get_str("store.kind", "embedded").lower(),
                table_name=config.get_str("store.table_name", DEFAULT_TABLE_NAME),
                file_name=config.get_str("store.file_name", DEFAULT_FILE_NAME),
                driver=config.get_str("store.driver", "mysql").lower(),
                host=config.get_str("store.host", "localhost"),
                port=config.get_int("store.port") if port is not None else None,
                database=config.get_str("store.database", "smptweaks"),
                username=str(config.get("store.username", "")),
                password=str(config.get("store.password", "")),
                pool_size=config.get_int("store.pool_size", 10),
                acquire_timeout_seconds=config.get_optional_float("store.acquire_timeout_seconds"),
                connect_timeout_seconds=config.get_float("store.connect_timeout_seconds", 10),
                timestamp_zone=config.get_str("store.timestamp_zone", "utc").lower(),
            )
        except ConfigValidationError as exc:
            raise ConfigurationError("store", str(exc)) from exc

    def describe(self) -> Dict[str, Any]:
        """Loggable view without credentials."""
        summary: Dict[str, Any] = {
            "kind": self.kind,
            "table_name": self.table_name,
            "pool_size": self.pool_size,
            "timestamp_zone": self.timestamp_zone,
        }
        if self.kind == "embedded":
            summary["file_name"] = self.file_name
        else:
            summary.update(
                driver=self.driver, host=self.host, port=self.port, database=self.database
            )
        return summary


def create_store_backend(
    settings: StoreSettings,
    data_dir: Union[str, Path],
    metrics: Optional[StoreMetrics] = None,
) -> StoreBackend:
    """Build the backend selected by `settings.kind`."""
    codec = TimestampCodec(settings.timestamp_zone)
    metrics = metrics or StoreMetrics()

    if settings.kind == "networked":
        backend: StoreBackend = NetworkedStore(
            driver=settings.driver,
            host=settings.host,
            port=settings.port,
            database=settings.database,
            username=settings.username,
            password=settings.password,
            table_name=settings.table_name,
            pool_size=settings.pool_size,
            acquire_timeout=settings.acquire_timeout_seconds,
            connect_timeout=settings.connect_timeout_seconds,
            codec=codec,
            metrics=metrics,
        )
    else:
        backend = EmbeddedFileStore(
            data_dir,
            file_name=settings.file_name,
            table_name=settings.table_name,
            pool_size=settings.pool_size,
            acquire_timeout=settings.acquire_timeout_seconds,
            codec=codec,
            metrics=metrics,
        )

    logger.info("Store backend selected", extra=settings.describe())
    return backend
