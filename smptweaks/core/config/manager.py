"""
ConfigManager: YAML-backed settings access for SMPtweaks.

Purpose
-------
- Provide hierarchical, dot-notation access to plugin settings
  (e.g. ``"store.pool_size"``, ``"server_levels.base_xp"``).
- Back settings with built-in defaults, the YAML settings file and
  ``STORE_*`` environment overrides, in increasing precedence.

Responsibilities
----------------
- Load and deep-merge the settings file over ``DEFAULTS``.
- Overlay environment overrides for the store section so credentials can
  stay out of the file.
- Coerce values on read with typed accessors that raise
  ``ConfigValidationError``.

Key Design Decisions
--------------------
- Instances, not class state: tests and embedding hosts construct their own
  manager from a path and an environment mapping.
- A missing settings file is not an error (defaults apply); an unreadable
  or malformed one is, via ``ConfigInitializationError``.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple, Union

import yaml

from smptweaks.core.config.errors import (
    ConfigInitializationError,
    ConfigValidationError,
)
from smptweaks.core.logging.logger import get_logger

logger = get_logger(__name__)


DEFAULTS: Dict[str, Any] = {
    "store": {
        "kind": "embedded",
        "table_name": "smptweaks_player",
        "file_name": "smptweaks.db",
        "driver": "mysql",
        "host": "localhost",
        "port": None,
        "database": "smptweaks",
        "username": "",
        "password": "",
        "pool_size": 10,
        "acquire_timeout_seconds": None,
        "connect_timeout_seconds": 10,
        "timestamp_zone": "utc",
    },
    "server_levels": {
        "base_xp": 100,
        "growth_xp": 50,
        "autosave_interval_seconds": 300,
    },
    "xp_multiplier": 1.0,
    "rewards": {
        "cooldown_hours": 24,
    },
}

# env var -> (dot key, coercion)
ENV_OVERRIDES: Dict[str, Tuple[str, type]] = {
    "STORE_KIND": ("store.kind", str),
    "STORE_TABLE_NAME": ("store.table_name", str),
    "STORE_FILE_NAME": ("store.file_name", str),
    "STORE_DRIVER": ("store.driver", str),
    "STORE_HOST": ("store.host", str),
    "STORE_PORT": ("store.port", int),
    "STORE_DATABASE": ("store.database", str),
    "STORE_USERNAME": ("store.username", str),
    "STORE_PASSWORD": ("store.password", str),
    "STORE_POOL_SIZE": ("store.pool_size", int),
    "STORE_ACQUIRE_TIMEOUT_SECONDS": ("store.acquire_timeout_seconds", float),
    "STORE_CONNECT_TIMEOUT_SECONDS": ("store.connect_timeout_seconds", float),
    "STORE_TIMESTAMP_ZONE": ("store.timestamp_zone", str),
}

_MISSING = object()


class ConfigManager:
    """
    Settings access with dot notation.

    Usage
    -----
    >>> cfg = ConfigManager(Path("config/config.yml")).load()
    >>> cfg.get("store.kind")
    'embedded'
    >>> cfg.get_int("server_levels.base_xp")
    100
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.path: Optional[Path] = Path(path) if path is not None else None
        self._environ: Mapping[str, str] = environ if environ is not None else os.environ
        self._data: Dict[str, Any] = copy.deepcopy(DEFAULTS)
        self._loaded = False
        self._env_overrides_applied: Dict[str, str] = {}

    # =========================================================================
    # LOADING
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: Mapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = value

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ConfigManager":
        """Build a manager from an in-memory mapping (tests, embedding hosts)."""
        manager = cls(path=None, environ=environ if environ is not None else {})
        cls._deep_merge_dict(manager._data, copy.deepcopy(dict(data)))
        manager._apply_env_overrides()
        manager._loaded = True
        return manager

    def load(self) -> "ConfigManager":
        """
        Load the settings file and environment overrides (idempotent).

        Raises
        ------
        ConfigInitializationError
            If the file exists but cannot be read or is not a YAML mapping.
        """
        if self._loaded:
            return self

        if self.path is None or not self.path.exists():
            logger.warning(
                "Settings file not found; using built-in defaults",
                extra={"config_file": str(self.path) if self.path else None},
            )
        else:
            try:
                with self.path.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.error(
                    "Failed to load settings file",
                    extra={
                        "config_file": str(self.path),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                raise ConfigInitializationError(
                    f"Cannot read settings file {self.path}"
                ) from exc

            if isinstance(data, dict):
                self._deep_merge_dict(self._data, data)
                logger.debug(
                    "Loaded settings file",
                    extra={"config_file": str(self.path), "top_keys": sorted(data)},
                )
            elif data is not None:
                raise ConfigInitializationError(
                    f"Settings file {self.path} must contain a mapping, "
                    f"got {type(data).__name__}"
                )

        self._apply_env_overrides()
        self._loaded = True

        logger.info(
            "Settings loaded",
            extra={
                "config_file": str(self.path) if self.path else None,
                "env_overrides": sorted(self._env_overrides_applied),
            },
        )
        return self

    def _apply_env_overrides(self) -> None:
        for env_key, (dot_key, coerce) in ENV_OVERRIDES.items():
            raw = self._environ.get(env_key)
            if raw is None or raw == "":
                continue
            try:
                value = coerce(raw)
            except ValueError as exc:
                raise ConfigValidationError(
                    f"{env_key}={raw!r} is not a valid {coerce.__name__}"
                ) from exc
            self._set(dot_key, value)
            self._env_overrides_applied[env_key] = dot_key

    def _set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a settings value by dot-notation path.

        Examples
        --------
        >>> cfg.get("store.table_name")
        'smptweaks_player'
        >>> cfg.get("rewards.missing", 0)
        0
        """
        if not self._loaded:
            logger.warning("ConfigManager accessed before load(); loading now")
            self.load()

        value: Any = self._data
        for part in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(part, _MISSING)
            if value is _MISSING:
                return default
        return default if value is None else value

    def get_int(self, key: str, default: Any = None) -> int:
        value = self.get(key, default)
        if isinstance(value, bool):
            raise ConfigValidationError(f"{key} must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigValidationError(
                f"{key} must be an integer, got {value!r}"
            ) from exc

    def get_float(self, key: str, default: Any = None) -> float:
        value = self.get(key, default)
        if isinstance(value, bool):
            raise ConfigValidationError(f"{key} must be a number, got {value!r}")
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigValidationError(f"{key} must be a number, got {value!r}") from exc

    def get_optional_float(self, key: str) -> Optional[float]:
        if self.get(key) is None:
            return None
        return self.get_float(key)

    def get_str(self, key: str, default: Any = None) -> str:
        value = self.get(key, default)
        if value is None:
            raise ConfigValidationError(f"{key} is required")
        return str(value)

    def as_dict(self) -> Dict[str, Any]:
        """Deep copy of the merged settings with the password masked."""
        snapshot = copy.deepcopy(self._data)
        store = snapshot.get("store")
        if isinstance(store, dict) and store.get("password"):
            store["password"] = "***"
        return snapshot


__all__ = ["ConfigManager", "DEFAULTS", "ENV_OVERRIDES"]
