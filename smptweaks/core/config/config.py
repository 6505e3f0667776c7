"""
Process-level settings read from the environment.

These are the values needed before the YAML settings file can be read:
which environment we run in, how to log, and where the data, log and
settings files live. A ``.env`` file in the working directory is loaded
first; real environment variables win over it.

Variables
---------
ENVIRONMENT      development | testing | staging | production
DEBUG            extra diagnostics (default off)
LOG_LEVEL        root log level (default INFO)
LOG_JSON         JSON console output; unset means "production only"
LOG_COLORS       ANSI colors on a dev terminal (default on)
LOG_QUEUE_SIZE   bounded log queue, at least 100 (default 10000)
LOGS_DIR         default <project>/logs
DATA_DIR         embedded store directory, default <project>/data
CONFIG_FILE      default <project>/config/config.yml

Bad values never stop the process: they are logged and the default is used.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


class Environment(Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: str) -> "Environment":
        """Unknown names fall back to DEVELOPMENT."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            # structured logging is not set up this early
            logging.warning("Unknown environment %r, defaulting to development", value)
            return cls.DEVELOPMENT


class _EnvReader:
    """Typed getters over os.environ that remember where each value came from."""

    def __init__(self) -> None:
        self.from_env: List[str] = []
        self.defaulted: List[str] = []
        self.rejected: Dict[str, str] = {}

    def _raw(self, key: str) -> Optional[str]:
        raw = os.environ.get(key)
        if raw is None or not raw.strip():
            self.defaulted.append(key)
            return None
        return raw.strip()

    def _reject(self, key: str, raw: str, expected: str, default: Any) -> Any:
        reason = f"{key}={raw!r} is not {expected}; using {default!r}"
        logging.warning(reason)
        self.rejected[key] = reason
        return default

    def text(self, key: str, default: str) -> str:
        raw = self._raw(key)
        if raw is None:
            return default
        self.from_env.append(key)
        return raw

    def flag(self, key: str, default: Optional[bool]) -> Optional[bool]:
        raw = self._raw(key)
        if raw is None:
            return default
        lowered = raw.lower()
        if lowered not in _TRUE | _FALSE:
            return self._reject(key, raw, "a boolean", default)
        self.from_env.append(key)
        return lowered in _TRUE

    def integer(self, key: str, default: int, minimum: Optional[int] = None) -> int:
        raw = self._raw(key)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            return self._reject(key, raw, "an integer", default)
        if minimum is not None and value < minimum:
            return self._reject(key, raw, f"at least {minimum}", default)
        self.from_env.append(key)
        return value

    def path(self, key: str, default: Path) -> Path:
        raw = self._raw(key)
        if raw is None:
            return default
        self.from_env.append(key)
        return Path(raw).expanduser()

    def summary(self) -> Dict[str, Any]:
        return {
            "from_environment": sorted(self.from_env),
            "defaulted": sorted(self.defaulted),
            "rejected": dict(self.rejected),
        }


class Config:
    """
    Class-level settings; never instantiated.

    >>> Config.LOG_LEVEL
    'INFO'
    """

    PROJECT_ROOT = Path(__file__).resolve().parents[3]

    ENVIRONMENT: str = Environment.DEVELOPMENT.value
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: Optional[bool] = None
    LOG_COLORS: bool = True
    LOG_QUEUE_SIZE: int = 10000

    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    DATA_DIR: Path = PROJECT_ROOT / "data"
    CONFIG_FILE: Path = PROJECT_ROOT / "config" / "config.yml"

    _reader: Optional[_EnvReader] = None

    @classmethod
    def load(cls) -> None:
        """(Re)read the environment. Runs at import; tests call it after monkeypatching."""
        env = _EnvReader()

        cls.ENVIRONMENT = Environment.from_string(env.text("ENVIRONMENT", "development")).value
        cls.DEBUG = bool(env.flag("DEBUG", False))
        cls.LOG_LEVEL = env.text("LOG_LEVEL", "INFO").upper()
        cls.LOG_JSON = env.flag("LOG_JSON", None)
        cls.LOG_COLORS = bool(env.flag("LOG_COLORS", True))
        cls.LOG_QUEUE_SIZE = env.integer("LOG_QUEUE_SIZE", 10000, minimum=100)

        cls.LOGS_DIR = env.path("LOGS_DIR", cls.PROJECT_ROOT / "logs")
        cls.DATA_DIR = env.path("DATA_DIR", cls.PROJECT_ROOT / "data")
        cls.CONFIG_FILE = env.path("CONFIG_FILE", cls.PROJECT_ROOT / "config" / "config.yml")

        cls._reader = env

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT == Environment.PRODUCTION.value

    @classmethod
    def is_testing(cls) -> bool:
        return cls.ENVIRONMENT == Environment.TESTING.value

    @classmethod
    def summary(cls) -> Dict[str, Any]:
        """Loaded values for the startup log line."""
        data: Dict[str, Any] = {
            "environment": cls.ENVIRONMENT,
            "debug": cls.DEBUG,
            "log_level": cls.LOG_LEVEL,
            "logs_dir": str(cls.LOGS_DIR),
            "data_dir": str(cls.DATA_DIR),
            "config_file": str(cls.CONFIG_FILE),
        }
        if cls._reader is not None:
            data["sources"] = cls._reader.summary()
        return data


Config.load()
