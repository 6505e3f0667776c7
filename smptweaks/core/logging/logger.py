"""
SMPtweaks Logging Subsystem

Purpose
-------
One logging stack for the progression subsystem. Database calls run on the
same event loop as gameplay callbacks, so handlers never write from the
caller's task: records go through a bounded queue to a listener thread.

Sinks
-----
- Console: JSON in production, colored text on a dev terminal, plain text
  otherwise.
- ``LOGS_DIR/smptweaks_daily.json.log``: JSON, rotated at UTC midnight with
  one backup (optional, see ``setup_logging(file_logging=...)``).

Context
-------
``LogContext`` scopes player_id / component / operation / correlation_id in a
ContextVar. Nested contexts inherit the outer values, so every line logged
during one ``join`` or ``stop`` shares a correlation id. ``ContextFilter``
copies the context onto each record before it is queued.

Structured extras passed with ``extra={...}`` end up under ``"extra"`` in
JSON output; keys containing ``password`` are masked.

Importing this module configures nothing; bootstrap (or the host) calls
``setup_logging()`` once and ``shutdown_logging()`` on exit.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

_log_context: ContextVar[Dict[str, Any]] = ContextVar("smptweaks_log_context", default={})

CONTEXT_FIELDS = ("player_id", "component", "operation", "correlation_id")
MISSING = "N/A"

# Attributes every LogRecord carries; anything else came in through `extra`.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

_NOISY_LOGGERS = ("aiosqlite", "aiomysql", "asyncio", "sqlalchemy.engine", "sqlalchemy.pool")


# ============================================================================
# Settings
# ============================================================================


@dataclass(frozen=True)
class LoggerConfig:
    """Logging settings resolved from `Config` at setup time."""

    level: int = logging.INFO
    environment: str = "development"
    logs_dir: Path = Path("logs")
    queue_max_size: int = 10_000
    json_console: bool = False
    colors: bool = False

    console_format: str = "%(asctime)s | %(levelname)-8s | %(component)-10s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_name: str = "smptweaks_daily.json.log"
    file_backups: int = 1

    @classmethod
    def from_config(cls) -> "LoggerConfig":
        # config.manager logs through this module
        from smptweaks.core.config.config import Config

        environment = str(Config.ENVIRONMENT).lower()
        production = environment == "production"
        json_console = production if Config.LOG_JSON is None else bool(Config.LOG_JSON)
        level = logging.getLevelName(str(Config.LOG_LEVEL).upper())
        return cls(
            level=level if isinstance(level, int) else logging.INFO,
            environment=environment,
            logs_dir=Path(Config.LOGS_DIR).resolve(),
            queue_max_size=int(Config.LOG_QUEUE_SIZE),
            json_console=json_console,
            colors=(
                not json_console
                and bool(Config.LOG_COLORS)
                and sys.stdout.isatty()
            ),
        )


@dataclass(frozen=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_max_size: int
    records_enqueued: int
    records_dropped: int
    listener_errors: int


@dataclass
class _LoggingState:
    config: Optional[LoggerConfig] = None
    queue: Optional["queue.Queue[logging.LogRecord]"] = None
    handler: Optional[QueueHandler] = None
    listener: Optional[QueueListener] = None
    sinks: List[logging.Handler] = field(default_factory=list)
    enqueued: int = 0
    dropped: int = 0
    listener_errors: int = 0

    @property
    def initialized(self) -> bool:
        return self.handler is not None


_state = _LoggingState()


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the current LogContext onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get({})
        for name in CONTEXT_FIELDS:
            setattr(record, name, context.get(name) or MISSING)
        if record.component == MISSING:
            record.component = record.name.partition(".")[0]
        return True


def _mask(key: str, value: Any) -> Any:
    if "password" in key.lower() and value:
        return "***"
    if isinstance(value, dict):
        return {k: _mask(str(k), v) for k, v in value.items()}
    return value


class JSONFormatter(logging.Formatter):
    """One JSON object per line; context at top level, extras nested."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, MISSING) not in (None, MISSING)
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exception"] = record.exc_text

        extra = {
            key: _mask(key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    _COLORS = {
        logging.DEBUG: "\033[90m",
        logging.INFO: "\033[94m",
        logging.WARNING: "\033[93m",
        logging.ERROR: "\033[91m",
        logging.CRITICAL: "\033[1;91m",
    }
    _RESET = "\033[0m"

    def formatMessage(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().formatMessage(record)
        color = self._COLORS.get(record.levelno)
        return f"{color}{line}{self._RESET}" if color else line


# ============================================================================
# Queue plumbing
# ============================================================================


class SMPtweaksQueueHandler(QueueHandler):
    """Never blocks the caller; drops records when the queue is full."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _state.dropped += 1
            if _state.dropped == 1 or _state.dropped % 1000 == 0:
                sys.stderr.write(
                    f"smptweaks: log queue full, {_state.dropped} record(s) dropped\n"
                )
        else:
            _state.enqueued += 1


class SMPtweaksQueueListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _state.listener_errors += 1
        sys.stderr.write(f"smptweaks: log handler failed for {record.name}\n")


def _console_sink(config: LoggerConfig) -> logging.Handler:
    sink = logging.StreamHandler(sys.stdout)
    if config.json_console:
        sink.setFormatter(JSONFormatter())
    else:
        formatter_cls = ColoredFormatter if config.colors else logging.Formatter
        sink.setFormatter(formatter_cls(fmt=config.console_format, datefmt=config.date_format))
    return sink


def _file_sink(config: LoggerConfig) -> logging.Handler:
    config.logs_dir.mkdir(parents=True, exist_ok=True)
    sink = TimedRotatingFileHandler(
        filename=str(config.logs_dir / config.file_name),
        when="midnight",
        backupCount=config.file_backups,
        encoding="utf-8",
        utc=True,
    )
    sink.setFormatter(JSONFormatter())
    return sink


# ============================================================================
# Lifecycle
# ============================================================================


def setup_logging(file_logging: bool = True, config: Optional[LoggerConfig] = None) -> None:
    """
    Install the queue handler on the root logger. Calling it again is a no-op
    until `shutdown_logging()` runs.

    Args:
        file_logging: Also write the daily JSON file under LOGS_DIR.
        config: Explicit settings; resolved from `Config` when omitted.
    """
    if _state.initialized:
        return

    config = config or LoggerConfig.from_config()
    sinks = [_console_sink(config)]
    if file_logging:
        sinks.append(_file_sink(config))
    for sink in sinks:
        sink.setLevel(config.level)

    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(config.queue_max_size)
    listener = SMPtweaksQueueListener(log_queue, *sinks, respect_handler_level=True)
    handler = SMPtweaksQueueHandler(log_queue)
    handler.setLevel(config.level)
    handler.addFilter(ContextFilter())

    _state.config = config
    _state.queue = log_queue
    _state.sinks = sinks
    _state.listener = listener
    _state.handler = handler
    _state.enqueued = _state.dropped = _state.listener_errors = 0

    listener.start()
    root = logging.getLogger()
    root.setLevel(config.level)
    root.addHandler(handler)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": config.environment,
            "log_level": logging.getLevelName(config.level),
            "json_console": config.json_console,
            "log_file": str(config.logs_dir / config.file_name) if file_logging else None,
        },
    )


def shutdown_logging() -> None:
    """Detach the queue handler, drain the queue and close every sink."""
    if not _state.initialized:
        return

    logging.getLogger(__name__).info(
        "Shutting down logging",
        extra={"records_enqueued": _state.enqueued, "records_dropped": _state.dropped},
    )

    handler, listener = _state.handler, _state.listener
    logging.getLogger().removeHandler(handler)
    handler.close()
    if listener is not None:
        listener.stop()
    for sink in _state.sinks:
        sink.flush()
        sink.close()

    _state.handler = None
    _state.listener = None
    _state.queue = None
    _state.sinks = []


def get_logging_health() -> LoggingHealth:
    log_queue = _state.queue
    return LoggingHealth(
        initialized=_state.initialized,
        queue_size=log_queue.qsize() if log_queue is not None else 0,
        queue_max_size=log_queue.maxsize if log_queue is not None else 0,
        records_enqueued=_state.enqueued,
        records_dropped=_state.dropped,
        listener_errors=_state.listener_errors,
    )


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


def _merged_context(
    base: Dict[str, Any],
    player_id: Optional[Any],
    component: Optional[str],
    operation: Optional[str],
    correlation_id: Optional[str],
    extra: Dict[str, Any],
) -> Dict[str, Any]:
    merged = {**base, **extra}
    if player_id is not None:
        merged["player_id"] = str(player_id)
    if component is not None:
        merged["component"] = component
    if operation is not None:
        merged["operation"] = operation
    if correlation_id:
        merged["correlation_id"] = correlation_id
    return merged


class LogContext:
    """
    Scope log context for a block of work; usable with `with` and `async with`.

    Example
    -------
    >>> async with LogContext(player_id=pid, operation="join"):
    ...     await manager.load(pid)
    """

    def __init__(
        self,
        player_id: Optional[Any] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        self.context = _merged_context(
            _log_context.get({}), player_id, component, operation, correlation_id, extra
        )
        self.context.setdefault("correlation_id", uuid.uuid4().hex[:8])
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def set_log_context(
    player_id: Optional[Any] = None,
    component: Optional[str] = None,
    operation: Optional[str] = None,
    correlation_id: Optional[str] = None,
    **extra: Any,
) -> None:
    """Update the current context in place (until the task ends or it is cleared)."""
    _log_context.set(
        _merged_context(
            _log_context.get({}), player_id, component, operation, correlation_id, extra
        )
    )


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get({}))


def clear_log_context() -> None:
    _log_context.set({})
