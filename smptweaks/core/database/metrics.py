"""
Store Metrics - in-process counters for the progression store.

Purpose
-------
Give the pool, the backends, the manager and the autosave loop one place to
record what happened, so `snapshot()` can be logged at shutdown or exposed to
an admin command without coupling to a monitoring system.

Metric Categories
-----------------
1. Connection pool (checkouts, connect failures, acquire timeouts)
2. Operations (success/failure per operation name, with latency)
3. Degraded results handed back to gameplay callers
4. Autosave flushes

Usage Example
-------------
>>> metrics = StoreMetrics()
>>> metrics.record_checkout()
>>> metrics.record_operation("upsert", duration_ms=3.2, success=True)
>>> metrics.snapshot()["operations"]["upsert"]["success"]
1
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from smptweaks.core.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class _OperationStats:
    success: int = 0
    failure: int = 0
    total_duration_ms: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        calls = self.success + self.failure
        return {
            "success": self.success,
            "failure": self.failure,
            "avg_duration_ms": round(self.total_duration_ms / calls, 3) if calls else 0.0,
        }


@dataclass
class StoreMetrics:
    """Counters shared by one backend, its pool and its manager."""

    checkouts: int = 0
    connect_failures: int = 0
    acquire_timeouts: int = 0
    degraded_results: int = 0
    autosave_runs: int = 0
    autosave_records_flushed: int = 0
    operations: Dict[str, _OperationStats] = field(default_factory=dict)

    # ------------------------------------------------------------------------
    # Connection pool
    # ------------------------------------------------------------------------

    def record_checkout(self) -> None:
        self.checkouts += 1

    def record_connect_failure(self, *, error_type: str) -> None:
        self.connect_failures += 1
        logger.debug(
            "Store connect failure recorded",
            extra={"error_type": error_type, "connect_failures": self.connect_failures},
        )

    def record_acquire_timeout(self) -> None:
        self.acquire_timeouts += 1

    # ------------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------------

    def record_operation(self, operation: str, *, duration_ms: float, success: bool) -> None:
        stats = self.operations.setdefault(operation, _OperationStats())
        if success:
            stats.success += 1
        else:
            stats.failure += 1
        stats.total_duration_ms += duration_ms

    def record_degraded(self, operation: str) -> None:
        self.degraded_results += 1
        logger.debug(
            "Degraded store result recorded",
            extra={"store_operation": operation, "degraded_results": self.degraded_results},
        )

    # ------------------------------------------------------------------------
    # Autosave
    # ------------------------------------------------------------------------

    def record_autosave(self, *, flushed: int) -> None:
        self.autosave_runs += 1
        self.autosave_records_flushed += flushed

    def snapshot(self) -> Dict[str, Any]:
        return {
            "checkouts": self.checkouts,
            "connect_failures": self.connect_failures,
            "acquire_timeouts": self.acquire_timeouts,
            "degraded_results": self.degraded_results,
            "autosave_runs": self.autosave_runs,
            "autosave_records_flushed": self.autosave_records_flushed,
            "operations": {name: stats.as_dict() for name, stats in self.operations.items()},
        }

    def reset(self) -> None:
        self.checkouts = 0
        self.connect_failures = 0
        self.acquire_timeouts = 0
        self.degraded_results = 0
        self.autosave_runs = 0
        self.autosave_records_flushed = 0
        self.operations.clear()
