"""
Typed results returned by ProgressionManager.

Gameplay callers never receive persistence exceptions. Every manager call
returns a `StoreResult` whose `value` is always usable (a safe default when
the store could not answer) and whose `degraded_reason` explains why.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from smptweaks.core.exceptions import ProgressionStoreException

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    value: T
    degraded_reason: Optional[str] = None
    error: Optional[ProgressionStoreException] = None

    @property
    def ok(self) -> bool:
        return self.degraded_reason is None

    @classmethod
    def success(cls, value: T) -> "StoreResult[T]":
        return cls(value=value)

    @classmethod
    def degraded(
        cls,
        value: T,
        reason: str,
        error: Optional[ProgressionStoreException] = None,
    ) -> "StoreResult[T]":
        return cls(value=value, degraded_reason=reason, error=error)
