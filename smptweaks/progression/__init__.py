"""
Player progression persistence.

Entry points for gameplay code are ProgressionManager (load, save, reward
and special-drop cooldowns, live view of connected players) and the pure
ProgressionCurve functions.
"""

from smptweaks.progression.curve import (
    DEFAULT_CURVE,
    ProgressionCurve,
    apply_multiplier,
    level_for_total_xp,
    xp_into_current_level,
)
from smptweaks.progression.manager import ProgressionManager
from smptweaks.progression.record import (
    ProgressionRecord,
    RecordValidationError,
    TimestampField,
    XpDisplayMode,
)
from smptweaks.progression.result import StoreResult
from smptweaks.progression.timestamps import EPOCH, TimestampCodec

__all__ = [
    "ProgressionManager",
    "ProgressionRecord",
    "RecordValidationError",
    "XpDisplayMode",
    "TimestampField",
    "ProgressionCurve",
    "DEFAULT_CURVE",
    "level_for_total_xp",
    "xp_into_current_level",
    "apply_multiplier",
    "StoreResult",
    "TimestampCodec",
    "EPOCH",
]
