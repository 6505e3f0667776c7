"""
Progression record domain model for SMPtweaks.

Purpose
-------
In-memory representation of one player's persisted progression state
(level, accumulated XP, display preference, reward cooldown timestamps)
plus the transient `existed_before_load` flag used by the live view.

This is separate from the table definition in `store.schema`; backends map
rows into records and records back into column values.

Responsibilities
----------------
- Validate field values on construction (positive level, non-negative XP,
  known display mode, non-empty display name)
- Apply XP gains and recompute the level from a ProgressionCurve
- Provide the column mapping written by upserts

Non-Responsibilities
--------------------
- Persistence (handled by StoreBackend implementations)
- XP curve math (handled by ProgressionCurve)

Usage Example
-------------
>>> record = ProgressionRecord.fresh(player_id, "Steve")
>>> record.add_xp(150, DEFAULT_CURVE)
1
>>> record.level
2
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

if TYPE_CHECKING:
    from smptweaks.progression.curve import ProgressionCurve


PlayerId = Union[uuid.UUID, str]


class RecordValidationError(ValueError):
    """Raised when a ProgressionRecord field violates its invariant."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class XpDisplayMode(IntEnum):
    """How XP progress is rendered to the player."""

    FRACTION = 0
    PERCENTAGE = 1

    def next(self) -> "XpDisplayMode":
        members = list(XpDisplayMode)
        return members[(members.index(self) + 1) % len(members)]

    @classmethod
    def parse(cls, value: Any) -> "XpDisplayMode":
        try:
            return cls(int(value))
        except (TypeError, ValueError) as exc:
            raise RecordValidationError(
                f"unknown xp display mode {value!r}", field="xp_display_mode"
            ) from exc


class TimestampField(str, Enum):
    """Cooldown timestamp columns; values are the stored column names."""

    LAST_REWARD_CLAIMED = "last_reward_claimed"
    LAST_SPECIAL_DROP = "last_special_drop"


def coerce_player_id(value: PlayerId) -> uuid.UUID:
    """Accept a UUID or its string form; anything else is a validation error."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError) as exc:
        raise RecordValidationError(
            f"invalid player id {value!r}", field="player_id"
        ) from exc


@dataclass
class ProgressionRecord:
    """
    One player's progression state.

    Attributes
    ----------
    player_id : uuid.UUID
        Primary key; strings are coerced on construction.
    display_name : str
        Last-known player name (best-effort, not unique).
    level : int
        Current level, >= 1.
    total_xp : int
        Accumulated experience, >= 0.
    xp_display_mode : XpDisplayMode
        Rendering preference for progress messages.
    last_reward_claimed_at, last_special_drop_at : Optional[datetime]
        Cooldown timestamps; None means never.
    existed_before_load : bool
        True when the record was read from, or has been written to, the store.
        Never persisted and ignored by equality.
    """

    player_id: uuid.UUID
    display_name: str
    level: int = 1
    total_xp: int = 0
    xp_display_mode: XpDisplayMode = XpDisplayMode.FRACTION
    last_reward_claimed_at: Optional[datetime] = None
    last_special_drop_at: Optional[datetime] = None
    existed_before_load: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        self.player_id = coerce_player_id(self.player_id)
        if not isinstance(self.display_name, str) or not self.display_name.strip():
            raise RecordValidationError("display_name cannot be empty", field="display_name")
        if isinstance(self.level, bool) or not isinstance(self.level, int) or self.level < 1:
            raise RecordValidationError(f"level must be >= 1, got {self.level!r}", field="level")
        if (
            isinstance(self.total_xp, bool)
            or not isinstance(self.total_xp, int)
            or self.total_xp < 0
        ):
            raise RecordValidationError(
                f"total_xp must be >= 0, got {self.total_xp!r}", field="total_xp"
            )
        self.xp_display_mode = XpDisplayMode.parse(self.xp_display_mode)

    @classmethod
    def fresh(cls, player_id: PlayerId, display_name: str) -> "ProgressionRecord":
        """Defaults for a player the store has never seen."""
        return cls(player_id=coerce_player_id(player_id), display_name=display_name)

    def add_xp(self, amount: int, curve: "ProgressionCurve") -> int:
        """
        Add experience and recompute the level.

        Returns:
            Number of levels gained (0 when the level did not change).
        """
        if amount < 0:
            raise RecordValidationError(f"xp amount cannot be negative, got {amount}", field="total_xp")
        previous = self.level
        self.total_xp += amount
        self.level = curve.level_for_total_xp(self.total_xp)
        return max(0, self.level - previous)

    def cycle_display_mode(self) -> XpDisplayMode:
        self.xp_display_mode = self.xp_display_mode.next()
        return self.xp_display_mode

    def set_timestamp(self, which: TimestampField, value: datetime) -> None:
        if which is TimestampField.LAST_REWARD_CLAIMED:
            self.last_reward_claimed_at = value
        else:
            self.last_special_drop_at = value

    def persisted_values(self) -> Dict[str, Any]:
        """Column values written by upsert; timestamps are written separately."""
        return {
            "player_id": str(self.player_id),
            "display_name": self.display_name,
            "level": self.level,
            "total_xp": self.total_xp,
            "xp_display_mode": int(self.xp_display_mode),
        }
