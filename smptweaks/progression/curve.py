"""
SMPtweaks Progression Curve

Purpose
-------
Pure calculation functions for server-side leveling: converting between
total accumulated XP and (level, progress within level), applying XP
multipliers, and rendering progress for chat/action-bar messages.

Design Notes
------------
- Pure functions only (no side effects, no I/O, no config access)
- All parameters passed in; the curve itself is a frozen value
- XP needed to go from level L to L+1 is ``base_xp + growth_xp * (L - 1)``

Usage
-----
    from smptweaks.progression.curve import DEFAULT_CURVE, apply_multiplier

    level = DEFAULT_CURVE.level_for_total_xp(250)
    gained = apply_multiplier(100, 1.5)
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from smptweaks.progression.record import XpDisplayMode


@dataclass(frozen=True)
class ProgressionCurve:
    """
    Arithmetic leveling curve.

    Attributes
    ----------
    base_xp : int
        XP required to go from level 1 to level 2.
    growth_xp : int
        Extra XP required for each further level.

    Example:
        >>> curve = ProgressionCurve(base_xp=100, growth_xp=50)
        >>> curve.total_xp_for_level(3)
        250
        >>> curve.level_for_total_xp(249)
        2
    """

    base_xp: int = 100
    growth_xp: int = 50

    def __post_init__(self) -> None:
        if isinstance(self.base_xp, bool) or not isinstance(self.base_xp, int) or self.base_xp < 1:
            raise ValueError(f"base_xp must be a positive integer, got {self.base_xp!r}")
        if isinstance(self.growth_xp, bool) or not isinstance(self.growth_xp, int) or self.growth_xp < 0:
            raise ValueError(f"growth_xp must be a non-negative integer, got {self.growth_xp!r}")

    def xp_to_next_level(self, level: int) -> int:
        """XP needed to advance from `level` to `level + 1`."""
        level = max(1, level)
        return self.base_xp + self.growth_xp * (level - 1)

    def total_xp_for_level(self, level: int) -> int:
        """
        Total XP required to reach `level` from level 1.

        Example:
            >>> DEFAULT_CURVE.total_xp_for_level(1)
            0
            >>> DEFAULT_CURVE.total_xp_for_level(2)
            100
        """
        steps = max(1, level) - 1
        return steps * self.base_xp + self.growth_xp * steps * (steps - 1) // 2

    def level_for_total_xp(self, total_xp: int) -> int:
        """
        Highest level whose total XP requirement is covered by `total_xp`.

        Non-decreasing in `total_xp`; negative input is treated as 0.
        """
        total_xp = max(0, int(total_xp))

        # Solve growth/2 * n^2 + (base - growth/2) * n <= total_xp for n = level - 1
        if self.growth_xp == 0:
            steps = total_xp // self.base_xp
        else:
            b = self.base_xp - self.growth_xp / 2
            discriminant = b * b + 2 * self.growth_xp * total_xp
            steps = max(0, int((-b + math.sqrt(discriminant)) / self.growth_xp))

        # Float rounding can be off by one either way near boundaries
        while self.total_xp_for_level(steps + 2) <= total_xp:
            steps += 1
        while steps > 0 and self.total_xp_for_level(steps + 1) > total_xp:
            steps -= 1

        return steps + 1

    def xp_into_current_level(self, total_xp: int) -> int:
        total_xp = max(0, int(total_xp))
        return total_xp - self.total_xp_for_level(self.level_for_total_xp(total_xp))

    def progress_ratio(self, total_xp: int) -> float:
        """Fraction of the current level completed, in [0, 1)."""
        level = self.level_for_total_xp(total_xp)
        return self.xp_into_current_level(total_xp) / self.xp_to_next_level(level)

    def format_progress(self, total_xp: int, mode: XpDisplayMode = XpDisplayMode.FRACTION) -> str:
        """
        Render progress the way the player asked to see it.

        Example:
            >>> DEFAULT_CURVE.format_progress(150, XpDisplayMode.FRACTION)
            'Level 2 (50/150 XP)'
            >>> DEFAULT_CURVE.format_progress(150, XpDisplayMode.PERCENTAGE)
            'Level 2 (33%)'
        """
        level = self.level_for_total_xp(total_xp)
        if XpDisplayMode(mode) is XpDisplayMode.PERCENTAGE:
            percent = self.xp_into_current_level(total_xp) * 100 // self.xp_to_next_level(level)
            return f"Level {level} ({percent}%)"
        return (
            f"Level {level} "
            f"({self.xp_into_current_level(total_xp)}/{self.xp_to_next_level(level)} XP)"
        )

    @staticmethod
    def apply_multiplier(raw_xp: int, multiplier: float) -> int:
        """
        Scale an XP gain, rounding half up to a non-negative integer.

        Example:
            >>> ProgressionCurve.apply_multiplier(100, 1.5)
            150
            >>> ProgressionCurve.apply_multiplier(100, 0)
            0
        """
        if not math.isfinite(multiplier):
            raise ValueError(f"multiplier must be finite, got {multiplier!r}")
        if raw_xp <= 0 or multiplier <= 0:
            return 0
        return max(0, math.floor(raw_xp * multiplier + 0.5))


DEFAULT_CURVE = ProgressionCurve()


def level_for_total_xp(total_xp: int) -> int:
    return DEFAULT_CURVE.level_for_total_xp(total_xp)


def xp_into_current_level(total_xp: int) -> int:
    return DEFAULT_CURVE.xp_into_current_level(total_xp)


def apply_multiplier(raw_xp: int, multiplier: float) -> int:
    return ProgressionCurve.apply_multiplier(raw_xp, multiplier)
