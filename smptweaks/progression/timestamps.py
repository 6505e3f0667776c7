"""
Timestamp encoding for cooldown columns.

Cooldown timestamps are stored as ``YYYY-MM-DD HH:MM:SS`` (second
precision, no zone suffix) in either UTC or server-local time. Null values,
MySQL zero-dates and missing rows all read back as the epoch sentinel, which
is always "long enough ago" for any cooldown.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from smptweaks.core.exceptions import ParseError

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
EPOCH = datetime(1970, 1, 1)

VALID_ZONES = ("utc", "local")


class TimestampCodec:
    """
    Formats, parses and produces naive second-precision timestamps.

    Example:
        >>> codec = TimestampCodec("utc")
        >>> codec.parse("2024-05-01 12:30:00.123")
        datetime.datetime(2024, 5, 1, 12, 30)
    """

    def __init__(self, zone: str = "utc") -> None:
        zone = (zone or "utc").lower()
        if zone not in VALID_ZONES:
            raise ValueError(f"timestamp zone must be one of {VALID_ZONES}, got {zone!r}")
        self.zone = zone

    def now(self) -> datetime:
        if self.zone == "utc":
            current = datetime.now(timezone.utc).replace(tzinfo=None)
        else:
            current = datetime.now()
        return current.replace(microsecond=0)

    def normalize(self, value: datetime) -> datetime:
        """Drop sub-second precision and convert aware values into the codec's zone."""
        if value.tzinfo is not None:
            if self.zone == "utc":
                value = value.astimezone(timezone.utc)
            else:
                value = value.astimezone()
            value = value.replace(tzinfo=None)
        return value.replace(microsecond=0)

    def format(self, value: datetime) -> str:
        return self.normalize(value).strftime(TIMESTAMP_FORMAT)

    def parse(self, raw: Any) -> datetime:
        """
        Leniently parse a stored timestamp.

        Accepts datetimes, ``YYYY-MM-DD HH:MM:SS`` with optional fractional
        seconds or a ``T`` separator, and MySQL zero-dates (returned as EPOCH).

        Raises:
            ParseError: When the value is not a recognizable timestamp.
        """
        if isinstance(raw, datetime):
            return self.normalize(raw)
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if not isinstance(raw, str):
            raise ParseError(raw, TIMESTAMP_FORMAT)

        text = raw.strip().replace("T", " ", 1)
        if text.startswith("0000-00-00"):
            return EPOCH
        text = text.split(".", 1)[0]
        try:
            return datetime.strptime(text, TIMESTAMP_FORMAT)
        except ValueError as exc:
            raise ParseError(raw, TIMESTAMP_FORMAT) from exc

    def cooldown_elapsed(
        self,
        last: Optional[datetime],
        cooldown: timedelta,
        now: Optional[datetime] = None,
    ) -> bool:
        """True when at least `cooldown` has passed since `last` (None means never)."""
        if last is None:
            return True
        current = now if now is not None else self.now()
        return current - self.normalize(last) >= cooldown
