"""
Unit Tests for TimestampCodec
=============================

Test Coverage
-------------
- Lenient parsing of stored values (fractional seconds, ISO separator,
  bytes, zero-dates, garbage)
- Formatting and normalization (sub-second precision, aware values)
- Cooldown checks
"""

from datetime import datetime, timedelta, timezone

import pytest

from smptweaks.core.exceptions import ParseError
from smptweaks.progression.timestamps import EPOCH, TIMESTAMP_FORMAT, TimestampCodec


@pytest.fixture
def codec() -> TimestampCodec:
    return TimestampCodec("utc")


@pytest.mark.unit
class TestParse:
    """Test reading stored timestamps."""

    @pytest.mark.parametrize(
        "raw",
        [
            "2024-05-01 12:30:00",
            "2024-05-01 12:30:00.123",
            "2024-05-01T12:30:00",
            "  2024-05-01 12:30:00  ",
            b"2024-05-01 12:30:00",
        ],
    )
    def test_accepted_forms(self, codec, raw):
        """Test every accepted stored form parses to the same value."""
        assert codec.parse(raw) == datetime(2024, 5, 1, 12, 30)

    def test_datetime_passthrough_drops_microseconds(self, codec):
        """Test datetimes from drivers are normalized."""
        assert codec.parse(datetime(2024, 5, 1, 12, 30, 0, 999)) == datetime(2024, 5, 1, 12, 30)

    def test_zero_date_is_epoch(self, codec):
        """Test MySQL zero-dates read as never."""
        assert codec.parse("0000-00-00 00:00:00") == EPOCH

    @pytest.mark.parametrize("raw", ["garbage", "2024-13-01 00:00:00", "", 12345])
    def test_malformed_raises(self, codec, raw):
        """Test unrecognizable values raise ParseError."""
        # Act
        with pytest.raises(ParseError) as exc_info:
            codec.parse(raw)

        # Assert
        assert exc_info.value.expected_format == TIMESTAMP_FORMAT
        assert exc_info.value.raw_value == raw


@pytest.mark.unit
class TestFormat:
    """Test writing timestamps."""

    def test_format_second_precision(self, codec):
        """Test the stored text form."""
        assert codec.format(datetime(2024, 5, 1, 8, 5, 9, 500000)) == "2024-05-01 08:05:09"

    def test_aware_value_converted_to_utc(self, codec):
        """Test aware datetimes are converted before the zone is dropped."""
        # Arrange
        aware = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        # Act
        normalized = codec.normalize(aware)

        # Assert
        assert normalized == datetime(2024, 5, 1, 12, 0)
        assert normalized.tzinfo is None

    def test_now_is_naive_whole_seconds(self, codec):
        """Test generated timestamps match the stored precision."""
        # Act
        now = codec.now()

        # Assert
        assert now.tzinfo is None
        assert now.microsecond == 0

    def test_unknown_zone_rejected(self):
        """Test only utc and local zones are accepted."""
        with pytest.raises(ValueError):
            TimestampCodec("mars")

    def test_zone_is_case_insensitive(self):
        """Test zone names are normalized."""
        assert TimestampCodec("LOCAL").zone == "local"


@pytest.mark.unit
class TestCooldown:
    """Test cooldown checks."""

    def test_never_claimed_is_available(self, codec):
        """Test a missing timestamp always passes the cooldown."""
        assert codec.cooldown_elapsed(None, timedelta(hours=24)) is True

    def test_epoch_is_available(self, codec):
        """Test the epoch sentinel always passes the cooldown."""
        assert codec.cooldown_elapsed(EPOCH, timedelta(days=365)) is True

    def test_recent_claim_blocks(self, codec):
        """Test a claim inside the cooldown window blocks."""
        # Arrange
        now = datetime(2024, 5, 2, 12, 0)
        last = now - timedelta(hours=23, minutes=59)

        # Act & Assert
        assert codec.cooldown_elapsed(last, timedelta(hours=24), now=now) is False

    def test_exact_boundary_passes(self, codec):
        """Test the cooldown passes exactly when it has fully elapsed."""
        # Arrange
        now = datetime(2024, 5, 2, 12, 0)

        # Act & Assert
        assert codec.cooldown_elapsed(now - timedelta(hours=24), timedelta(hours=24), now=now) is True
