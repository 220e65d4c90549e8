"""Unit tests for slidesync.timecode."""
import pytest

from slidesync.timecode import format_timestamp, parse_timestamp


class TestFormatTimestamp:
    def test_zero(self):
        assert format_timestamp(0) == "00:00"

    def test_floors_fractions(self):
        assert format_timestamp(9.99) == "00:09"

    def test_minutes_not_wrapped_into_hours(self):
        """75 minutes stays in minutes, matching the MM:SS labels shown to the model."""
        assert format_timestamp(75 * 60 + 3) == "75:03"

    def test_negative_clamped(self):
        assert format_timestamp(-4.0) == "00:00"


class TestParseTimestamp:
    @pytest.mark.parametrize("label, expected", [
        ("00:10", 10.0),
        ("01:05", 65.0),
        ("1:02:03", 3723.0),
        (" 02 : 30 ", 150.0),
        ("00:02.5", 2.5),
    ])
    def test_valid(self, label, expected):
        assert parse_timestamp(label) == expected

    @pytest.mark.parametrize("label", ["", "10", "a:b", "1:2:3:4", "-1:00", "00:-5"])
    def test_invalid_returns_none(self, label):
        assert parse_timestamp(label) is None

    def test_round_trips_format(self):
        assert parse_timestamp(format_timestamp(754)) == 754.0
