"""
Tests for duration strings and tag helpers.
"""

from datetime import timedelta

import pytest

from awsreaper.durations import coerce_duration, format_duration, parse_duration
from awsreaper.tags import format_schedule_tag, owner_address, parse_schedule_tag


class TestDurations:
    """Test duration parsing and formatting."""

    @pytest.mark.parametrize("text,expected", [
        ("72h", timedelta(hours=72)),
        ("1h30m", timedelta(minutes=90)),
        ("90s", timedelta(seconds=90)),
        ("3d", timedelta(days=3)),
        ("1.5h", timedelta(minutes=90)),
        ("0", timedelta(0)),
    ])
    def test_parse(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "h", "3 days", "-1h", "1x"])
    def test_parse_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_coerce(self):
        assert coerce_duration(60) == timedelta(minutes=1)
        assert coerce_duration(timedelta(hours=1)) == timedelta(hours=1)
        with pytest.raises(ValueError):
            coerce_duration(True)

    @pytest.mark.parametrize("delta,text", [
        (timedelta(days=3), "3d"),
        (timedelta(hours=36), "36h"),
        (timedelta(minutes=90), "1h30m"),
        (timedelta(0), "0s"),
    ])
    def test_format(self, delta, text):
        assert format_duration(delta) == text
        assert parse_duration(text) == delta


class TestOwner:
    """Test owner extraction."""

    def test_email_tag(self):
        assert owner_address({"Owner": "Jane <Jane.Doe@Example.com>"}) == "jane.doe@example.com"

    def test_bare_user_needs_host(self):
        assert owner_address({"Owner": "jdoe"}) is None
        assert owner_address({"Owner": "jdoe"}, default_email_host="example.com") == "jdoe@example.com"

    def test_custom_tag_and_default(self):
        assert owner_address({"owner": "a@b.io"}, owner_tag="owner") == "a@b.io"
        assert owner_address({}, default_owner="ops@example.com") == "ops@example.com"
        assert owner_address({"Owner": "not an email"}, default_owner="ops@example.com") == "ops@example.com"

    def test_unowned(self):
        assert owner_address({}) is None


class TestScheduleTag:
    """Test the schedule tag format."""

    def test_parse(self):
        assert parse_schedule_tag("0 18 * * 1-5|0 8 * * 1-5") == ("0 18 * * 1-5", "0 8 * * 1-5")

    @pytest.mark.parametrize("value", ["", "0 18 * * *", "|0 8 * * *", "0 18 * * *|"])
    def test_not_a_schedule(self, value):
        assert parse_schedule_tag(value) is None

    def test_format(self):
        assert format_schedule_tag(" @daily ", "@hourly") == "@daily|@hourly"
