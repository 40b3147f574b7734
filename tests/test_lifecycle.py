"""Tests for lifecycle status and epoch parsing."""

from datetime import datetime, timedelta, timezone

import pytest

from tests.fixtures.worldstate_data import T0
from worldstate_bot.lifecycle import lifecycle_status
from worldstate_bot.models import LifecycleStatus
from worldstate_bot.time_utils import discord_timestamp, from_epoch_seconds, parse_epoch_ms


class TestLifecycleStatus:
    activation = T0 + timedelta(seconds=100)
    expiry = T0 + timedelta(seconds=3700)

    @pytest.mark.parametrize(
        "offset,expected",
        [
            (0, LifecycleStatus.UPCOMING),
            (200, LifecycleStatus.ACTIVE),
            (4000, LifecycleStatus.EXPIRED),
        ],
    )
    def test_status_over_time(self, offset, expected):
        now = T0 + timedelta(seconds=offset)
        assert lifecycle_status(self.activation, self.expiry, now) is expected

    def test_boundaries(self):
        """Activation is inclusive, expiry exclusive."""
        assert lifecycle_status(self.activation, self.expiry, self.activation) is LifecycleStatus.ACTIVE
        assert lifecycle_status(self.activation, self.expiry, self.expiry) is LifecycleStatus.EXPIRED


class TestParseEpochMs:
    def test_string_wrapped_millis(self):
        assert parse_epoch_ms("1735732800000") == datetime(2025, 1, 1, 12, tzinfo=timezone.utc)

    def test_mongo_wrapper(self):
        value = {"$date": {"$numberLong": "1735732800000"}}
        assert parse_epoch_ms(value) == datetime(2025, 1, 1, 12, tzinfo=timezone.utc)

    def test_plain_int(self):
        assert parse_epoch_ms(1735732800000) == datetime(2025, 1, 1, 12, tzinfo=timezone.utc)

    @pytest.mark.parametrize("bad", [None, "", "soon", {"$date": {"$foo": 1}}, True])
    def test_rejects_garbage(self, bad):
        with pytest.raises(ValueError):
            parse_epoch_ms(bad)


def test_epoch_seconds_and_discord_markup():
    dt = from_epoch_seconds(1735732800)
    assert dt == datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
    assert discord_timestamp(dt) == "<t:1735732800:R>"
    assert discord_timestamp(dt, "f") == "<t:1735732800:f>"
