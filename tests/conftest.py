import json

import pytest

from tests.fixtures.fake_delivery import FakeDelivery
from tests.fixtures.fake_fetcher import FakeFetcher
from tests.fixtures.worldstate_data import LANGUAGE, REGIONS, T0
from worldstate_bot.localization import LocalizationResolver
from worldstate_bot.ping_cleanup import PingCleanup
from worldstate_bot.subscription_store import SubscriptionStore


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep tests away from a developer's .env and data directory."""
    for name in (
        "DISCORD_BOT_TOKEN",
        "WORLDSTATE_URL",
        "ARBITRATION_URL",
        "FEATURE_FISSURES",
        "FEATURE_BARO",
        "FEATURE_ARBITRATION",
        "DICT_DIR",
        "ARBY_TIERS_PATH",
        "SUBSCRIPTIONS_DB_PATH",
        "LOG_LEVEL",
        "LOG_PLAIN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("SQLITE_WAL_MODE", "0")


@pytest.fixture
def resolver():
    return LocalizationResolver(REGIONS, LANGUAGE)


@pytest.fixture
def dict_dir(tmp_path):
    d = tmp_path / "dict"
    d.mkdir()
    (d / "ExportRegions.json").write_text(json.dumps(REGIONS), encoding="utf-8")
    (d / "dict.en.json").write_text(json.dumps(LANGUAGE), encoding="utf-8")
    return d


@pytest.fixture
def store(tmp_path):
    s = SubscriptionStore(tmp_path / "subs.sqlite")
    yield s
    s.close()


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def cleanup(delivery):
    return PingCleanup(delivery, delay_seconds=0)


@pytest.fixture
def clock():
    """Mutable clock: set ``clock.now`` to move time."""

    class _Clock:
        now = T0

        def __call__(self):
            return self.now

    return _Clock()
