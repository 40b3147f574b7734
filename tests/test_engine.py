"""Tests for Engine wiring and the subscription-management surface."""

import dataclasses
from datetime import timedelta

import pytest

from tests.fixtures.fake_delivery import FakeDelivery
from tests.fixtures.fake_fetcher import FakeFetcher
from tests.fixtures.worldstate_data import (
    ARBYS_URL,
    WORLDSTATE_URL,
    arbys,
    mission,
    trader,
    worldstate,
)
from worldstate_bot.config import Settings
from worldstate_bot.engine import Engine
from worldstate_bot.errors import ConfigurationError
from worldstate_bot.models import FeedKind
from worldstate_bot.time_utils import now


@pytest.fixture
def settings(tmp_path, dict_dir):
    return dataclasses.replace(
        Settings(),
        discord_bot_token="token",
        worldstate_url=WORLDSTATE_URL,
        arbitration_url=ARBYS_URL,
        dict_dir=dict_dir,
        arby_tiers_path=tmp_path / "missing_tiers.json",
        subscriptions_db_path=tmp_path / "subs.sqlite",
        ping_delete_after_seconds=0,
    )


@pytest.fixture
def fake_fetcher():
    # The engine runs on the real clock, so windows are built around now().
    t = now()
    return FakeFetcher(
        {
            WORLDSTATE_URL: worldstate(
                missions=[
                    mission(
                        "a",
                        "SolNode64",
                        "MT_SURVIVAL",
                        activation=t - timedelta(minutes=5),
                        expiry=t + timedelta(minutes=55),
                    )
                ],
                traders=[
                    trader(
                        activation=t - timedelta(hours=1),
                        expiry=t + timedelta(hours=47),
                    )
                ],
            ),
            ARBYS_URL: arbys((t - timedelta(minutes=10), "SolNode27")),
        }
    )


@pytest.fixture
def engine(settings, fake_fetcher):
    e = Engine.from_settings(settings, delivery=FakeDelivery(), fetcher=fake_fetcher)
    yield e
    e.store.close()


class TestFromSettings:
    def test_missing_token_fails_fast(self, settings):
        with pytest.raises(ConfigurationError, match="DISCORD_BOT_TOKEN"):
            Engine.from_settings(dataclasses.replace(settings, discord_bot_token=""))

    def test_missing_lookup_tables_fail_fast(self, settings, tmp_path):
        broken = dataclasses.replace(settings, dict_dir=tmp_path / "nowhere")
        with pytest.raises(ConfigurationError):
            Engine.from_settings(broken, delivery=FakeDelivery(), fetcher=FakeFetcher())

    def test_every_feed_disabled_is_an_error(self, settings):
        off = dataclasses.replace(
            settings, feature_fissures=False, feature_baro=False, feature_arbitration=False
        )
        with pytest.raises(ConfigurationError):
            Engine.from_settings(off, delivery=FakeDelivery(), fetcher=FakeFetcher())

    def test_feed_sources_follow_settings(self, settings):
        engine = Engine.from_settings(settings, delivery=FakeDelivery(), fetcher=FakeFetcher())
        try:
            sources = {k: s.feed.source for k, s in engine.schedulers.items()}
        finally:
            engine.store.close()
        assert sources[FeedKind.FISSURES].url == WORLDSTATE_URL
        assert sources[FeedKind.BARO].url == WORLDSTATE_URL
        assert sources[FeedKind.ARBITRATION].url == ARBYS_URL
        assert sources[FeedKind.ARBITRATION].fmt == "text"
        assert sources[FeedKind.BARO].fmt == "json"

    def test_builds_one_scheduler_per_enabled_feed(self, settings):
        only_baro = dataclasses.replace(settings, feature_fissures=False, feature_arbitration=False)
        engine = Engine.from_settings(only_baro, delivery=FakeDelivery(), fetcher=FakeFetcher())
        try:
            assert list(engine.schedulers) == [FeedKind.BARO]
            assert engine.schedulers[FeedKind.BARO].interval_seconds == 300
            with pytest.raises(ConfigurationError):
                engine.scheduler(FeedKind.FISSURES)
            with pytest.raises(ConfigurationError):
                engine.scheduler("nonsense")
        finally:
            engine.store.close()


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_configure_delivers_immediately(self, engine):
        sub, report = await engine.configure_subscription(
            FeedKind.FISSURES, "g", "chan-1", {"mission_type": "survival"}, ping_target_id="r"
        )

        assert sub.match_criteria == {"mission_type": "survival", "steel_path": False}
        assert report.succeeded == 1
        stored = engine.store.get(sub.subscription_id)
        assert stored.last_message_ref is not None
        assert len(engine.delivery.pings) == 1
        # manual deliveries never seed the change ledger
        assert len(engine.scheduler(FeedKind.FISSURES).fingerprints) == 0

    @pytest.mark.asyncio
    async def test_reconfigure_updates_in_place(self, engine):
        first, _ = await engine.configure_subscription(FeedKind.BARO, "g", "chan-1")
        second, report = await engine.configure_subscription(
            FeedKind.BARO, "g", "chan-1", ping_target_id="role-2"
        )

        assert second.subscription_id == first.subscription_id
        assert second.ping_target_id == "role-2"
        assert len(engine.delivery.content_sends) == 1
        assert len(engine.delivery.edits) == 1
        assert report.succeeded == 1

    @pytest.mark.asyncio
    async def test_invalid_criteria_store_nothing(self, engine):
        with pytest.raises(ValueError):
            await engine.configure_subscription(FeedKind.FISSURES, "g", "chan-1", {})
        with pytest.raises(ValueError):
            await engine.configure_subscription(
                FeedKind.ARBITRATION, "g", "chan-1", {"tier_roles": {"Z": "1"}}
            )
        assert engine.store.list_by_community(FeedKind.FISSURES, "g") == []
        assert engine.store.list_by_community(FeedKind.ARBITRATION, "g") == []

    @pytest.mark.asyncio
    async def test_failed_initial_delivery_keeps_subscription(self, engine):
        engine.fetcher.fail(WORLDSTATE_URL)

        sub, report = await engine.configure_subscription(FeedKind.BARO, "g", "chan-1")

        assert report is None
        assert engine.store.get(sub.subscription_id) is not None

    @pytest.mark.asyncio
    async def test_arbitration_tier_roles(self, engine):
        sub, report = await engine.configure_subscription(
            FeedKind.ARBITRATION, "g", "chan-1", {"tier_roles": {"f": "role-f"}}
        )
        assert sub.match_criteria == {"tier_roles": {"F": "role-f"}}
        assert report.succeeded == 1
        (ping,) = engine.delivery.pings
        assert ping[2]["content"].startswith("<@&role-f>")

    def test_remove_subscription(self, engine):
        sub = engine.store.upsert(FeedKind.BARO, "g", "chan-1")
        assert engine.remove_subscription(sub.subscription_id) is True
        assert engine.remove_subscription(sub.subscription_id) is False


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_run_once_reports_per_feed(self, engine):
        engine.store.upsert(FeedKind.BARO, "g", "chan-1")
        engine.fetcher.fail(ARBYS_URL)

        reports = await engine.run_once()

        assert set(reports) == {FeedKind.FISSURES, FeedKind.BARO, FeedKind.ARBITRATION}
        assert reports[FeedKind.BARO].succeeded == 1
        assert reports[FeedKind.FISSURES].attempted == 0
        assert reports[FeedKind.ARBITRATION] is None

    @pytest.mark.asyncio
    async def test_health_shape(self, engine):
        engine.fetcher.fail(ARBYS_URL)
        await engine.run_once()

        health = engine.health()
        assert set(health["feeds"]) == {"fissures", "baro", "arbitration"}
        assert health["feeds"]["arbitration"]["consecutive_errors"] == 1
        assert health["feeds"]["baro"]["healthy"] is True
        assert health["pending_ping_cleanups"] == 0

    @pytest.mark.asyncio
    async def test_stop_releases_collaborators(self, engine):
        engine.start()
        assert all(s.state.value == "running" for s in engine.schedulers.values())

        await engine.stop()

        assert all(s.state.value == "idle" for s in engine.schedulers.values())
        assert engine.fetcher.closed is True
        assert engine.delivery.closed is True
