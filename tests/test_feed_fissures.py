"""Tests for the void fissure feed."""

from datetime import timedelta

import pytest

from tests.fixtures.worldstate_data import T0, WORLDSTATE_URL, mission, worldstate
from worldstate_bot.feeds.fissures import FissureFeed
from worldstate_bot.models import LifecycleStatus, RawSnapshot


@pytest.fixture
def feed(resolver):
    return FissureFeed(resolver, WORLDSTATE_URL)


def _snapshot(*missions):
    return RawSnapshot(WORLDSTATE_URL, worldstate(missions=missions), T0)


class TestClassify:
    def test_only_void_modifiers_are_fissures(self, feed):
        snap = _snapshot(
            mission("m1", "SolNode64", "MT_SURVIVAL", "VoidT2"),
            {**mission("m2", "SolNode27", "MT_EXTERMINATE"), "Modifier": "SORTIE"},
        )
        entities = feed.classify(snap, T0)
        assert [e.id for e in entities] == ["m1"]
        e = entities[0]
        assert e.category == "Survival"
        assert e.location_name == "Ur (Uranus)"
        assert e.extra_attributes["tier"] == "Meso"
        assert e.extra_attributes["faction"] == "Grineer"
        assert e.lifecycle_status is LifecycleStatus.ACTIVE

    def test_bad_timestamp_drops_only_that_entry(self, feed):
        broken = mission("bad", "SolNode27", "MT_EXTERMINATE")
        broken["Activation"] = {"$date": {"$numberLong": "not-a-number"}}
        snap = _snapshot(broken, mission("ok", "SolNode27", "MT_EXTERMINATE"))
        assert [e.id for e in feed.classify(snap, T0)] == ["ok"]

    def test_out_of_range_timestamp_drops_only_that_entry(self, feed):
        broken = mission("bad", "SolNode27", "MT_EXTERMINATE")
        broken["Expiry"] = {"$date": {"$numberLong": "9" * 25}}
        snap = _snapshot(broken, mission("ok", "SolNode64", "MT_SURVIVAL"))
        assert [e.id for e in feed.classify(snap, T0)] == ["ok"]

    def test_override_categories(self, feed):
        snap = _snapshot(
            mission("c", "SolNode230", "MT_VOID_CASCADE", "VoidT5"),
            mission("f", "SolNode230", "MT_CORRUPTION", "VoidT5"),
        )
        assert sorted(e.category for e in feed.classify(snap, T0)) == [
            "Void Cascade",
            "Void Flood",
        ]

    def test_unknown_tier(self, feed):
        snap = _snapshot(mission("m", "SolNode27", "MT_EXTERMINATE", "VoidT9"))
        assert feed.classify(snap, T0)[0].extra_attributes["tier"] == "Unknown"


class TestSelect:
    def test_groups_by_category_and_steel_path(self, feed):
        snap = _snapshot(
            mission("a", "SolNode64", "MT_SURVIVAL", "VoidT3"),
            mission("b", "SolNode64", "MT_SURVIVAL", "VoidT1"),
            mission("c", "SolNode64", "MT_SURVIVAL", "VoidT1", hard=True),
            mission("d", "SolNode27", "MT_EXTERMINATE"),
        )
        groups = feed.select(feed.classify(snap, T0), T0)

        assert set(groups) == {"survival:normal", "survival:steel", "exterminate:normal"}
        normal = groups["survival:normal"]
        assert normal.id == "a,b"
        # Lith before Neo
        assert [m["tier"] for m in normal.extra_attributes["missions"]] == ["Lith", "Neo"]
        assert groups["survival:steel"].extra_attributes["steel_path"] is True

    def test_group_identity_tracks_membership(self, feed):
        first = feed.select(feed.classify(_snapshot(mission("a", "SolNode64", "MT_SURVIVAL")), T0), T0)
        second = feed.select(
            feed.classify(
                _snapshot(
                    mission("a", "SolNode64", "MT_SURVIVAL"),
                    mission("b", "SolNode64", "MT_SURVIVAL"),
                ),
                T0,
            ),
            T0,
        )
        assert first["survival:normal"].id != second["survival:normal"].id

    def test_expired_missions_are_left_out(self, feed):
        snap = _snapshot(
            mission(
                "old",
                "SolNode64",
                "MT_SURVIVAL",
                activation=T0 - timedelta(hours=2),
                expiry=T0 - timedelta(hours=1),
            )
        )
        assert feed.select(feed.classify(snap, T0), T0) == {}

    def test_group_timing(self, feed):
        snap = _snapshot(
            mission("a", "SolNode64", "MT_SURVIVAL", expiry=T0 + timedelta(minutes=30)),
            mission("b", "SolNode64", "MT_SURVIVAL", expiry=T0 + timedelta(minutes=20)),
        )
        group = feed.select(feed.classify(snap, T0), T0)["survival:normal"]
        assert group.expiry_at == T0 + timedelta(minutes=20)


class TestCriteria:
    def test_normalize_fills_defaults(self, feed):
        assert feed.normalize_criteria({"mission_type": "Survival"}) == {
            "mission_type": "Survival",
            "steel_path": False,
        }

    def test_normalize_maps_upstream_names(self, feed):
        assert feed.normalize_criteria({"mission_type": "Corruption"})["mission_type"] == "Void Flood"

    def test_normalize_requires_mission_type(self, feed):
        with pytest.raises(ValueError):
            feed.normalize_criteria({})

    def test_criteria_key(self, feed):
        assert feed.criteria_key({"mission_type": "Survival", "steel_path": True}) == "survival:steel"

    def test_matches_category_and_steel_path(self, feed):
        groups = feed.select(
            feed.classify(_snapshot(mission("a", "SolNode64", "MT_SURVIVAL", hard=True)), T0), T0
        )
        entity = groups["survival:steel"]
        assert feed.matches({"mission_type": "survival", "steel_path": True}, entity)
        assert not feed.matches({"mission_type": "Survival", "steel_path": False}, entity)
        assert not feed.matches({"mission_type": "Defense", "steel_path": True}, entity)


def test_render_and_ping_text(feed):
    groups = feed.select(
        feed.classify(_snapshot(mission("a", "SolNode64", "MT_SURVIVAL", "VoidT4", hard=True)), T0),
        T0,
    )
    entity = groups["survival:steel"]
    payload = feed.render(entity)
    embed = payload["embeds"][0]

    assert "content" not in payload
    assert embed["title"] == "Steel Path Survival Void Fissures"
    assert embed["fields"][0]["name"] == "Ur (Uranus)"
    assert "**Tier:** Axi" in embed["fields"][0]["value"]
    assert feed.should_ping(entity)
    assert feed.ping_text(entity) == "Steel Path Survival fissures available!"


def test_vacated_group_renders_empty_state(feed):
    groups = feed.select(
        feed.classify(_snapshot(mission("a", "SolNode64", "MT_SURVIVAL", hard=True)), T0), T0
    )
    previous = groups["survival:steel"]

    empty = feed.vacated(previous, T0 + timedelta(hours=2))

    assert empty.id == "none:survival:steel"
    assert empty.lifecycle_status is LifecycleStatus.EXPIRED
    assert feed.matches({"mission_type": "Survival", "steel_path": True}, empty)
    assert not feed.should_ping(empty)
    embed = feed.render(empty)["embeds"][0]
    assert embed["title"] == "Steel Path Survival Void Fissures"
    assert embed["description"] == "No active fissures right now"
