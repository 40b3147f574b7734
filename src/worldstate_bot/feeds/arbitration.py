"""
Arbitration feed.

The schedule is a plain-text file of ``<epoch seconds>,<node>`` lines, each
arbitration lasting one hour. Nodes are graded S..F by a community tier list
(optional JSON file); channels may map tiers to roles so only good
arbitrations ping.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..errors import ClassificationError
from ..lifecycle import lifecycle_status
from ..localization import LocalizationResolver
from ..models import ClassifiedEntity, FeedKind, LifecycleStatus, RawSnapshot, Subscription
from ..time_utils import discord_timestamp, from_epoch_seconds
from .base import Feed, log, make_embed

ARBITRATION_DURATION = timedelta(seconds=3600)
TIERS = ("S", "A", "B", "C", "D", "F")
DEFAULT_TIER = "F"
NOTEWORTHY_TIERS = {"S", "A"}
NOTEWORTHY_WINDOW = timedelta(days=14)
UPCOMING_COUNT = 3
NOTEWORTHY_MAX = 5

ARBITRATION_COLOR = 0xF1C40F
THUMBNAIL = (
    "https://browse.wf/Lotus/Interface/Icons/StoreIcons/Resources/"
    "CraftingComponents/Elitium.png"
)


def load_tiers(path: Path) -> Dict[str, str]:
    """Node -> tier table. A missing file grades every node ``F``."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        log.warning("arby_tiers_missing path=%s default_tier=%s", path, DEFAULT_TIER)
        return {}
    except (OSError, ValueError) as e:
        log.warning("arby_tiers_unreadable path=%s err=%s", path, e)
        return {}
    if not isinstance(data, dict):
        log.warning("arby_tiers_not_object path=%s", path)
        return {}
    return {str(k): str(v).upper() for k, v in data.items() if str(v).upper() in TIERS}


def _summary(entity: ClassifiedEntity) -> Dict[str, Any]:
    return {
        "tier": entity.extra_attributes["tier"],
        "node": entity.extra_attributes["node_name"],
        "system": entity.extra_attributes["system"],
        "activation_at": entity.activation_at,
    }


def _summary_line(s: Dict[str, Any]) -> str:
    return (
        f"**{s['tier']} Tier | {s['node']}** (**{s['system']}**) "
        f"{discord_timestamp(s['activation_at'])}"
    )


class ArbitrationFeed(Feed):
    kind = FeedKind.ARBITRATION

    def __init__(
        self,
        resolver: LocalizationResolver,
        url: str,
        tiers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(resolver, url, fmt="text")
        self.tiers = tiers or {}

    def entries(self, snapshot: RawSnapshot, now: datetime) -> Iterable[Any]:
        # The schedule runs years ahead; only the current hour and the
        # noteworthy window are worth classifying.
        earliest = int((now - ARBITRATION_DURATION).timestamp())
        latest = int((now + NOTEWORTHY_WINDOW).timestamp())
        out = []
        for line in str(snapshot.body).splitlines():
            line = line.strip()
            if not line:
                continue
            head = line.split(",", 1)[0].strip()
            if head.isdigit() and not (earliest < int(head) <= latest):
                continue
            out.append(line)
        return out

    def classify_entry(self, raw: str, now: datetime) -> ClassifiedEntity:
        parts = raw.split(",")
        if len(parts) < 2 or not parts[1].strip():
            raise ClassificationError(f"malformed arbitration line {raw!r}")
        try:
            ts = int(parts[0].strip())
        except ValueError as e:
            raise ClassificationError(f"bad arbitration timestamp {parts[0]!r}") from e
        node_id = parts[1].strip()

        activation = from_epoch_seconds(ts)
        expiry = activation + ARBITRATION_DURATION
        node = self.resolver.node(node_id)
        tier = self.tiers.get(node_id, DEFAULT_TIER)
        mission = node.mission_name
        if mission.startswith("MissionName_"):
            mission = mission[len("MissionName_"):]
        return ClassifiedEntity(
            id=f"{ts}:{node_id}",
            display_name=f"{tier} Tier | {node.name} ({node.system})",
            location_name=f"{node.name} ({node.system})",
            category=mission,
            activation_at=activation,
            expiry_at=expiry,
            lifecycle_status=lifecycle_status(activation, expiry, now),
            extra_attributes={
                "tier": tier,
                "node_id": node_id,
                "node_name": node.name,
                "system": node.system,
                "faction": node.faction,
            },
        )

    def select(
        self, entities: List[ClassifiedEntity], now: datetime
    ) -> Dict[str, ClassifiedEntity]:
        ordered = sorted(entities, key=lambda e: e.activation_at)
        current_idx = next(
            (
                i
                for i, e in enumerate(ordered)
                if e.lifecycle_status is LifecycleStatus.ACTIVE
            ),
            None,
        )
        if current_idx is None:
            raise ClassificationError("could not determine the current arbitration")
        current = ordered[current_idx]
        later = ordered[current_idx + 1:]

        upcoming = later[:UPCOMING_COUNT]
        listed = {current.extra_attributes["node_id"]}
        listed.update(e.extra_attributes["node_id"] for e in upcoming)
        horizon = now + NOTEWORTHY_WINDOW
        noteworthy = [
            e
            for e in later
            if e.activation_at <= horizon
            and e.extra_attributes["tier"] in NOTEWORTHY_TIERS
            and e.extra_attributes["node_id"] not in listed
        ][:NOTEWORTHY_MAX]

        current.extra_attributes["upcoming"] = [_summary(e) for e in upcoming]
        current.extra_attributes["noteworthy"] = [_summary(e) for e in noteworthy]
        return {"primary": current}

    def normalize_criteria(self, raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        raw = raw or {}
        tier_roles: Dict[str, str] = {}
        for tier, role in (raw.get("tier_roles") or {}).items():
            key = str(tier).strip().upper()
            if key not in TIERS:
                raise ValueError(f"unknown arbitration tier {tier!r}")
            if role:
                tier_roles[key] = str(role)
        return {"tier_roles": tier_roles}

    def ping_role(
        self, subscription: Subscription, entity: ClassifiedEntity
    ) -> Optional[str]:
        tier_roles = subscription.match_criteria.get("tier_roles") or {}
        tier = entity.extra_attributes.get("tier")
        if tier_roles:
            return tier_roles.get(tier) or None
        return subscription.ping_target_id or None

    def ping_text(self, entity: ClassifiedEntity) -> str:
        return f"{entity.extra_attributes.get('tier', DEFAULT_TIER)} Tier Arbitration is active!"

    def render(self, entity: ClassifiedEntity) -> Dict[str, Any]:
        attrs = entity.extra_attributes
        upcoming = attrs.get("upcoming") or []
        noteworthy = attrs.get("noteworthy") or []
        fields = [
            {"name": "Enemy", "value": attrs.get("faction", "Unknown"), "inline": True},
            {"name": "Mission type", "value": entity.category or "Unknown", "inline": True},
            {
                "name": "Upcoming Arbitrations",
                "value": "\n".join(_summary_line(s) for s in upcoming)
                or "No upcoming arbitrations found",
                "inline": False,
            },
            {
                "name": "Noteworthy Arbitrations",
                "value": "\n".join(_summary_line(s) for s in noteworthy)
                or "No noteworthy arbitrations found in the next two weeks",
                "inline": False,
            },
        ]
        embed = make_embed(
            title=f"{attrs.get('tier', DEFAULT_TIER)} Tier | {entity.location_name}",
            description=f"Arbi Ends {discord_timestamp(entity.expiry_at)}",
            fields=fields,
            thumbnail=THUMBNAIL,
            color=ARBITRATION_COLOR,
        )
        return {"embeds": [embed]}
