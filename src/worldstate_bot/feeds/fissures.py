"""
Void fissure feed.

Fissures are the ``ActiveMissions`` entries whose ``Modifier`` is a relic tier
(``VoidT1``..``VoidT6``). Several run at once, so missions are grouped by
(category, steel path) and each group is propagated as one entity; a
subscription asks for one category on either normal or Steel Path.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import ClassificationError
from ..lifecycle import lifecycle_status
from ..localization import CATEGORY_OVERRIDES
from ..models import ClassifiedEntity, FeedKind, LifecycleStatus, RawSnapshot
from ..time_utils import discord_timestamp, parse_epoch_ms
from .base import Feed, make_embed, oid

VOID_TIER_MAP: Dict[str, str] = {
    "VoidT1": "Lith",
    "VoidT2": "Meso",
    "VoidT3": "Neo",
    "VoidT4": "Axi",
    "VoidT5": "Requiem",
    "VoidT6": "Omnia",
}
_TIER_ORDER = {name: i for i, name in enumerate(VOID_TIER_MAP.values())}

STEEL_PATH_COLOR = 0xE67E22
NORMAL_COLOR = 0x9B59B6


def _mode(steel_path: bool) -> str:
    return "Steel Path" if steel_path else "Normal"


def group_slot(category: str, steel_path: bool) -> str:
    return f"{category.lower()}:{'steel' if steel_path else 'normal'}"


class FissureFeed(Feed):
    kind = FeedKind.FISSURES

    def entries(self, snapshot: RawSnapshot, now: datetime) -> Iterable[Any]:
        missions = snapshot.body.get("ActiveMissions") or []
        return [
            m
            for m in missions
            if isinstance(m, dict) and str(m.get("Modifier", "")).startswith("VoidT")
        ]

    def classify_entry(self, raw: Dict[str, Any], now: datetime) -> ClassifiedEntity:
        activation = parse_epoch_ms(raw.get("Activation"))
        expiry = parse_epoch_ms(raw.get("Expiry"))
        node_id = raw.get("Node")
        if not node_id:
            raise ClassificationError("fissure has no node")
        node = self.resolver.node(node_id)
        category = self.resolver.category(raw.get("MissionType", ""), node_id)
        tier = VOID_TIER_MAP.get(raw.get("Modifier", ""), "Unknown")
        steel_path = bool(raw.get("Hard"))
        return ClassifiedEntity(
            id=oid(raw.get("_id")),
            display_name=f"{tier} {category}",
            location_name=f"{node.name} ({node.system})",
            category=category,
            activation_at=activation,
            expiry_at=expiry,
            lifecycle_status=lifecycle_status(activation, expiry, now),
            extra_attributes={
                "tier": tier,
                "steel_path": steel_path,
                "faction": node.faction,
                "node_id": node_id,
            },
        )

    def select(
        self, entities: List[ClassifiedEntity], now: datetime
    ) -> Dict[str, ClassifiedEntity]:
        groups: Dict[Tuple[str, bool], List[ClassifiedEntity]] = {}
        for e in entities:
            if e.lifecycle_status is LifecycleStatus.EXPIRED:
                continue
            key = (e.category, bool(e.extra_attributes.get("steel_path")))
            groups.setdefault(key, []).append(e)

        selected: Dict[str, ClassifiedEntity] = {}
        for (category, steel_path), members in groups.items():
            members.sort(
                key=lambda m: (
                    _TIER_ORDER.get(m.extra_attributes.get("tier"), len(_TIER_ORDER)),
                    m.expiry_at,
                )
            )
            activation = min(m.activation_at for m in members)
            expiry = min(m.expiry_at for m in members)
            selected[group_slot(category, steel_path)] = ClassifiedEntity(
                id=",".join(sorted(m.id for m in members)),
                display_name=f"{_mode(steel_path)} {category} Void Fissures",
                location_name=", ".join(m.location_name for m in members),
                category=category,
                activation_at=activation,
                expiry_at=expiry,
                lifecycle_status=lifecycle_status(activation, expiry, now),
                extra_attributes={
                    "steel_path": steel_path,
                    "missions": [
                        {
                            "location": m.location_name,
                            "tier": m.extra_attributes.get("tier"),
                            "faction": m.extra_attributes.get("faction"),
                            "expiry_at": m.expiry_at,
                        }
                        for m in members
                    ],
                },
            )
        return selected

    def vacated(
        self, previous: ClassifiedEntity, now: datetime
    ) -> Optional[ClassifiedEntity]:
        # Every mission of the group expired: replace the list with an empty state.
        steel_path = bool(previous.extra_attributes.get("steel_path"))
        return ClassifiedEntity(
            id=f"none:{group_slot(previous.category, steel_path)}",
            display_name=previous.display_name,
            location_name="",
            category=previous.category,
            activation_at=previous.expiry_at,
            expiry_at=previous.expiry_at,
            lifecycle_status=LifecycleStatus.EXPIRED,
            extra_attributes={
                "steel_path": steel_path,
                "missions": [],
            },
        )

    def normalize_criteria(self, raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        raw = raw or {}
        mission_type = str(raw.get("mission_type") or "").strip()
        if not mission_type:
            raise ValueError("mission_type is required for fissure subscriptions")
        mission_type = CATEGORY_OVERRIDES.get(mission_type, mission_type)
        return {
            "mission_type": mission_type,
            "steel_path": bool(raw.get("steel_path", False)),
        }

    def criteria_key(self, criteria: Dict[str, Any]) -> str:
        return group_slot(criteria["mission_type"], bool(criteria.get("steel_path")))

    def matches(self, criteria: Dict[str, Any], entity: ClassifiedEntity) -> bool:
        wanted = str(criteria.get("mission_type") or "").lower()
        if not wanted or wanted != entity.category.lower():
            return False
        return bool(criteria.get("steel_path", False)) == bool(
            entity.extra_attributes.get("steel_path")
        )

    def render(self, entity: ClassifiedEntity) -> Dict[str, Any]:
        steel_path = bool(entity.extra_attributes.get("steel_path"))
        fields = []
        for m in entity.extra_attributes.get("missions", []):
            fields.append(
                {
                    "name": m["location"],
                    "value": "\n".join(
                        [
                            f"**Tier:** {m['tier']}",
                            f"**Faction:** {m['faction']}",
                            f"**Steel Path:** {'✅' if steel_path else '❌'}",
                            f"**Expires:** {discord_timestamp(m['expiry_at'])}",
                        ]
                    ),
                    "inline": True,
                }
            )
        embed = make_embed(
            title=f"{_mode(steel_path)} {entity.category} Void Fissures",
            description=f"{len(fields)} active" if fields else "No active fissures right now",
            fields=fields,
            color=STEEL_PATH_COLOR if steel_path else NORMAL_COLOR,
        )
        return {"embeds": [embed]}

    def ping_text(self, entity: ClassifiedEntity) -> str:
        steel_path = bool(entity.extra_attributes.get("steel_path"))
        return f"{_mode(steel_path)} {entity.category} fissures available!"
