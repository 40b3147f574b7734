"""
Baro Ki'Teer feed.

The first ``VoidTraders`` entry of the worldState document is the only entity.
One message per channel: "arriving at ..." while upcoming, the inventory table
while he is at a relay.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import ClassificationError
from ..lifecycle import lifecycle_status
from ..localization import UNKNOWN, last_segment
from ..models import ClassifiedEntity, FeedKind, LifecycleStatus, RawSnapshot
from ..time_utils import discord_timestamp, parse_epoch_ms
from .base import EMBED_FIELD_VALUE_MAX, Feed, log, make_embed, oid

BARO_COLOR = 0x1ABC9C

# Path fragment -> display name, checked in order before any dictionary
# lookup. Store paths for these items do not match their language keys.
ITEM_NAME_OVERRIDES: Tuple[Tuple[str, str], ...] = (
    ("/Weapons/Corpus/LongGun/CorpusAssaultRifle", "Quanta Vandal"),
    ("/Weapons/Corpus/LongGun/CorpusShockRifleDualAmmo", "Supra Vandal"),
    ("/Weapons/Grineer/LongGun/GrineerLightRifleWraith", "Karak Wraith"),
    ("/Weapons/Tenno/Thrown/PrismaSkana", "Prisma Skana"),
    ("PrismaGorgon", "Prisma Gorgon"),
    ("PrismaGrakata", "Prisma Grakata"),
    ("PrismaTetra", "Prisma Tetra"),
    ("PrismaVeritux", "Prisma Veritux"),
    ("MacheteWraith", "Machete Wraith"),
    ("PrismaDualCleavers", "Prisma Dual Cleavers"),
    ("PrismaJetKittagWithPolearm", "Prisma Jet Kitag"),
    ("PrismaObex", "Prisma Obex"),
    ("Armor/BaroArmor", "Ki'Teer Armor"),
    ("Syandana/BaroSyandana", "Ki'Teer Syandana"),
    ("/Sigils/BaroKiTeer", "Ki'Teer Sekhara"),
    ("/Chest/BaroBody", "Ki'Teer Chest Plate"),
    ("/Ephemera/BaroKiTeer", "Ki'Teer Ephemera"),
)

_CAMEL = re.compile(r"([A-Z])")


def humanize(segment: str) -> str:
    """``PrismaGorgon`` -> ``Prisma Gorgon``."""
    return " ".join(_CAMEL.sub(r" \1", segment).split())


class BaroFeed(Feed):
    kind = FeedKind.BARO

    def item_name(self, item_type: str) -> str:
        clean = item_type.replace("/StoreItems", "")
        for fragment, name in ITEM_NAME_OVERRIDES:
            if fragment in clean:
                return name
        resolved = self.resolver.lookup(item_type) or self.resolver.lookup(clean)
        if resolved:
            return resolved
        return humanize(last_segment(clean) or clean)

    def inventory(self, manifest: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Unique items by display name, most expensive (ducats) first."""
        items: Dict[str, Dict[str, Any]] = {}
        skipped = 0
        for entry in manifest:
            item_type = entry.get("ItemType") if isinstance(entry, dict) else None
            if not isinstance(item_type, str) or not item_type:
                skipped += 1
                continue
            name = self.item_name(item_type)
            if not name:
                skipped += 1
                continue
            try:
                ducats = int(entry.get("PrimePrice") or 0)
                credits = int(entry.get("RegularPrice") or 0)
            except (TypeError, ValueError):
                skipped += 1
                continue
            items.setdefault(name, {"name": name, "ducats": ducats, "credits": credits})
        if skipped:
            log.warning("baro_items_skipped count=%d", skipped)
        return sorted(items.values(), key=lambda i: i["ducats"], reverse=True)

    def entries(self, snapshot: RawSnapshot, now: datetime) -> Iterable[Any]:
        traders = snapshot.body.get("VoidTraders") or []
        return traders[:1]

    def classify_entry(self, raw: Dict[str, Any], now: datetime) -> ClassifiedEntity:
        activation = parse_epoch_ms(raw.get("Activation"))
        expiry = parse_epoch_ms(raw.get("Expiry"))
        status = lifecycle_status(activation, expiry, now)

        node_id = raw.get("Node") or UNKNOWN
        node = self.resolver.node(node_id)
        # resolver.node keeps the raw id as the name for unknown nodes
        relay, planet = node.name, node.system

        inventory = (
            self.inventory(raw.get("Manifest") or [])
            if status is LifecycleStatus.ACTIVE
            else []
        )
        return ClassifiedEntity(
            id=oid(raw.get("_id")),
            display_name="Baro Ki'Teer",
            location_name=f"{relay} ({planet})",
            category="void_trader",
            activation_at=activation,
            expiry_at=expiry,
            lifecycle_status=status,
            extra_attributes={
                "relay": relay,
                "planet": planet,
                "character": raw.get("Character", ""),
                "inventory": inventory,
            },
        )

    def select(
        self, entities: List[ClassifiedEntity], now: datetime
    ) -> Dict[str, ClassifiedEntity]:
        if not entities:
            raise ClassificationError("no void trader in snapshot")
        return {"primary": entities[0]}

    def should_ping(self, entity: ClassifiedEntity) -> bool:
        return entity.is_active and bool(entity.extra_attributes.get("inventory"))

    def ping_text(self, entity: ClassifiedEntity) -> str:
        return "Baro Ki'Teer has arrived with new inventory! Check the updated list above."

    def render(self, entity: ClassifiedEntity) -> Dict[str, Any]:
        relay = entity.extra_attributes.get("relay", UNKNOWN)
        planet = entity.extra_attributes.get("planet", UNKNOWN)
        if entity.is_active:
            description = f"Leaves {relay} ({planet}) {discord_timestamp(entity.expiry_at)}"
        else:
            description = (
                f"Arriving at {planet} ({relay}) {discord_timestamp(entity.activation_at)}"
            )

        inventory = entity.extra_attributes.get("inventory") or []
        if not entity.is_active or not inventory:
            return {"embeds": [make_embed("Baro Ki'Teer", description, color=BARO_COLOR)]}

        names, ducats, credits = "", "", ""
        shown = 0
        for item in inventory:
            n, d, c = f"{item['name']}\n", f"{item['ducats']}\n", f"{item['credits']:,}\n"
            if (
                len(names) + len(n) >= EMBED_FIELD_VALUE_MAX
                or len(ducats) + len(d) >= EMBED_FIELD_VALUE_MAX
                or len(credits) + len(c) >= EMBED_FIELD_VALUE_MAX
            ):
                log.warning(
                    "baro_field_limit_reached shown=%d total=%d", shown, len(inventory)
                )
                break
            names, ducats, credits = names + n, ducats + d, credits + c
            shown += 1

        footer = None
        if shown < len(inventory):
            footer = f"Showing {shown} of {len(inventory)} items (Discord limit reached)"
        fields = [
            {"name": "Item", "value": names or "No items", "inline": True},
            {"name": "Ducats", "value": ducats or "0", "inline": True},
            {"name": "Credits", "value": credits or "0", "inline": True},
        ]
        embed = make_embed("Baro Ki'Teer", description, fields, footer=footer, color=BARO_COLOR)
        return {"embeds": [embed]}
