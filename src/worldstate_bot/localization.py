"""
Localization resolver

Purpose
-------
Turn opaque upstream identifiers (``/Lotus/Language/...`` keys, node ids like
``SolNode27``, ``MT_*`` mission types) into display strings.

Design
------
- Two static JSON tables are loaded once per process: ``ExportRegions.json``
  (node -> name/system/mission/faction language keys) and ``dict.en.json``
  (language key -> English string). Missing or unreadable files raise
  ConfigurationError so the process fails before any loop starts.
- Resolution is a fallback chain: exact dictionary match, then the last
  ``/``-separated segment of the identifier, then the identifier unchanged.
- Category renames that upstream lumps under a generic label live in
  CATEGORY_OVERRIDES and are consulted before the chain.
- Resolved names are memoised in a cachetools LRUCache; the tables never
  change at runtime so the cache is never invalidated.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import cachetools

from .errors import ConfigurationError
from .logging_utils import get_logger

log = get_logger("localization")

# Upstream reports these under generic mission labels; players know them by
# their event names. Keys cover both the raw ``MT_*`` identifier and the
# resolved mission name.
CATEGORY_OVERRIDES: Dict[str, str] = {
    "MT_VOID_CASCADE": "Void Cascade",
    "VoidCascade": "Void Cascade",
    "MT_CORRUPTION": "Void Flood",
    "Corruption": "Void Flood",
    "MT_ARMAGEDDON": "Void Armageddon",
    "Armageddon": "Void Armageddon",
}

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class NodeInfo:
    node_id: str
    name: str
    system: str
    mission_name: str
    faction: str


def _load_json(path: Path, label: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"{label} lookup table not found: {path}") from e
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"{label} lookup table unreadable: {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{label} lookup table must be a JSON object: {path}")
    return data


def last_segment(identifier: str) -> str:
    """Final ``/``-separated segment, or "" when there is none."""
    return identifier.rstrip("/").rsplit("/", 1)[-1] if "/" in identifier else ""


class LocalizationResolver:
    def __init__(
        self,
        regions: Mapping[str, Any],
        language: Mapping[str, Any],
        cache_size: int = 1000,
    ):
        self._regions = regions
        self._language = language
        self._cache: cachetools.LRUCache = cachetools.LRUCache(maxsize=cache_size)

    @classmethod
    def from_files(
        cls, regions_path: Path, language_path: Path, cache_size: int = 1000
    ) -> "LocalizationResolver":
        regions = _load_json(Path(regions_path), "regions")
        language = _load_json(Path(language_path), "language")
        log.info(
            "localization_loaded regions=%d language=%d", len(regions), len(language)
        )
        return cls(regions, language, cache_size=cache_size)

    def lookup(self, key: str) -> Optional[str]:
        """Exact dictionary match only."""
        value = self._language.get(key)
        if isinstance(value, str) and value:
            return value
        return None

    def resolve(self, identifier: str) -> str:
        if identifier in self._cache:
            return self._cache[identifier]
        name = self.lookup(identifier) or last_segment(identifier) or identifier
        self._cache[identifier] = name
        return name

    def node(self, node_id: str) -> NodeInfo:
        """Resolved names for a star-chart node; unknown nodes keep their raw id."""
        region = self._regions.get(node_id)
        if not isinstance(region, dict):
            log.debug("node_not_found node=%s", node_id)
            return NodeInfo(node_id, node_id, UNKNOWN, UNKNOWN, UNKNOWN)

        def _field(name: str) -> str:
            raw = region.get(name)
            return self.resolve(raw) if raw else UNKNOWN

        return NodeInfo(
            node_id=node_id,
            name=_field("name") if region.get("name") else node_id,
            system=_field("systemName"),
            mission_name=_field("missionName"),
            faction=_field("factionName"),
        )

    def category(self, mission_type: str, node_id: Optional[str] = None) -> str:
        """Display category for a mission, overrides first."""
        if mission_type in CATEGORY_OVERRIDES:
            return CATEGORY_OVERRIDES[mission_type]

        if node_id:
            region = self._regions.get(node_id)
            key = region.get("missionName") if isinstance(region, dict) else None
            if key:
                name = self.resolve(key)
                if name.startswith("MissionName_"):
                    name = name[len("MissionName_"):]
                return CATEGORY_OVERRIDES.get(name, name)

        if mission_type.startswith("MT_"):
            return mission_type[3:].replace("_", " ").title()
        return mission_type or UNKNOWN
