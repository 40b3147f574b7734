"""Feed instances plugged into the shared engine."""

from __future__ import annotations

from typing import Dict

from ..config import Settings
from ..localization import LocalizationResolver
from ..models import FeedKind
from .arbitration import ArbitrationFeed, load_tiers
from .baro import BaroFeed
from .base import Feed
from .fissures import FissureFeed

__all__ = ["ArbitrationFeed", "BaroFeed", "Feed", "FissureFeed", "build_feeds"]


def build_feeds(settings: Settings, resolver: LocalizationResolver) -> Dict[FeedKind, Feed]:
    """Instantiate every feed enabled in ``settings``."""
    feeds: Dict[FeedKind, Feed] = {}
    if settings.feature_fissures:
        feeds[FeedKind.FISSURES] = FissureFeed(resolver, settings.worldstate_url)
    if settings.feature_baro:
        feeds[FeedKind.BARO] = BaroFeed(resolver, settings.worldstate_url)
    if settings.feature_arbitration:
        feeds[FeedKind.ARBITRATION] = ArbitrationFeed(
            resolver,
            settings.arbitration_url,
            tiers=load_tiers(settings.arby_tiers_path),
        )
    return feeds
