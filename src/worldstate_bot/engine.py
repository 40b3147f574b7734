"""
Engine: wires one scheduler per enabled feed around shared collaborators.

This is the surface the command layer talks to: configure or remove a
subscription, trigger an immediate delivery for one community, read health.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from .config import Settings, get_settings
from .delivery import DeliveryTarget, DiscordDelivery
from .errors import ConfigurationError, PersistenceError, WorldstateBotError
from .feeds import Feed, build_feeds
from .fetcher import SnapshotFetcher
from .localization import LocalizationResolver
from .logging_utils import get_logger
from .models import FeedKind, ReconcileReport, Subscription
from .ping_cleanup import PingCleanup
from .reconciler import Reconciler
from .scheduler import FeedScheduler
from .subscription_store import SubscriptionStore

log = get_logger("engine")


def _interval_for(settings: Settings, kind: FeedKind) -> int:
    return {
        FeedKind.FISSURES: settings.fissure_interval_seconds,
        FeedKind.BARO: settings.baro_interval_seconds,
        FeedKind.ARBITRATION: settings.arbitration_interval_seconds,
    }[kind]


class Engine:
    def __init__(
        self,
        settings: Settings,
        store: SubscriptionStore,
        fetcher: SnapshotFetcher,
        delivery: DeliveryTarget,
        feeds: Dict[FeedKind, Feed],
    ):
        self.settings = settings
        self.store = store
        self.fetcher = fetcher
        self.delivery = delivery
        self.feeds = feeds
        self.cleanup = PingCleanup(delivery, settings.ping_delete_after_seconds)
        self.schedulers: Dict[FeedKind, FeedScheduler] = {}
        for kind, feed in feeds.items():
            reconciler = Reconciler(
                feed,
                store,
                delivery,
                self.cleanup,
                delivery_timeout=settings.delivery_timeout_seconds,
            )
            self.schedulers[kind] = FeedScheduler(
                feed,
                fetcher,
                store,
                reconciler,
                interval_seconds=_interval_for(settings, kind),
                unhealthy_after=settings.unhealthy_after_errors,
            )

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        delivery: Optional[DeliveryTarget] = None,
        fetcher: Optional[SnapshotFetcher] = None,
    ) -> "Engine":
        """
        Build the production engine. Raises ConfigurationError when the bot
        token or the static lookup tables are missing, before anything runs.
        """
        settings = settings or get_settings()
        if delivery is None:
            if not settings.discord_bot_token:
                raise ConfigurationError("DISCORD_BOT_TOKEN is not set")
            delivery = DiscordDelivery(
                settings.discord_bot_token, api_base=settings.discord_api_base
            )
        resolver = LocalizationResolver.from_files(
            settings.regions_path,
            settings.language_path,
            cache_size=settings.name_cache_size,
        )
        try:
            store = SubscriptionStore(settings.subscriptions_db_path)
        except PersistenceError as e:
            raise ConfigurationError(f"subscription store unavailable: {e}") from e
        fetcher = fetcher or SnapshotFetcher(
            user_agent=settings.fetch_user_agent,
            timeout_seconds=settings.fetch_timeout_seconds,
        )
        feeds = build_feeds(settings, resolver)
        if not feeds:
            raise ConfigurationError("every feed is disabled")
        log.info("engine_built feeds=%s", ",".join(k.value for k in feeds))
        return cls(settings, store, fetcher, delivery, feeds)

    def scheduler(self, feed_kind: FeedKind) -> FeedScheduler:
        try:
            return self.schedulers[FeedKind(feed_kind)]
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"feed {feed_kind!r} is not enabled") from e

    def start(self) -> None:
        for sched in self.schedulers.values():
            sched.start()

    async def stop(self) -> None:
        for sched in self.schedulers.values():
            await sched.stop()
        await self.cleanup.cancel_all()
        await self.fetcher.close()
        await self.delivery.close()
        self.store.close()
        log.info("engine_stopped")

    async def run_once(self) -> Dict[FeedKind, Optional[ReconcileReport]]:
        """One scheduled pass per feed, in order."""
        return {kind: await s.run_pass() for kind, s in self.schedulers.items()}

    async def trigger_manual_reconcile(
        self, feed_kind: FeedKind, community_id: str
    ) -> ReconcileReport:
        return await self.scheduler(feed_kind).trigger_manual(community_id)

    async def configure_subscription(
        self,
        feed_kind: FeedKind,
        community_id: str,
        channel_id: str,
        criteria: Optional[Dict[str, Any]] = None,
        ping_target_id: Optional[str] = None,
    ) -> Tuple[Subscription, Optional[ReconcileReport]]:
        """
        Create or update a subscription and deliver the current state to it.

        Invalid criteria raise ValueError. A failed immediate delivery is
        logged and reported as None; the subscription is kept and picked up
        by the next significant change.
        """
        feed = self.scheduler(feed_kind).feed
        normalized = feed.normalize_criteria(criteria)
        sub = self.store.upsert(
            feed.kind,
            community_id,
            channel_id,
            normalized,
            ping_target_id=ping_target_id or None,
            match_key=feed.criteria_key(normalized),
        )
        try:
            report = await self.trigger_manual_reconcile(feed.kind, community_id)
        except WorldstateBotError as e:
            log.warning(
                "initial_delivery_failed feed=%s community=%s err=%s",
                feed.kind.value,
                community_id,
                e,
            )
            report = None
        return sub, report

    def remove_subscription(self, subscription_id: int) -> bool:
        return self.store.delete(subscription_id)

    def health(self) -> Dict[str, Any]:
        return {
            "feeds": {k.value: s.health() for k, s in self.schedulers.items()},
            "pending_ping_cleanups": self.cleanup.pending,
        }
