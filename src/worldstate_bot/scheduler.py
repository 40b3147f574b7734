"""
Per-feed scheduler.

Each feed runs one cooperative loop: fetch, classify, reconcile whatever
changed, then wait a fixed interval. The wait happens whatever the outcome,
so a failed fetch only costs one tick. Manual triggers reuse fetch/classify
for a single community and never touch the fingerprint ledger.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .change_detector import FingerprintLedger
from .errors import ClassificationError, FetchError, PersistenceError
from .feeds.base import Feed
from .fetcher import SnapshotFetcher
from .logging_utils import get_logger
from .models import ClassifiedEntity, ReconcileReport
from .reconciler import Reconciler
from .subscription_store import SubscriptionStore
from .time_utils import now as utc_now

log = get_logger("scheduler")


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class FeedScheduler:
    def __init__(
        self,
        feed: Feed,
        fetcher: SnapshotFetcher,
        store: SubscriptionStore,
        reconciler: Reconciler,
        interval_seconds: float,
        clock: Callable[[], datetime] = utc_now,
        unhealthy_after: int = 3,
    ):
        self.feed = feed
        self.fetcher = fetcher
        self.store = store
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.unhealthy_after = unhealthy_after

        self.fingerprints = FingerprintLedger()
        # last entity propagated per slot, for slots that later disappear
        self._propagated: Dict[str, ClassifiedEntity] = {}
        self.state = SchedulerState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        # health
        self.last_success_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.consecutive_errors = 0
        self.last_report: Optional[ReconcileReport] = None

    @property
    def name(self) -> str:
        return self.feed.kind.value

    async def _observe(self) -> Dict[str, ClassifiedEntity]:
        snapshot = await self.fetcher.fetch(self.feed.source)
        now = self.clock()
        entities = self.feed.classify(snapshot, now)
        return self.feed.select(entities, now)

    def _record_failure(self, stage: str, err: Exception) -> None:
        self.consecutive_errors += 1
        self.last_error = f"{stage}: {err}"
        log.warning(
            "pass_failed feed=%s stage=%s err=%s consecutive=%d",
            self.name,
            stage,
            err,
            self.consecutive_errors,
        )
        if self.consecutive_errors == self.unhealthy_after:
            log.warning(
                "feed_unhealthy feed=%s consecutive_errors=%d last_error=%s",
                self.name,
                self.consecutive_errors,
                self.last_error,
            )

    def _record_success(self, report: ReconcileReport) -> None:
        if self.consecutive_errors >= self.unhealthy_after:
            log.info("feed_recovered feed=%s", self.name)
        self.consecutive_errors = 0
        self.last_error = None
        self.last_success_at = self.clock()
        self.last_report = report

    async def run_pass(self) -> Optional[ReconcileReport]:
        """
        One scheduled pass. Returns the combined report, or None when the
        fetch or classification failed (the fingerprint is left untouched so
        the change is retried next tick).

        Slots propagated earlier but no longer selected get the feed's
        vacated entity once and are then dropped from the ledger.
        """
        try:
            selected = await self._observe()
        except FetchError as e:
            self._record_failure("fetch", e)
            return None
        except ClassificationError as e:
            self._record_failure("classify", e)
            return None

        report = ReconcileReport()
        for slot, entity in selected.items():
            if not self.fingerprints.is_significant(entity, slot):
                log.debug("no_significant_change feed=%s slot=%s", self.name, slot)
                continue
            try:
                subscriptions = self.store.list_all(self.feed.kind)
            except PersistenceError as e:
                self._record_failure("store", e)
                return None
            log.info(
                "significant_change feed=%s slot=%s entity=%s status=%s subscriptions=%d",
                self.name,
                slot,
                entity.id[:80],
                entity.lifecycle_status.value,
                len(subscriptions),
            )
            report.merge(
                await self.reconciler.reconcile(
                    entity, subscriptions, suppress_repeat_pings=True
                )
            )
            self.fingerprints.advance(entity, slot)
            self._propagated[slot] = entity

        for slot in [s for s in self._propagated if s not in selected]:
            vacated = self.feed.vacated(self._propagated[slot], self.clock())
            if vacated is not None:
                try:
                    subscriptions = self.store.list_all(self.feed.kind)
                except PersistenceError as e:
                    self._record_failure("store", e)
                    return None
                log.info(
                    "slot_vacated feed=%s slot=%s subscriptions=%d",
                    self.name,
                    slot,
                    len(subscriptions),
                )
                report.merge(
                    await self.reconciler.reconcile(
                        vacated, subscriptions, suppress_repeat_pings=True
                    )
                )
            del self._propagated[slot]
            self.fingerprints.forget(slot)

        self._record_success(report)
        return report

    async def trigger_manual(self, community_id: str) -> ReconcileReport:
        """
        Deliver the current state to one community's subscriptions now.

        Skips the significance check and leaves the fingerprint ledger alone.
        FetchError, ClassificationError and PersistenceError propagate to the
        caller.
        """
        selected = await self._observe()
        subscriptions = self.store.list_by_community(self.feed.kind, community_id)
        log.info(
            "manual_trigger feed=%s community=%s subscriptions=%d entities=%d",
            self.name,
            community_id,
            len(subscriptions),
            len(selected),
        )
        report = ReconcileReport()
        for entity in selected.values():
            report.merge(await self.reconciler.reconcile(entity, subscriptions))
        return report

    async def _tick(self) -> None:
        try:
            await self.run_pass()
        except Exception as e:  # the loop must outlive any single pass
            log.exception("pass_crashed feed=%s", self.name)
            self._record_failure("unexpected", e)

    async def _loop(self) -> None:
        assert self._stop_event is not None
        log.info("scheduler_started feed=%s interval=%ss", self.name, self.interval_seconds)
        while not self._stop_event.is_set():
            await self._tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        log.info("scheduler_stopped feed=%s", self.name)

    def start(self) -> None:
        if self.state is SchedulerState.RUNNING:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"scheduler-{self.name}")
        self.state = SchedulerState.RUNNING

    async def stop(self) -> None:
        """Clear the pending wait and let an in-flight pass finish."""
        if self.state is not SchedulerState.RUNNING:
            return
        assert self._stop_event is not None and self._task is not None
        self._stop_event.set()
        await self._task
        self._task = None
        self.state = SchedulerState.IDLE

    def health(self) -> Dict[str, Any]:
        return {
            "feed": self.name,
            "state": self.state.value,
            "healthy": self.consecutive_errors < self.unhealthy_after,
            "consecutive_errors": self.consecutive_errors,
            "last_error": self.last_error,
            "last_success_at": (
                self.last_success_at.isoformat() if self.last_success_at else None
            ),
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "tracked_slots": len(self.fingerprints),
        }
