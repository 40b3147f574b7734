"""
Reconciler: bring every matching subscription's message in line with one entity.

For each subscription the existing message is edited in place when we still
have its reference; if that fails (message or channel gone, permissions
revoked) a new message is posted and its reference stored. Mentions never go
into the persistent message: a separate ping is posted and deleted shortly
after by PingCleanup.

Subscriptions are delivered concurrently, each under its own timeout, and a
failure in one is recorded in the report without affecting the others.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from .delivery import DeliveryTarget
from .errors import DeliveryError, PersistenceError
from .feeds.base import Feed
from .logging_utils import get_logger
from .models import ClassifiedEntity, DeliveryFailure, ReconcileReport, Subscription
from .ping_cleanup import PingCleanup
from .subscription_store import SubscriptionStore

log = get_logger("reconciler")


class Reconciler:
    def __init__(
        self,
        feed: Feed,
        store: SubscriptionStore,
        delivery: DeliveryTarget,
        cleanup: PingCleanup,
        delivery_timeout: float = 15.0,
    ):
        self.feed = feed
        self.store = store
        self.delivery = delivery
        self.cleanup = cleanup
        self.delivery_timeout = delivery_timeout
        # Serializes deliveries to one subscription (scheduled pass vs manual trigger).
        self._locks: Dict[int, asyncio.Lock] = {}

    async def reconcile(
        self,
        entity: ClassifiedEntity,
        subscriptions: List[Subscription],
        suppress_repeat_pings: bool = False,
    ) -> ReconcileReport:
        """
        Deliver ``entity`` to every subscription whose criteria match it.

        Args:
            entity: The classified entity to publish.
            subscriptions: Candidate subscriptions; non-matching ones are skipped.
            suppress_repeat_pings: Skip the ping for subscriptions that were
                already delivered this entity (used by scheduled passes so a
                restart does not re-ping).

        Returns:
            ReconcileReport counting matched subscriptions only.
        """
        feed = self.feed.kind.value
        matched = [
            s for s in subscriptions if self.feed.matches(s.match_criteria, entity)
        ]
        report = ReconcileReport(attempted=len(matched))
        if not matched:
            log.debug("reconcile_no_matches feed=%s entity=%s", feed, entity.id)
            return report

        reasons = await asyncio.gather(
            *(self._reconcile_one(s, entity, suppress_repeat_pings) for s in matched)
        )
        for sub, reason in zip(matched, reasons):
            if reason is None:
                report.succeeded += 1
            else:
                report.failed.append(DeliveryFailure(sub.subscription_id, reason))

        log.info(
            "reconcile_done feed=%s entity=%s attempted=%d succeeded=%d failed=%d",
            feed,
            entity.id[:80],
            report.attempted,
            report.succeeded,
            len(report.failed),
        )
        return report

    async def _reconcile_one(
        self, sub: Subscription, entity: ClassifiedEntity, suppress_repeat_pings: bool
    ) -> Optional[str]:
        """Returns None on success, otherwise the failure reason."""
        lock = self._locks.setdefault(sub.subscription_id, asyncio.Lock())
        try:
            async with lock:
                await asyncio.wait_for(
                    self._deliver(sub, entity, suppress_repeat_pings),
                    timeout=self.delivery_timeout,
                )
            return None
        except asyncio.TimeoutError:
            reason = f"timed out after {self.delivery_timeout}s"
        except (DeliveryError, PersistenceError) as e:
            reason = f"{type(e).__name__}: {e}"
        except Exception as e:  # isolate anything unexpected to this subscription
            log.exception(
                "delivery_unexpected_error feed=%s subscription=%s",
                self.feed.kind.value,
                sub.subscription_id,
            )
            reason = f"{type(e).__name__}: {e}"
        log.warning(
            "delivery_failed feed=%s subscription=%s channel=%s reason=%s",
            self.feed.kind.value,
            sub.subscription_id,
            sub.target_channel_id,
            reason,
        )
        return reason

    async def _deliver(
        self, sub: Subscription, entity: ClassifiedEntity, suppress_repeat_pings: bool
    ) -> None:
        # Re-read under the lock: a concurrent delivery may have stored a new ref.
        current = self.store.get(sub.subscription_id)
        if current is None:
            log.info("subscription_gone subscription=%s", sub.subscription_id)
            self._locks.pop(sub.subscription_id, None)
            return
        channel = current.target_channel_id
        payload = self.feed.render(entity)

        edited = False
        if current.last_message_ref:
            try:
                await self.delivery.edit_message(
                    channel, current.last_message_ref, {**payload, "content": None}
                )
                edited = True
                log.debug(
                    "message_edited subscription=%s message=%s",
                    current.subscription_id,
                    current.last_message_ref,
                )
            except DeliveryError as e:
                log.warning(
                    "message_edit_failed subscription=%s message=%s err=%s fallback=create",
                    current.subscription_id,
                    current.last_message_ref,
                    e,
                )

        if not edited:
            message_ref = await self.delivery.send_message(channel, payload)
            log.info(
                "message_created subscription=%s channel=%s message=%s",
                current.subscription_id,
                channel,
                message_ref,
            )
            try:
                self.store.update_message_ref(current.subscription_id, message_ref)
            except PersistenceError as e:
                # The message is out; next pass will post again rather than edit.
                log.error(
                    "message_ref_persist_failed subscription=%s message=%s err=%s",
                    current.subscription_id,
                    message_ref,
                    e,
                )

        already_delivered = current.last_entity_id == entity.id
        role_id = (
            self.feed.ping_role(current, entity) if self.feed.should_ping(entity) else None
        )
        if role_id and not (suppress_repeat_pings and already_delivered):
            ping_ref = await self.delivery.send_message(
                channel, self.feed.ping_payload(role_id, entity)
            )
            self.cleanup.schedule(channel, ping_ref)
            log.info(
                "ping_sent subscription=%s role=%s channel=%s",
                current.subscription_id,
                role_id,
                channel,
            )

        if not already_delivered:
            try:
                self.store.mark_delivered(current.subscription_id, entity.id)
            except PersistenceError as e:
                log.error(
                    "mark_delivered_failed subscription=%s err=%s",
                    current.subscription_id,
                    e,
                )
