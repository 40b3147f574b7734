from __future__ import annotations

import asyncio
from typing import Set

from .delivery import DeliveryTarget
from .errors import DeliveryError
from .logging_utils import get_logger

log = get_logger("ping_cleanup")


class PingCleanup:
    """
    Owner of pending transient-ping deletions.

    Every scheduled deletion is a tracked task so ``cancel_all()`` can drop
    the ones still waiting at shutdown.
    """

    def __init__(self, delivery: DeliveryTarget, delay_seconds: float = 10.0):
        self.delivery = delivery
        self.delay_seconds = delay_seconds
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, channel_id: str, message_ref: str) -> asyncio.Task:
        task = asyncio.create_task(self._delete_later(channel_id, message_ref))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _delete_later(self, channel_id: str, message_ref: str) -> None:
        await asyncio.sleep(self.delay_seconds)
        try:
            await self.delivery.delete_message(channel_id, message_ref)
            log.debug("ping_deleted channel=%s message=%s", channel_id, message_ref)
        except DeliveryError as e:
            # Someone may have removed it by hand already.
            log.warning(
                "ping_delete_failed channel=%s message=%s err=%s",
                channel_id,
                message_ref,
                e,
            )

    async def cancel_all(self) -> int:
        """Cancel every pending deletion; returns how many were cancelled."""
        tasks = [t for t in self._tasks if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            log.info("ping_cleanup_cancelled count=%d", len(tasks))
        return len(tasks)
