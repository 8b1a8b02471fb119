from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from notification_engine.core.logging import get_logger
from notification_engine.core.timeutil import to_iso_z, utc_now
from notification_engine.store.base import NotificationStore
from notification_engine.worker.dispatcher import DispatchRunner
from notification_engine.worker.retry import sanitize_error

logger = get_logger("worker.scheduler")

ARCHIVE_FLAG = "archived"


class NotificationScheduler:
    """Periodic duties: promote due scheduled notifications, re-enqueue due retries, archive old deliveries.

    Promotion and the retry sweep share one cadence; archival has its own,
    much longer one. Every duty is best-effort per notification.
    """

    def __init__(
        self,
        *,
        store: NotificationStore,
        runner: DispatchRunner,
        promotion_interval_seconds: int = 60,
        archival_interval_seconds: int = 86400,
        retention_days: int = 30,
        batch_limit: int = 500,
        recovery_delay_seconds: int = 60,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.runner = runner
        self.promotion_interval_seconds = max(1, promotion_interval_seconds)
        self.archival_interval_seconds = max(1, archival_interval_seconds)
        self.retention_days = max(1, retention_days)
        self.batch_limit = max(1, batch_limit)
        self.recovery_delay_seconds = max(1, recovery_delay_seconds)
        self.clock = clock
        self._next_promotion_at: datetime | None = None
        self._next_archival_at: datetime | None = None

    async def promote_due_once(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        due = await self.store.find_due_scheduled(now, self.batch_limit)
        recover_at = now + timedelta(seconds=self.recovery_delay_seconds)
        promoted = 0
        for notification in due:
            try:
                claimed = await self.store.update_if_status(
                    notification.id,
                    "scheduled",
                    {"status": "pending", "updated_at": now, "next_attempt_at": recover_at},
                )
            except Exception as exc:
                logger.error(
                    "scheduler.promotion_failed",
                    extra={
                        "component": "scheduler",
                        "notification_id": notification.id,
                        "tenant_id": notification.tenant_id,
                        "error": sanitize_error(exc, default_message="promotion failed"),
                    },
                )
                continue
            if not claimed:
                continue
            promoted += 1
            self.runner.trigger(
                notification.model_copy(update={"status": "pending", "updated_at": now, "next_attempt_at": recover_at})
            )

        if promoted:
            logger.info("scheduler.promoted", extra={"component": "scheduler", "count": promoted})
        return promoted

    async def requeue_retries_once(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        due = await self.store.find_due_retries(now, self.batch_limit)
        for notification in due:
            self.runner.trigger(notification)
        if due:
            logger.info("scheduler.retries_requeued", extra={"component": "scheduler", "count": len(due)})
        return len(due)

    async def archive_once(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        cutoff = now - timedelta(days=self.retention_days)
        candidates = await self.store.find_archivable(cutoff, self.batch_limit)
        archived = 0
        for notification in candidates:
            metadata = {**notification.metadata, ARCHIVE_FLAG: True, "archived_at": to_iso_z(now)}
            try:
                # Conditioned on delivered so a concurrent read is never overwritten.
                tagged = await self.store.update_if_status(notification.id, "delivered", {"metadata": metadata})
            except Exception as exc:
                logger.error(
                    "scheduler.archive_failed",
                    extra={
                        "component": "scheduler",
                        "notification_id": notification.id,
                        "tenant_id": notification.tenant_id,
                        "error": sanitize_error(exc, default_message="archival failed"),
                    },
                )
                continue
            if tagged:
                archived += 1

        logger.info(
            "scheduler.archived",
            extra={"component": "scheduler", "count": archived, "candidates": len(candidates)},
        )
        return archived

    async def run_once(self) -> dict[str, object]:
        """Run whichever duties are due and report what each did."""
        now = self.clock()
        errors = 0
        promoted = 0
        requeued = 0
        archived = 0

        if self._next_promotion_at is None or now >= self._next_promotion_at:
            self._next_promotion_at = now + timedelta(seconds=self.promotion_interval_seconds)
            try:
                promoted = await self.promote_due_once(now)
            except Exception as exc:
                errors += 1
                logger.error(
                    "scheduler.tick_promotion_error",
                    extra={"component": "scheduler", "error": sanitize_error(exc, default_message="scheduler error")},
                )
            try:
                requeued = await self.requeue_retries_once(now)
            except Exception as exc:
                errors += 1
                logger.error(
                    "scheduler.tick_retry_sweep_error",
                    extra={"component": "scheduler", "error": sanitize_error(exc, default_message="scheduler error")},
                )

        if self._next_archival_at is None or now >= self._next_archival_at:
            self._next_archival_at = now + timedelta(seconds=self.archival_interval_seconds)
            try:
                archived = await self.archive_once(now)
            except Exception as exc:
                errors += 1
                logger.error(
                    "scheduler.tick_archival_error",
                    extra={"component": "scheduler", "error": sanitize_error(exc, default_message="scheduler error")},
                )

        return {
            "tick_at": to_iso_z(now),
            "promoted": promoted,
            "retries_requeued": requeued,
            "archived": archived,
            "errors": errors,
        }

    async def run_forever(self, *, poll_seconds: float = 1.0, stop: asyncio.Event | None = None) -> None:
        logger.info(
            "scheduler.started",
            extra={
                "component": "scheduler",
                "promotion_interval_seconds": self.promotion_interval_seconds,
                "archival_interval_seconds": self.archival_interval_seconds,
            },
        )
        while stop is None or not stop.is_set():
            await self.run_once()
            if stop is None:
                await asyncio.sleep(poll_seconds)
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll_seconds)
            except TimeoutError:
                pass
        logger.info("scheduler.stopped", extra={"component": "scheduler"})
