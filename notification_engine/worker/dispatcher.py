from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from notification_engine.channels.base import ChannelMessage
from notification_engine.channels.registry import ChannelRegistry, missing_address_message, resolve_target
from notification_engine.core.errors import (
    AlreadyProcessingError,
    NotDispatchableError,
    NotificationNotFoundError,
    StoreError,
)
from notification_engine.core.logging import (
    bind_notification_id,
    bind_tenant_id,
    get_logger,
    reset_notification_id,
    reset_tenant_id,
)
from notification_engine.core.timeutil import utc_now
from notification_engine.domain.lifecycle import resolve_cycle_status, succeeded_channels
from notification_engine.domain.models import Channel, DeliveryAttempt, Notification
from notification_engine.notifications.events import EventNotifier, LifecycleEvent
from notification_engine.store.base import NotificationStore
from notification_engine.worker.retry import RetryPolicy, sanitize_error

logger = get_logger("worker.dispatcher")


class Dispatcher:
    def __init__(
        self,
        *,
        store: NotificationStore,
        registry: ChannelRegistry,
        notifier: EventNotifier,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.registry = registry
        self.notifier = notifier
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock

    async def dispatch(self, notification: Notification | str) -> Notification:
        """Run one dispatch cycle and return the notification as persisted afterwards.

        Raises ``NotDispatchableError`` when the notification is not pending and
        ``AlreadyProcessingError`` when another worker claimed it first. Channel
        failures never escape; they are recorded as failed attempts.
        """
        if isinstance(notification, str):
            loaded = await self.store.get(notification)
            if loaded is None:
                raise NotificationNotFoundError(notification)
            notification = loaded

        if notification.status != "pending":
            raise NotDispatchableError(notification)

        claimed = await self.store.update_if_status(
            notification.id,
            "pending",
            {"status": "processing", "next_attempt_at": None},
        )
        if not claimed:
            raise AlreadyProcessingError(notification.id)

        token = bind_notification_id(notification.id)
        tenant_token = bind_tenant_id(notification.tenant_id)
        try:
            current = await self.store.get(notification.id)
            if current is None:
                raise StoreError(f"Notification {notification.id} disappeared after it was claimed.")
            return await self._run_cycle(current)
        except Exception as exc:
            # No-op unless the row is still in processing.
            await self._release_claim(notification, exc)
            raise
        finally:
            reset_tenant_id(tenant_token)
            reset_notification_id(token)

    async def _run_cycle(self, notification: Notification) -> Notification:
        channels = notification.outstanding_channels()
        logger.info(
            "dispatcher.cycle_started",
            extra={
                "component": "dispatcher",
                "tenant_id": notification.tenant_id,
                "channels": channels,
                "retry_count": notification.retry_count,
            },
        )

        new_attempts = await asyncio.gather(*(self._attempt(notification, channel) for channel in channels))
        attempts = [*notification.delivery_attempts, *new_attempts]
        now = self.clock()

        patch: dict[str, Any] = {"delivery_attempts": attempts, "updated_at": now}
        event: LifecycleEvent | None
        succeeded = succeeded_channels(attempts)
        failed = [channel for channel in notification.channels if channel not in succeeded]
        if not failed:
            patch.update(status="delivered", delivered_at=now, next_attempt_at=None)
            event = "delivered"
        else:
            decision = self.retry_policy.should_retry(notification.retry_count)
            status = resolve_cycle_status(notification.channels, attempts, retry_permitted=decision.retry)
            patch.update(
                status=status,
                retry_count=decision.retry_count,
                next_attempt_at=decision.next_attempt_at(now),
            )
            event = {"pending": "retry", "failed": "failed"}.get(status)

        await self._persist_outcome(notification, patch)
        updated = notification.model_copy(update=patch)

        logger.info(
            "dispatcher.cycle_finished",
            extra={
                "component": "dispatcher",
                "tenant_id": notification.tenant_id,
                "status": updated.status,
                "attempted": channels,
                "failed_channels": failed,
                "retry_count": updated.retry_count,
                "next_attempt_at": updated.next_attempt_at,
            },
        )
        if event is not None:
            self.notifier.emit(event, updated)
        return updated

    async def _attempt(self, notification: Notification, channel: Channel) -> DeliveryAttempt:
        target = resolve_target(notification, channel)
        if target is None:
            return DeliveryAttempt(
                channel=channel,
                timestamp=self.clock(),
                success=False,
                error_message=missing_address_message(channel),
            )

        outcome = await self.registry.send(
            ChannelMessage(
                notification_id=notification.id,
                tenant_id=notification.tenant_id,
                channel=channel,
                target=target,
                subject=notification.subject,
                body=notification.body,
                priority=notification.priority,
                metadata=notification.metadata,
            )
        )
        return DeliveryAttempt(
            channel=channel,
            timestamp=self.clock(),
            success=outcome.success,
            error_message=None if outcome.success else outcome.error,
        )

    async def _persist_outcome(self, notification: Notification, patch: dict[str, Any]) -> None:
        persisted = await self.store.update_if_status(notification.id, "processing", patch)
        if not persisted:
            raise StoreError(f"Notification {notification.id} left processing while its dispatch cycle was running.")

    async def _release_claim(self, notification: Notification, cause: Exception) -> None:
        retry_at = self.clock() + timedelta(seconds=self.retry_policy.backoff_seconds)
        logger.error(
            "dispatcher.cycle_aborted",
            extra={
                "component": "dispatcher",
                "tenant_id": notification.tenant_id,
                "error": sanitize_error(cause, default_message="dispatch cycle aborted"),
            },
        )
        try:
            await self.store.update_if_status(
                notification.id,
                "processing",
                {"status": "pending", "next_attempt_at": retry_at},
            )
        except Exception as exc:
            logger.error(
                "dispatcher.release_failed",
                extra={
                    "component": "dispatcher",
                    "tenant_id": notification.tenant_id,
                    "error": sanitize_error(exc, default_message="processing claim could not be released"),
                },
            )


class DispatchRunner:
    """Starts dispatch cycles in the background so triggering never waits for delivery."""

    def __init__(self, dispatcher: Dispatcher, *, max_concurrency: int = 0) -> None:
        self.dispatcher = dispatcher
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None
        self._tasks: set[asyncio.Task[Notification | None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def trigger(self, notification: Notification | str) -> asyncio.Task[Notification | None]:
        task = asyncio.create_task(self._run(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, notification: Notification | str) -> Notification | None:
        if self._semaphore is None:
            return await self._dispatch_logged(notification)
        async with self._semaphore:
            return await self._dispatch_logged(notification)

    async def _dispatch_logged(self, notification: Notification | str) -> Notification | None:
        notification_id = notification if isinstance(notification, str) else notification.id
        try:
            return await self.dispatcher.dispatch(notification)
        except (AlreadyProcessingError, NotDispatchableError) as exc:
            logger.info(
                "dispatcher.trigger_skipped",
                extra={"component": "dispatcher", "notification_id": notification_id, "reason": str(exc)},
            )
        except Exception as exc:
            logger.error(
                "dispatcher.trigger_failed",
                extra={
                    "component": "dispatcher",
                    "notification_id": notification_id,
                    "error": sanitize_error(exc, default_message="dispatch cycle failed"),
                },
            )
        return None
