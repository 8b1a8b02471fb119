from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from notification_engine.channels.registry import ADDRESS_FIELDS, missing_address_message
from notification_engine.core.errors import (
    InvalidStateTransitionError,
    NotificationNotFoundError,
    NotificationValidationError,
    TemplateError,
)
from notification_engine.core.logging import get_logger
from notification_engine.core.timeutil import utc_now
from notification_engine.domain.lifecycle import CANCELABLE, READABLE, ensure_transition
from notification_engine.domain.models import (
    Notification,
    NotificationDraft,
    NotificationFilter,
    NotificationPage,
    NotificationStatus,
)
from notification_engine.notifications.events import EventNotifier, LifecycleEvent
from notification_engine.store.base import NotificationStore
from notification_engine.templates.renderer import TemplateRenderer
from notification_engine.worker.dispatcher import DispatchRunner

logger = get_logger("services.notifications")


class NotificationService:
    """Boundary operations the HTTP layer (or any other caller) drives."""

    def __init__(
        self,
        *,
        store: NotificationStore,
        notifier: EventNotifier,
        runner: DispatchRunner | None = None,
        renderer: TemplateRenderer | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        recovery_delay_seconds: int = 60,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.runner = runner
        self.renderer = renderer
        self.clock = clock
        self.id_factory = id_factory
        self.recovery_delay_seconds = recovery_delay_seconds

    async def create(self, draft: NotificationDraft) -> Notification:
        """Persist a notification and, when it is due now, start its first dispatch cycle.

        Delivery happens in the background; the returned notification is the
        freshly stored ``pending`` or ``scheduled`` record.
        """
        if not draft.channels:
            raise NotificationValidationError("At least one delivery channel is required.")
        for channel in draft.channels:
            if not getattr(draft, ADDRESS_FIELDS[channel]):
                raise NotificationValidationError(missing_address_message(channel))

        subject = draft.subject
        body = draft.body
        template_id = draft.template_id
        metadata: dict[str, Any] = dict(draft.metadata)

        if draft.template_id or draft.template_code:
            if self.renderer is None:
                raise TemplateError("Template rendering is not configured.")
            rendered = await self.renderer.render(
                tenant_id=draft.tenant_id,
                template_id=draft.template_id,
                template_code=draft.template_code,
                variables=draft.variables,
            )
            unsupported = [channel for channel in draft.channels if channel not in rendered.supported_channels]
            if unsupported:
                raise NotificationValidationError(
                    f"Template {rendered.template_code} does not support channels: {', '.join(unsupported)}."
                )
            if rendered.subject:
                subject = rendered.subject
            if rendered.body:
                body = rendered.body
            template_id = rendered.template_id
            metadata["original_template"] = rendered.template_code
            metadata["variables"] = dict(draft.variables)

        if not body.strip():
            raise NotificationValidationError("A message body or a template that renders one is required.")

        now = self.clock()
        status: NotificationStatus = "pending"
        if draft.scheduled_for is not None and draft.scheduled_for > now:
            status = "scheduled"
        # Lets the retry sweep pick the row up if the background trigger never claims it.
        next_attempt_at = now + timedelta(seconds=self.recovery_delay_seconds) if status == "pending" else None

        notification = await self.store.create(
            Notification(
                id=self.id_factory(),
                tenant_id=draft.tenant_id,
                user_id=draft.user_id,
                recipient_email=draft.recipient_email,
                recipient_phone=draft.recipient_phone,
                recipient_device_token=draft.recipient_device_token,
                subject=subject,
                body=body,
                template_id=template_id,
                channels=list(draft.channels),
                priority=draft.priority,
                status=status,
                scheduled_for=draft.scheduled_for,
                next_attempt_at=next_attempt_at,
                metadata=metadata,
                external_id=draft.external_id,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            "notifications.created",
            extra={
                "component": "notifications",
                "notification_id": notification.id,
                "tenant_id": notification.tenant_id,
                "status": notification.status,
                "channels": notification.channels,
            },
        )
        self.notifier.emit("created", notification)

        if notification.status == "pending" and self.runner is not None:
            self.runner.trigger(notification)
        return notification

    async def get(self, notification_id: str, tenant_id: str) -> Notification:
        notification = await self.store.get(notification_id, tenant_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        return notification

    async def list(self, filters: NotificationFilter) -> NotificationPage:
        return await self.store.list(filters)

    async def mark_as_read(self, notification_id: str, tenant_id: str) -> Notification:
        notification = await self.get(notification_id, tenant_id)
        if notification.status == "read":
            return notification
        ensure_transition(notification, "read")

        now = self.clock()
        return await self._conditioned_transition(
            notification,
            allowed=READABLE,
            target="read",
            patch={"status": "read", "read_at": now, "updated_at": now},
            event="read",
            idempotent=True,
        )

    async def cancel(self, notification_id: str, tenant_id: str) -> Notification:
        notification = await self.get(notification_id, tenant_id)
        ensure_transition(notification, "canceled")

        return await self._conditioned_transition(
            notification,
            allowed=CANCELABLE,
            target="canceled",
            patch={"status": "canceled", "next_attempt_at": None, "updated_at": self.clock()},
            event="cancelled",
            idempotent=False,
        )

    async def _conditioned_transition(
        self,
        notification: Notification,
        *,
        allowed: frozenset[NotificationStatus],
        target: NotificationStatus,
        patch: dict[str, Any],
        event: LifecycleEvent,
        idempotent: bool,
    ) -> Notification:
        applied = await self.store.update_if_status(notification.id, notification.status, patch)
        if not applied:
            current = await self.get(notification.id, notification.tenant_id)
            if idempotent and current.status == target:
                return current
            if current.status not in allowed:
                raise InvalidStateTransitionError(notification.id, current.status, target)
            # The status moved between two allowed states; try once more from there.
            applied = await self.store.update_if_status(current.id, current.status, patch)
            if not applied:
                raise InvalidStateTransitionError(notification.id, current.status, target)
            notification = current

        updated = notification.model_copy(update=patch)
        logger.info(
            "notifications.status_changed",
            extra={
                "component": "notifications",
                "notification_id": updated.id,
                "tenant_id": updated.tenant_id,
                "status": updated.status,
            },
        )
        self.notifier.emit(event, updated)
        return updated
