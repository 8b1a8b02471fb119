from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Any

from notification_engine.channels.base import ChannelMessage
from notification_engine.core.timeutil import utc_now
from notification_engine.domain.models import (
    Notification,
    NotificationFilter,
    NotificationPage,
    NotificationStatus,
)


class InMemoryNotificationStore:
    """Process-local store; every read hands back a copy so callers cannot mutate stored state."""

    def __init__(self) -> None:
        self._rows: dict[str, Notification] = {}
        self._lock = asyncio.Lock()

    async def create(self, notification: Notification) -> Notification:
        async with self._lock:
            if notification.id in self._rows:
                raise ValueError(f"notification {notification.id} already exists")
            self._rows[notification.id] = notification.model_copy(deep=True)
            return notification.model_copy(deep=True)

    async def get(self, notification_id: str, tenant_id: str | None = None) -> Notification | None:
        row = self._rows.get(notification_id)
        if row is None:
            return None
        if tenant_id is not None and row.tenant_id != tenant_id:
            return None
        return row.model_copy(deep=True)

    async def list(self, filters: NotificationFilter) -> NotificationPage:
        matched = [row for row in self._rows.values() if filters.matches(row)]
        matched.sort(key=lambda row: row.created_at, reverse=True)
        window = matched[filters.offset : filters.offset + filters.limit]
        return NotificationPage(items=[row.model_copy(deep=True) for row in window], total=len(matched))

    async def update_if_status(
        self,
        notification_id: str,
        expected_status: NotificationStatus,
        patch: dict[str, Any],
    ) -> bool:
        async with self._lock:
            row = self._rows.get(notification_id)
            if row is None or row.status != expected_status:
                return False
            self._rows[notification_id] = _apply_patch(row, patch)
            return True

    async def find_due_scheduled(self, now: datetime, limit: int) -> list[Notification]:
        due = [
            row
            for row in self._rows.values()
            if row.status == "scheduled" and row.scheduled_for is not None and row.scheduled_for <= now
        ]
        due.sort(key=lambda row: row.scheduled_for or now)
        return [row.model_copy(deep=True) for row in due[:limit]]

    async def find_due_retries(self, now: datetime, limit: int) -> list[Notification]:
        due = [
            row
            for row in self._rows.values()
            if row.status == "pending" and row.next_attempt_at is not None and row.next_attempt_at <= now
        ]
        due.sort(key=lambda row: row.next_attempt_at or now)
        return [row.model_copy(deep=True) for row in due[:limit]]

    async def find_archivable(self, cutoff: datetime, limit: int) -> list[Notification]:
        rows = [
            row
            for row in self._rows.values()
            if row.status == "delivered" and row.created_at < cutoff and not row.metadata.get("archived")
        ]
        rows.sort(key=lambda row: row.created_at)
        return [row.model_copy(deep=True) for row in rows[:limit]]


class InMemoryInbox:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def deliver(self, message: ChannelMessage) -> str:
        message_id = str(uuid.uuid4())
        self.messages.append(
            {
                "id": message_id,
                "tenant_id": message.tenant_id,
                "user_id": message.target,
                "notification_id": message.notification_id,
                "title": message.subject,
                "body": message.body,
                "metadata": dict(message.metadata),
                "created_at": utc_now(),
            }
        )
        return message_id


def _apply_patch(row: Notification, patch: dict[str, Any]) -> Notification:
    values = {**patch}
    values.setdefault("updated_at", utc_now())
    return row.model_copy(update=values, deep=True)
