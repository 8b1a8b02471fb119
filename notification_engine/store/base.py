from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from notification_engine.domain.models import (
    Notification,
    NotificationFilter,
    NotificationPage,
    NotificationStatus,
)


class NotificationStore(Protocol):
    """Persistence for notifications and their embedded attempt history.

    ``update_if_status`` is the only mutual-exclusion primitive the engine
    relies on: it must apply ``patch`` atomically and only while the stored
    status still equals ``expected_status``.
    """

    async def create(self, notification: Notification) -> Notification:
        ...

    async def get(self, notification_id: str, tenant_id: str | None = None) -> Notification | None:
        ...

    async def list(self, filters: NotificationFilter) -> NotificationPage:
        ...

    async def update_if_status(
        self,
        notification_id: str,
        expected_status: NotificationStatus,
        patch: dict[str, Any],
    ) -> bool:
        ...

    async def find_due_scheduled(self, now: datetime, limit: int) -> list[Notification]:
        ...

    async def find_due_retries(self, now: datetime, limit: int) -> list[Notification]:
        ...

    async def find_archivable(self, cutoff: datetime, limit: int) -> list[Notification]:
        ...
