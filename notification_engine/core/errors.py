from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from notification_engine.domain.models import Notification


class NotificationError(Exception):
    pass


class NotificationValidationError(NotificationError):
    pass


class TemplateError(NotificationError):
    pass


class NotificationNotFoundError(NotificationError):
    def __init__(self, notification_id: str) -> None:
        super().__init__(f"Notification {notification_id} not found.")
        self.notification_id = notification_id


class NotDispatchableError(NotificationError):
    """Raised when a dispatch cycle is requested for a notification that is not pending.

    The notification is attached unchanged so callers can inspect its current state.
    """

    def __init__(self, notification: Notification) -> None:
        super().__init__(
            f"Notification {notification.id} is {notification.status}; only pending notifications can be dispatched."
        )
        self.notification = notification


class AlreadyProcessingError(NotificationError):
    def __init__(self, notification_id: str) -> None:
        super().__init__(f"Notification {notification_id} was claimed by another dispatch cycle.")
        self.notification_id = notification_id


class InvalidStateTransitionError(NotificationError):
    def __init__(self, notification_id: str, current: str, requested: str) -> None:
        super().__init__(f"Cannot move notification {notification_id} from {current} to {requested}.")
        self.notification_id = notification_id
        self.current = current
        self.requested = requested


class StoreError(NotificationError):
    pass
