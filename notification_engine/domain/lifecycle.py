"""Notification lifecycle: allowed status transitions and dispatch outcome rules."""

from __future__ import annotations

from collections.abc import Iterable

from notification_engine.core.errors import InvalidStateTransitionError
from notification_engine.domain.models import DeliveryAttempt, Notification, NotificationStatus

TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    "scheduled": frozenset({"pending", "canceled"}),
    "pending": frozenset({"processing", "canceled"}),
    "processing": frozenset({"delivered", "partially_delivered", "pending", "failed"}),
    "delivered": frozenset({"read"}),
    "partially_delivered": frozenset({"read"}),
    "failed": frozenset(),
    "read": frozenset(),
    "canceled": frozenset(),
}

# No dispatch cycle may start from these.
DISPATCH_TERMINAL: frozenset[NotificationStatus] = frozenset(
    {"delivered", "partially_delivered", "failed", "canceled", "read"}
)
CANCELABLE: frozenset[NotificationStatus] = frozenset({"pending", "scheduled"})
READABLE: frozenset[NotificationStatus] = frozenset({"delivered", "partially_delivered"})


def can_transition(current: NotificationStatus, target: NotificationStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(notification: Notification, target: NotificationStatus) -> None:
    if not can_transition(notification.status, target):
        raise InvalidStateTransitionError(notification.id, notification.status, target)


def succeeded_channels(attempts: Iterable[DeliveryAttempt]) -> set[str]:
    return {attempt.channel for attempt in attempts if attempt.success}


def resolve_cycle_status(
    requested: Iterable[str],
    attempts: Iterable[DeliveryAttempt],
    *,
    retry_permitted: bool,
) -> NotificationStatus:
    """Status a dispatch cycle ends in, given every attempt recorded so far.

    Success is counted across all cycles, so a channel that succeeded earlier
    keeps counting toward ``delivered`` even though it was not re-attempted.
    """
    succeeded = succeeded_channels(attempts)
    failed = [channel for channel in requested if channel not in succeeded]
    if not failed:
        return "delivered"
    if retry_permitted:
        return "pending"
    if not succeeded:
        return "failed"
    return "partially_delivered"
