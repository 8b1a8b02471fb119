from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notification_engine.core.timeutil import as_utc

Channel = Literal["email", "sms", "push", "in_app"]
Priority = Literal["low", "normal", "high", "urgent"]
NotificationStatus = Literal[
    "pending",
    "scheduled",
    "processing",
    "delivered",
    "partially_delivered",
    "failed",
    "read",
    "canceled",
]

CHANNELS: tuple[Channel, ...] = ("email", "sms", "push", "in_app")


def _normalize_channels(value: Any) -> Any:
    if not isinstance(value, list | tuple):
        return value
    ordered: list[Any] = []
    for item in value:
        channel = item.strip().lower() if isinstance(item, str) else item
        if channel not in ordered:
            ordered.append(channel)
    return ordered


def _strip_optional(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    return value


class DeliveryAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    channel: Channel
    timestamp: datetime
    success: bool
    error_message: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class Notification(BaseModel):
    id: str
    tenant_id: str
    user_id: str | None = None
    recipient_email: str | None = None
    recipient_phone: str | None = None
    recipient_device_token: str | None = None
    subject: str = ""
    body: str = ""
    template_id: str | None = None
    channels: list[Channel]
    priority: Priority = "normal"
    status: NotificationStatus = "pending"
    scheduled_for: datetime | None = None
    next_attempt_at: datetime | None = None
    delivery_attempts: list[DeliveryAttempt] = Field(default_factory=list)
    retry_count: int = 0
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    external_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("channels", mode="before")
    @classmethod
    def _dedupe_channels(cls, value: Any) -> Any:
        return _normalize_channels(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator(
        "scheduled_for",
        "next_attempt_at",
        "delivered_at",
        "read_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def _utc_datetimes(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    def succeeded_channels(self) -> set[str]:
        return {attempt.channel for attempt in self.delivery_attempts if attempt.success}

    def outstanding_channels(self) -> list[Channel]:
        succeeded = self.succeeded_channels()
        return [channel for channel in self.channels if channel not in succeeded]


class NotificationDraft(BaseModel):
    tenant_id: str = Field(min_length=1)
    user_id: str | None = None
    recipient_email: str | None = None
    recipient_phone: str | None = None
    recipient_device_token: str | None = None
    subject: str = ""
    body: str = ""
    template_id: str | None = None
    template_code: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    channels: list[Channel]
    priority: Priority = "normal"
    metadata: dict[str, Any] = Field(default_factory=dict)
    scheduled_for: datetime | None = None
    external_id: str | None = None

    @field_validator("channels", mode="before")
    @classmethod
    def _dedupe_channels(cls, value: Any) -> Any:
        return _normalize_channels(value)

    @field_validator(
        "user_id",
        "recipient_email",
        "recipient_phone",
        "recipient_device_token",
        "template_id",
        "template_code",
        "external_id",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        return _strip_optional(value)

    @field_validator("scheduled_for")
    @classmethod
    def _utc_schedule(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class NotificationFilter(BaseModel):
    tenant_id: str | None = None
    user_id: str | None = None
    status: NotificationStatus | None = None
    channel: Channel | None = None
    priority: Priority | None = None
    template_id: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    delivered_after: datetime | None = None
    delivered_before: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def matches(self, notification: Notification) -> bool:
        if self.tenant_id is not None and notification.tenant_id != self.tenant_id:
            return False
        if self.user_id is not None and notification.user_id != self.user_id:
            return False
        if self.status is not None and notification.status != self.status:
            return False
        if self.channel is not None and self.channel not in notification.channels:
            return False
        if self.priority is not None and notification.priority != self.priority:
            return False
        if self.template_id is not None and notification.template_id != self.template_id:
            return False
        if not _within(notification.created_at, self.created_after, self.created_before):
            return False
        if self.delivered_after is not None or self.delivered_before is not None:
            if notification.delivered_at is None:
                return False
            if not _within(notification.delivered_at, self.delivered_after, self.delivered_before):
                return False
        return True


class NotificationPage(BaseModel):
    items: list[Notification]
    total: int


def _within(value: datetime, after: datetime | None, before: datetime | None) -> bool:
    if after is not None and value < as_utc(after):
        return False
    if before is not None and value > as_utc(before):
        return False
    return True
