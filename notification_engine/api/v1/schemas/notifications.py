from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from notification_engine.domain.models import Channel, Notification, Priority


class NotificationCreateIn(BaseModel):
    user_id: str | None = None
    recipient_email: str | None = None
    recipient_phone: str | None = None
    recipient_device_token: str | None = None
    subject: str = ""
    body: str = ""
    template_id: str | None = None
    template_code: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    channels: list[Channel] = Field(min_length=1)
    priority: Priority = "normal"
    metadata: dict[str, Any] = Field(default_factory=dict)
    scheduled_for: datetime | None = None
    external_id: str | None = None


class NotificationListOut(BaseModel):
    items: list[Notification]
    total: int
    page: int
    limit: int
