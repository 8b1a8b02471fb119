from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from notification_engine.domain.models import Channel, Priority


class ChannelSendError(RuntimeError):
    pass


class ChannelNotConfiguredError(ChannelSendError):
    pass


@dataclass(frozen=True)
class ChannelMessage:
    notification_id: str
    tenant_id: str
    channel: Channel
    target: str
    subject: str
    body: str
    priority: Priority = "normal"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendOutcome:
    success: bool
    error: str | None = None
    provider_reference: str | None = None

    @classmethod
    def ok(cls, provider_reference: str | None = None) -> "SendOutcome":
        return cls(success=True, provider_reference=provider_reference)

    @classmethod
    def failed(cls, error: str) -> "SendOutcome":
        return cls(success=False, error=error)


class ChannelSender(Protocol):
    async def send(self, message: ChannelMessage) -> SendOutcome:
        ...
