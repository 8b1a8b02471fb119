from __future__ import annotations

from typing import Protocol

from notification_engine.channels.base import ChannelMessage, SendOutcome


class InAppInbox(Protocol):
    async def deliver(self, message: ChannelMessage) -> str:
        ...


class InAppSender:
    def __init__(self, inbox: InAppInbox) -> None:
        self.inbox = inbox

    async def send(self, message: ChannelMessage) -> SendOutcome:
        message_id = await self.inbox.deliver(message)
        return SendOutcome.ok(provider_reference=message_id)
