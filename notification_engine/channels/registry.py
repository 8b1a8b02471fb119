from __future__ import annotations

from collections.abc import Mapping

from notification_engine.channels.base import ChannelMessage, ChannelSender, SendOutcome
from notification_engine.core.logging import get_logger
from notification_engine.domain.models import CHANNELS, Channel, Notification
from notification_engine.worker.retry import sanitize_error

logger = get_logger("channels.registry")

ADDRESS_FIELDS: dict[Channel, str] = {
    "email": "recipient_email",
    "sms": "recipient_phone",
    "push": "recipient_device_token",
    "in_app": "user_id",
}
_ADDRESS_LABELS: dict[Channel, str] = {
    "email": "recipient email",
    "sms": "recipient phone number",
    "push": "recipient device token",
    "in_app": "recipient user id",
}


def resolve_target(notification: Notification, channel: Channel) -> str | None:
    value = getattr(notification, ADDRESS_FIELDS[channel], None)
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def missing_address_message(channel: Channel) -> str:
    return f"Missing {_ADDRESS_LABELS[channel]} for {channel} channel"


class ChannelRegistry:
    def __init__(self, senders: Mapping[Channel, ChannelSender] | None = None) -> None:
        self._senders: dict[Channel, ChannelSender] = {}
        for channel, sender in (senders or {}).items():
            self.register(channel, sender)

    def register(self, channel: Channel, sender: ChannelSender) -> None:
        if channel not in CHANNELS:
            raise ValueError(f"unsupported channel: {channel}")
        self._senders[channel] = sender

    def is_registered(self, channel: Channel) -> bool:
        return channel in self._senders

    @property
    def channels(self) -> list[Channel]:
        return [channel for channel in CHANNELS if channel in self._senders]

    async def send(self, message: ChannelMessage) -> SendOutcome:
        sender = self._senders.get(message.channel)
        if sender is None:
            return SendOutcome.failed(f"No sender configured for {message.channel} channel")

        try:
            outcome = await sender.send(message)
        except Exception as exc:
            error_text = sanitize_error(exc, default_message=f"{message.channel} delivery failed")
            logger.warning(
                "channels.send_failed",
                extra={
                    "component": "channels",
                    "channel": message.channel,
                    "tenant_id": message.tenant_id,
                    "error": error_text,
                },
            )
            return SendOutcome.failed(error_text)

        if not outcome.success:
            return SendOutcome.failed(
                sanitize_error(
                    RuntimeError(outcome.error or ""),
                    default_message=f"{message.channel} delivery failed",
                )
            )
        return outcome
