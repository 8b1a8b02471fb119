from notification_engine.channels.base import (
    ChannelMessage,
    ChannelNotConfiguredError,
    ChannelSender,
    ChannelSendError,
    SendOutcome,
)
from notification_engine.channels.registry import ChannelRegistry, resolve_target

__all__ = [
    "ChannelMessage",
    "ChannelNotConfiguredError",
    "ChannelRegistry",
    "ChannelSendError",
    "ChannelSender",
    "SendOutcome",
    "resolve_target",
]
