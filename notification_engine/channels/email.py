from __future__ import annotations

import re
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

from fastapi.concurrency import run_in_threadpool

from notification_engine.channels.base import (
    ChannelMessage,
    ChannelNotConfiguredError,
    ChannelSendError,
    SendOutcome,
)
from notification_engine.core.logging import get_logger
from notification_engine.core.settings import Settings

logger = get_logger("channels.email")

_HTML_TAG = re.compile(r"<\s*/?\s*[a-zA-Z][^>]*>")
_PRIORITY_HEADERS = {"urgent": "1", "high": "2", "normal": "3", "low": "5"}


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    from_email: str
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    use_ssl: bool = False
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpConfig | None":
        host = (settings.SMTP_HOST or "").strip()
        from_email = (settings.EMAIL_FROM or "").strip()
        if not host or not from_email:
            return None
        return cls(
            host=host,
            port=settings.SMTP_PORT,
            from_email=from_email,
            username=(settings.SMTP_USERNAME or "").strip() or None,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            use_ssl=settings.SMTP_USE_SSL,
            timeout_seconds=settings.CHANNEL_HTTP_TIMEOUT_SECONDS,
        )


class SmtpEmailSender:
    def __init__(self, config: SmtpConfig | None) -> None:
        self.config = config

    async def send(self, message: ChannelMessage) -> SendOutcome:
        if self.config is None:
            raise ChannelNotConfiguredError("SMTP transport is not configured.")
        email = build_email_message(message, from_email=self.config.from_email)
        await run_in_threadpool(self._deliver, email, message)
        return SendOutcome.ok()

    def _deliver(self, email: EmailMessage, message: ChannelMessage) -> None:
        config = self.config
        assert config is not None
        recipient_domain = _recipient_domain(message.target)
        try:
            if config.use_ssl:
                with smtplib.SMTP_SSL(host=config.host, port=config.port, timeout=config.timeout_seconds) as server:
                    self._login_if_needed(server)
                    server.send_message(email)
            else:
                with smtplib.SMTP(host=config.host, port=config.port, timeout=config.timeout_seconds) as server:
                    if config.use_tls:
                        server.starttls()
                    self._login_if_needed(server)
                    server.send_message(email)
        except (OSError, smtplib.SMTPException) as exc:
            logger.warning(
                "channels.email_send_failed",
                extra={
                    "component": "channels",
                    "tenant_id": message.tenant_id,
                    "recipient_domain": recipient_domain,
                },
            )
            raise ChannelSendError(f"Failed to send notification email: {exc}") from exc

        logger.info(
            "channels.email_sent",
            extra={
                "component": "channels",
                "tenant_id": message.tenant_id,
                "recipient_domain": recipient_domain,
            },
        )

    def _login_if_needed(self, server: smtplib.SMTP) -> None:
        config = self.config
        if config is not None and config.username and config.password:
            server.login(config.username, config.password)


def build_email_message(message: ChannelMessage, *, from_email: str) -> EmailMessage:
    email = EmailMessage()
    email["From"] = from_email
    email["To"] = message.target
    email["Subject"] = message.subject
    email["X-Notification-ID"] = message.notification_id
    email["X-Priority"] = _PRIORITY_HEADERS.get(message.priority, "3")
    email.set_content(_HTML_TAG.sub("", message.body) if _is_html(message.body) else message.body)
    if _is_html(message.body):
        email.add_alternative(message.body, subtype="html")
    return email


def _is_html(body: str) -> bool:
    return bool(_HTML_TAG.search(body))


def _recipient_domain(recipient: str) -> str:
    value = recipient.strip().lower()
    if "@" not in value:
        return "unknown"
    return value.rsplit("@", maxsplit=1)[-1] or "unknown"
