import asyncio

import pytest

from notification_engine.channels import email as email_channel
from notification_engine.channels.base import ChannelMessage, ChannelNotConfiguredError, ChannelSendError
from notification_engine.channels.email import SmtpConfig, SmtpEmailSender, build_email_message
from notification_engine.core.settings import Settings


def _message(body: str = "Plain body") -> ChannelMessage:
    return ChannelMessage(
        notification_id="n-1",
        tenant_id="tenant-1",
        channel="email",
        target="ada@example.com",
        subject="Invoice ready",
        body=body,
        priority="urgent",
    )


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    fail_with: Exception | None = None

    def __init__(self, host: str, port: int, timeout: float) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.calls: list[str] = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.calls.append("quit")

    def starttls(self) -> None:
        self.calls.append("starttls")

    def login(self, username: str, password: str) -> None:
        self.calls.append(f"login:{username}")

    def send_message(self, message) -> None:
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.sent.append(message)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(email_channel.smtplib, "SMTP", FakeSMTP)

    async def fake_run_in_threadpool(func, *args, **kwargs):
        return func(*args, **kwargs)

    monkeypatch.setattr(email_channel, "run_in_threadpool", fake_run_in_threadpool)
    return FakeSMTP


def _config() -> SmtpConfig:
    return SmtpConfig(host="smtp.example.com", port=587, from_email="noreply@example.com", username="mailer", password="pw")


def test_build_email_message_adds_headers_and_html_alternative() -> None:
    message = build_email_message(_message("<p>Hello <b>Ada</b></p>"), from_email="noreply@example.com")

    assert message["To"] == "ada@example.com"
    assert message["X-Notification-ID"] == "n-1"
    assert message["X-Priority"] == "1"
    assert message.is_multipart()
    assert message.get_body(preferencelist=("plain",)).get_content().strip() == "Hello Ada"
    assert "<b>Ada</b>" in message.get_body(preferencelist=("html",)).get_content()


def test_smtp_sender_uses_starttls_and_login(fake_smtp) -> None:
    outcome = asyncio.run(SmtpEmailSender(_config()).send(_message()))

    assert outcome.success is True
    server = fake_smtp.instances[0]
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.calls == ["starttls", "login:mailer", "quit"]
    assert server.sent[0]["Subject"] == "Invoice ready"


def test_smtp_sender_wraps_transport_errors(fake_smtp) -> None:
    fake_smtp.fail_with = OSError("connection reset")

    with pytest.raises(ChannelSendError, match="connection reset"):
        asyncio.run(SmtpEmailSender(_config()).send(_message()))


def test_smtp_sender_without_config_is_not_configured() -> None:
    with pytest.raises(ChannelNotConfiguredError):
        asyncio.run(SmtpEmailSender(None).send(_message()))


def test_smtp_config_from_settings_requires_host_and_sender() -> None:
    assert SmtpConfig.from_settings(Settings(SMTP_HOST=None, EMAIL_FROM="noreply@example.com")) is None

    config = SmtpConfig.from_settings(
        Settings(SMTP_HOST="smtp.example.com", EMAIL_FROM="noreply@example.com", SMTP_USERNAME=" mailer ")
    )

    assert config is not None
    assert config.username == "mailer"
    assert config.use_tls is True
