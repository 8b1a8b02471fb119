import asyncio
import json
from datetime import UTC, datetime

import httpx

from notification_engine.domain.models import Notification
from notification_engine.notifications.events import EventNotifier, LoggingEventSink, WebhookEventSink

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _notification() -> Notification:
    return Notification(
        id="n-1",
        tenant_id="tenant-1",
        channels=["email"],
        recipient_email="ada@example.com",
        status="delivered",
        created_at=NOW,
        updated_at=NOW,
    )


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, object]]] = []

    async def emit(self, event: str, payload: dict[str, object]) -> None:
        self.events.append((event, payload))


class BrokenSink:
    async def emit(self, event: str, payload: dict[str, object]) -> None:
        raise RuntimeError("sink down")


def test_failing_sink_does_not_affect_other_sinks() -> None:
    recording = RecordingSink()
    notifier = EventNotifier([BrokenSink(), recording, LoggingEventSink()])

    async def scenario() -> None:
        notifier.emit("delivered", _notification())
        await notifier.drain()

    asyncio.run(scenario())

    assert recording.events[0][0] == "delivered"
    assert recording.events[0][1]["id"] == "n-1"
    assert recording.events[0][1]["created_at"] == "2026-03-01T12:00:00Z"


def test_emit_without_running_loop_is_dropped() -> None:
    recording = RecordingSink()

    EventNotifier([recording]).emit("created", _notification())

    assert recording.events == []


def test_webhook_sink_posts_namespaced_event() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    sink = WebhookEventSink("https://hooks.example.test/notify", transport=httpx.MockTransport(handler))

    asyncio.run(sink.emit("read", {"id": "n-1", "status": "read"}))

    assert str(requests[0].url) == "https://hooks.example.test/notify"
    assert json.loads(requests[0].content) == {"event": "notification.read", "notification": {"id": "n-1", "status": "read"}}
