from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any, Literal, Protocol

import httpx

from notification_engine.core.logging import get_logger
from notification_engine.domain.models import Notification
from notification_engine.worker.retry import sanitize_error

logger = get_logger("notifications.events")

LifecycleEvent = Literal["created", "delivered", "failed", "retry", "read", "cancelled"]


class EventSink(Protocol):
    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        ...


class LoggingEventSink:
    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        logger.info(
            "notifications.lifecycle_event",
            extra={
                "component": "events",
                "event": event,
                "notification_id": payload.get("id"),
                "tenant_id": payload.get("tenant_id"),
                "status": payload.get("status"),
            },
        )


class WebhookEventSink:
    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(
                self.url,
                json={"event": f"notification.{event}", "notification": payload},
            )
            response.raise_for_status()


class EventNotifier:
    """Fans lifecycle events out to sinks without making the caller wait."""

    def __init__(self, sinks: Sequence[EventSink] = ()) -> None:
        self.sinks = list(sinks)
        self._pending: set[asyncio.Task[None]] = set()

    def emit(self, event: LifecycleEvent, notification: Notification) -> None:
        if not self.sinks:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "notifications.event_dropped",
                extra={"component": "events", "event": event, "reason": "no running event loop"},
            )
            return

        payload = notification.model_dump(mode="json")
        for sink in self.sinks:
            task = asyncio.create_task(self._deliver(sink, event, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, sink: EventSink, event: str, payload: dict[str, Any]) -> None:
        try:
            await sink.emit(event, payload)
        except Exception as exc:
            logger.warning(
                "notifications.event_sink_failed",
                extra={
                    "component": "events",
                    "event": event,
                    "sink": type(sink).__name__,
                    "error": sanitize_error(exc, default_message="event sink failed"),
                },
            )
