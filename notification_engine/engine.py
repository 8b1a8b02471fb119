from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import httpx

from notification_engine.channels.base import ChannelSender
from notification_engine.channels.email import SmtpConfig, SmtpEmailSender
from notification_engine.channels.gateway import HttpGatewaySender, gateway_client_pool, push_payload, sms_payload
from notification_engine.channels.in_app import InAppInbox, InAppSender
from notification_engine.channels.pool import TenantClientPool
from notification_engine.channels.registry import ChannelRegistry
from notification_engine.core.logging import get_logger
from notification_engine.core.settings import Settings, get_settings
from notification_engine.notifications.events import EventNotifier, EventSink, LoggingEventSink, WebhookEventSink
from notification_engine.services.notifications import NotificationService
from notification_engine.store.base import NotificationStore
from notification_engine.store.memory import InMemoryInbox, InMemoryNotificationStore
from notification_engine.store.supabase import SupabaseInbox, SupabaseNotificationStore, SupabaseRestClient
from notification_engine.templates.renderer import JinjaTemplateRenderer, NotificationTemplate
from notification_engine.templates.sources import SupabaseTemplateSource, TemplateSource, load_template_catalog
from notification_engine.worker.dispatcher import Dispatcher, DispatchRunner
from notification_engine.worker.retry import RetryPolicy
from notification_engine.worker.scheduler import NotificationScheduler

logger = get_logger("engine")


@dataclass
class NotificationEngine:
    settings: Settings
    store: NotificationStore
    registry: ChannelRegistry
    renderer: JinjaTemplateRenderer
    notifier: EventNotifier
    dispatcher: Dispatcher
    runner: DispatchRunner
    service: NotificationService
    scheduler: NotificationScheduler
    client_pools: list[TenantClientPool[httpx.AsyncClient]] = field(default_factory=list)

    async def drain(self) -> None:
        """Wait for in-flight dispatch cycles and the events they emit."""
        await self.runner.drain()
        await self.notifier.drain()

    async def aclose(self) -> None:
        await self.drain()
        for pool in self.client_pools:
            await pool.aclose()
        logger.info("engine.closed", extra={"component": "engine"})


def build_store(settings: Settings) -> tuple[NotificationStore, InAppInbox]:
    if settings.STORE_BACKEND.strip().lower() == "supabase":
        client = SupabaseRestClient(
            settings.SUPABASE_URL or "",
            settings.SUPABASE_SERVICE_ROLE_KEY or "",
            timeout_seconds=settings.CHANNEL_HTTP_TIMEOUT_SECONDS,
        )
        return (
            SupabaseNotificationStore(client, table=settings.NOTIFICATIONS_TABLE),
            SupabaseInbox(client, table=settings.IN_APP_TABLE),
        )
    return InMemoryNotificationStore(), InMemoryInbox()


def build_renderer(settings: Settings, templates: Iterable[NotificationTemplate] = ()) -> JinjaTemplateRenderer:
    """Catalog templates win over rows fetched from the store; explicit ones replace file entries."""
    catalog: list[NotificationTemplate] = []
    if settings.TEMPLATES_PATH:
        catalog.extend(load_template_catalog(settings.TEMPLATES_PATH))
    catalog.extend(templates)

    source: TemplateSource | None = None
    if settings.STORE_BACKEND.strip().lower() == "supabase":
        source = SupabaseTemplateSource(
            SupabaseRestClient(
                settings.SUPABASE_URL or "",
                settings.SUPABASE_SERVICE_ROLE_KEY or "",
                timeout_seconds=settings.CHANNEL_HTTP_TIMEOUT_SECONDS,
            ),
            table=settings.TEMPLATES_TABLE,
        )
    return JinjaTemplateRenderer(catalog, source=source)


def build_engine(
    settings: Settings | None = None,
    *,
    store: NotificationStore | None = None,
    inbox: InAppInbox | None = None,
    senders: dict[str, ChannelSender] | None = None,
    templates: Iterable[NotificationTemplate] = (),
    event_sinks: Iterable[EventSink] | None = None,
) -> NotificationEngine:
    """Wire every collaborator from settings; explicit arguments replace the configured ones."""
    settings = settings or get_settings()
    if store is None:
        store, default_inbox = build_store(settings)
        inbox = inbox or default_inbox
    inbox = inbox or InMemoryInbox()

    pools: list[TenantClientPool[httpx.AsyncClient]] = []
    registry = ChannelRegistry()
    configured = senders or {}

    registry.register("email", configured.get("email") or SmtpEmailSender(SmtpConfig.from_settings(settings)))
    if "sms" in configured:
        registry.register("sms", configured["sms"])
    else:
        sms_clients = gateway_client_pool(
            token=settings.SMS_GATEWAY_TOKEN,
            timeout_seconds=settings.CHANNEL_HTTP_TIMEOUT_SECONDS,
        )
        pools.append(sms_clients)
        registry.register(
            "sms",
            HttpGatewaySender(url=settings.SMS_GATEWAY_URL, payload_builder=sms_payload, clients=sms_clients, name="sms"),
        )
    if "push" in configured:
        registry.register("push", configured["push"])
    else:
        push_clients = gateway_client_pool(
            token=settings.PUSH_GATEWAY_TOKEN,
            timeout_seconds=settings.CHANNEL_HTTP_TIMEOUT_SECONDS,
        )
        pools.append(push_clients)
        registry.register(
            "push",
            HttpGatewaySender(
                url=settings.PUSH_GATEWAY_URL,
                payload_builder=push_payload,
                clients=push_clients,
                name="push",
            ),
        )
    registry.register("in_app", configured.get("in_app") or InAppSender(inbox))

    if event_sinks is None:
        sinks: list[EventSink] = [LoggingEventSink()]
        if settings.EVENT_WEBHOOK_URL:
            sinks.append(WebhookEventSink(settings.EVENT_WEBHOOK_URL, timeout_seconds=settings.CHANNEL_HTTP_TIMEOUT_SECONDS))
    else:
        sinks = list(event_sinks)
    notifier = EventNotifier(sinks)

    renderer = build_renderer(settings, templates)
    dispatcher = Dispatcher(
        store=store,
        registry=registry,
        notifier=notifier,
        retry_policy=RetryPolicy(
            max_retries=settings.NOTIFY_MAX_RETRIES,
            backoff_seconds=settings.NOTIFY_RETRY_BACKOFF_SECONDS,
        ),
    )
    runner = DispatchRunner(dispatcher, max_concurrency=settings.DISPATCH_MAX_CONCURRENCY)
    service = NotificationService(
        store=store,
        notifier=notifier,
        runner=runner,
        renderer=renderer,
        recovery_delay_seconds=settings.NOTIFY_RETRY_BACKOFF_SECONDS,
    )
    scheduler = NotificationScheduler(
        store=store,
        runner=runner,
        promotion_interval_seconds=settings.SCHEDULER_PROMOTION_INTERVAL_SECONDS,
        archival_interval_seconds=settings.SCHEDULER_ARCHIVAL_INTERVAL_SECONDS,
        retention_days=settings.NOTIFY_RETENTION_DAYS,
        batch_limit=settings.SCHEDULER_BATCH_LIMIT,
        recovery_delay_seconds=settings.NOTIFY_RETRY_BACKOFF_SECONDS,
    )

    logger.info(
        "engine.built",
        extra={
            "component": "engine",
            "store_backend": type(store).__name__,
            "channels": registry.channels,
            "event_sinks": [type(sink).__name__ for sink in sinks],
        },
    )
    return NotificationEngine(
        settings=settings,
        store=store,
        registry=registry,
        renderer=renderer,
        notifier=notifier,
        dispatcher=dispatcher,
        runner=runner,
        service=service,
        scheduler=scheduler,
        client_pools=pools,
    )
