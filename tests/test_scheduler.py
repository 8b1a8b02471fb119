import asyncio
from datetime import UTC, datetime, timedelta

from notification_engine.channels.base import ChannelMessage, SendOutcome
from notification_engine.channels.registry import ChannelRegistry
from notification_engine.core.errors import StoreError
from notification_engine.domain.models import Notification, NotificationDraft
from notification_engine.notifications.events import EventNotifier
from notification_engine.services.notifications import NotificationService
from notification_engine.store.memory import InMemoryNotificationStore
from notification_engine.worker.dispatcher import Dispatcher, DispatchRunner
from notification_engine.worker.scheduler import NotificationScheduler

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class RecordingSender:
    def __init__(self) -> None:
        self.messages: list[ChannelMessage] = []

    async def send(self, message: ChannelMessage) -> SendOutcome:
        self.messages.append(message)
        return SendOutcome.ok()


def _notification(notification_id: str, **overrides: object) -> Notification:
    values: dict[str, object] = {
        "id": notification_id,
        "tenant_id": "tenant-1",
        "recipient_email": "ada@example.com",
        "subject": "Reminder",
        "body": "Your meeting starts soon.",
        "channels": ["email"],
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return Notification(**values)


def _wire(store: InMemoryNotificationStore, clock: list[datetime]):
    email = RecordingSender()
    dispatcher = Dispatcher(
        store=store,
        registry=ChannelRegistry({"email": email}),
        notifier=EventNotifier(),
        clock=lambda: clock[0],
    )
    runner = DispatchRunner(dispatcher)
    scheduler = NotificationScheduler(store=store, runner=runner, clock=lambda: clock[0])
    return email, runner, scheduler


def test_scheduled_notification_is_promoted_only_once_due() -> None:
    store = InMemoryNotificationStore()
    clock = [NOW]
    email, runner, scheduler = _wire(store, clock)
    service = NotificationService(store=store, notifier=EventNotifier(), runner=runner, clock=lambda: clock[0])

    async def scenario() -> tuple[str, int, str | None, int, str | None]:
        created = await service.create(
            NotificationDraft(
                tenant_id="tenant-1",
                recipient_email="ada@example.com",
                subject="Reminder",
                body="Your meeting starts soon.",
                channels=["email"],
                scheduled_for=NOW + timedelta(hours=1),
            )
        )
        early = await scheduler.promote_due_once(NOW + timedelta(minutes=30))
        await runner.drain()
        before = await store.get(created.id)

        late = await scheduler.promote_due_once(NOW + timedelta(hours=1, minutes=1))
        await runner.drain()
        after = await store.get(created.id)
        return (
            created.status,
            early,
            before.status if before else None,
            late,
            after.status if after else None,
        )

    initial_status, early, before_status, late, after_status = asyncio.run(scenario())

    assert initial_status == "scheduled"
    assert early == 0
    assert before_status == "scheduled"
    assert late == 1
    assert after_status == "delivered"
    assert len(email.messages) == 1


def test_retry_sweep_requeues_only_due_retries() -> None:
    store = InMemoryNotificationStore()
    clock = [NOW]
    email, runner, scheduler = _wire(store, clock)

    async def scenario() -> tuple[int, int, str | None]:
        await store.create(_notification("n-retry", retry_count=1, next_attempt_at=NOW + timedelta(seconds=60)))
        await store.create(_notification("n-fresh"))
        not_yet = await scheduler.requeue_retries_once(NOW)
        due = await scheduler.requeue_retries_once(NOW + timedelta(seconds=61))
        await runner.drain()
        stored = await store.get("n-retry")
        return not_yet, due, stored.status if stored else None

    not_yet, due, status = asyncio.run(scenario())

    assert not_yet == 0
    assert due == 1
    assert status == "delivered"
    assert [message.notification_id for message in email.messages] == ["n-retry"]


class FlakyArchiveStore(InMemoryNotificationStore):
    async def update_if_status(self, notification_id, expected_status, patch):
        if notification_id == "old-broken":
            raise StoreError("store unavailable")
        return await super().update_if_status(notification_id, expected_status, patch)


def test_archival_is_best_effort_and_keeps_status() -> None:
    store = FlakyArchiveStore()
    clock = [NOW]
    _, _, scheduler = _wire(store, clock)
    old = NOW - timedelta(days=40)

    async def scenario() -> tuple[int, int, dict[str, Notification | None]]:
        await store.create(_notification("old-1", status="delivered", created_at=old, metadata={"campaign": "spring"}))
        await store.create(_notification("old-broken", status="delivered", created_at=old))
        await store.create(_notification("old-2", status="delivered", created_at=old))
        await store.create(_notification("old-failed", status="failed", created_at=old))
        await store.create(_notification("recent", status="delivered", created_at=NOW - timedelta(days=5)))
        first = await scheduler.archive_once(NOW)
        second = await scheduler.archive_once(NOW)
        rows = {key: await store.get(key) for key in ("old-1", "old-2", "old-failed", "recent")}
        return first, second, rows

    first, second, rows = asyncio.run(scenario())

    assert first == 2
    assert second == 0
    assert rows["old-1"].status == "delivered"
    assert rows["old-1"].metadata["archived"] is True
    assert rows["old-1"].metadata["archived_at"] == "2026-03-01T12:00:00Z"
    assert rows["old-1"].metadata["campaign"] == "spring"
    assert rows["old-2"].metadata["archived"] is True
    assert "archived" not in rows["old-failed"].metadata
    assert "archived" not in rows["recent"].metadata


def test_run_once_respects_duty_intervals() -> None:
    store = InMemoryNotificationStore()
    clock = [NOW]
    _, runner, scheduler = _wire(store, clock)
    calls: list[str] = []

    async def fake_promote(now=None):
        calls.append("promote")
        return 0

    async def fake_requeue(now=None):
        calls.append("requeue")
        return 0

    async def fake_archive(now=None):
        calls.append("archive")
        return 0

    scheduler.promote_due_once = fake_promote
    scheduler.requeue_retries_once = fake_requeue
    scheduler.archive_once = fake_archive

    async def scenario() -> list[dict[str, object]]:
        ticks = [await scheduler.run_once()]
        clock[0] = NOW + timedelta(seconds=30)
        ticks.append(await scheduler.run_once())
        clock[0] = NOW + timedelta(seconds=61)
        ticks.append(await scheduler.run_once())
        return ticks

    ticks = asyncio.run(scenario())

    assert calls == ["promote", "requeue", "archive", "promote", "requeue"]
    assert all(tick["errors"] == 0 for tick in ticks)


def test_run_once_logs_and_counts_duty_errors() -> None:
    store = InMemoryNotificationStore()
    clock = [NOW]
    _, _, scheduler = _wire(store, clock)

    async def broken_promote(now=None):
        raise StoreError("store unavailable")

    scheduler.promote_due_once = broken_promote

    tick = asyncio.run(scheduler.run_once())

    assert tick["errors"] == 1
    assert tick["archived"] == 0


def test_run_forever_stops_when_signalled() -> None:
    store = InMemoryNotificationStore()
    clock = [NOW]
    _, _, scheduler = _wire(store, clock)

    async def scenario() -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(scheduler.run_forever(poll_seconds=0.01, stop=stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())


class DroppingRunner:
    """Accepts triggers and never runs them, like a process that died before dispatching."""

    def __init__(self) -> None:
        self.triggered: list[str] = []

    def trigger(self, notification: Notification | str) -> None:
        self.triggered.append(notification if isinstance(notification, str) else notification.id)


def test_untriggered_pending_notifications_are_recovered_by_retry_sweep() -> None:
    store = InMemoryNotificationStore()
    clock = [NOW]
    email, runner, scheduler = _wire(store, clock)
    dropping = DroppingRunner()
    service = NotificationService(store=store, notifier=EventNotifier(), runner=dropping, clock=lambda: clock[0])
    promoter = NotificationScheduler(store=store, runner=dropping, clock=lambda: clock[0])

    async def scenario() -> tuple[int, int, int, dict[str, Notification | None]]:
        created = await service.create(
            NotificationDraft(
                tenant_id="tenant-1",
                recipient_email="ada@example.com",
                body="Your meeting starts soon.",
                channels=["email"],
            )
        )
        await store.create(_notification("n-scheduled", status="scheduled", scheduled_for=NOW - timedelta(minutes=1)))
        promoted = await promoter.promote_due_once(NOW)
        too_early = await scheduler.requeue_retries_once(NOW)
        recovered = await scheduler.requeue_retries_once(NOW + timedelta(seconds=61))
        await runner.drain()
        rows = {key: await store.get(key) for key in (created.id, "n-scheduled")}
        return promoted, too_early, recovered, rows

    promoted, too_early, recovered, rows = asyncio.run(scenario())

    assert promoted == 1
    assert too_early == 0
    assert recovered == 2
    assert all(row is not None and row.status == "delivered" for row in rows.values())
    assert len(dropping.triggered) == 2
    assert len(email.messages) == 2
