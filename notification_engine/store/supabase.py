from __future__ import annotations

import re
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from notification_engine.channels.base import ChannelMessage
from notification_engine.core.errors import StoreError
from notification_engine.core.logging import get_logger
from notification_engine.core.timeutil import to_iso_z, utc_now
from notification_engine.domain.models import (
    Notification,
    NotificationFilter,
    NotificationPage,
    NotificationStatus,
)

logger = get_logger("store.supabase")

_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)$")
QueryParams = list[tuple[str, str]]


class SupabaseRestClient:
    """Thin PostgREST client authenticated with the service-role key."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: QueryParams | None = None,
        json: Any = None,
        prefer: str | None = None,
        error_detail: str,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.request(
                    method,
                    self.table_url(table),
                    params=params,
                    json=json,
                    headers=self.headers(prefer),
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                "store.request_failed",
                extra={"component": "store", "table": table, "method": method, "error": str(exc)[:300]},
            )
            raise StoreError(error_detail) from exc
        return response


class SupabaseNotificationStore:
    def __init__(self, client: SupabaseRestClient, *, table: str = "notifications") -> None:
        self.client = client
        self.table = table

    async def create(self, notification: Notification) -> Notification:
        response = await self.client.request(
            "POST",
            self.table,
            json=notification.model_dump(mode="json"),
            prefer="return=representation",
            error_detail="Failed to create notification in Supabase.",
        )
        rows = _validated_rows(response, "Invalid notification insert response from Supabase.")
        if not rows:
            raise StoreError("Supabase did not return the created notification.")
        return _notification_from_row(rows[0])

    async def get(self, notification_id: str, tenant_id: str | None = None) -> Notification | None:
        params: QueryParams = [("select", "*"), ("id", f"eq.{notification_id}"), ("limit", "1")]
        if tenant_id is not None:
            params.append(("tenant_id", f"eq.{tenant_id}"))
        response = await self.client.request(
            "GET",
            self.table,
            params=params,
            error_detail="Failed to fetch notification from Supabase.",
        )
        rows = _validated_rows(response, "Invalid notification response from Supabase.")
        return _notification_from_row(rows[0]) if rows else None

    async def list(self, filters: NotificationFilter) -> NotificationPage:
        params = _filter_params(filters)
        params.extend(
            [
                ("select", "*"),
                ("order", "created_at.desc"),
                ("offset", str(filters.offset)),
                ("limit", str(filters.limit)),
            ]
        )
        response = await self.client.request(
            "GET",
            self.table,
            params=params,
            prefer="count=exact",
            error_detail="Failed to list notifications from Supabase.",
        )
        rows = _validated_rows(response, "Invalid notifications response from Supabase.")
        items = [_notification_from_row(row) for row in rows]
        total = _content_range_total(response.headers.get("Content-Range"))
        return NotificationPage(items=items, total=total if total is not None else len(items))

    async def update_if_status(
        self,
        notification_id: str,
        expected_status: NotificationStatus,
        patch: dict[str, Any],
    ) -> bool:
        response = await self.client.request(
            "PATCH",
            self.table,
            params=[("id", f"eq.{notification_id}"), ("status", f"eq.{expected_status}")],
            json=_serialize_patch(patch),
            prefer="return=representation",
            error_detail="Failed to update notification status in Supabase.",
        )
        rows = _validated_rows(response, "Invalid notification update response from Supabase.")
        return len(rows) == 1

    async def find_due_scheduled(self, now: datetime, limit: int) -> list[Notification]:
        return await self._select(
            [
                ("status", "eq.scheduled"),
                ("scheduled_for", f"lte.{to_iso_z(now)}"),
                ("order", "scheduled_for.asc"),
            ],
            limit=limit,
            error_detail="Failed to fetch due scheduled notifications from Supabase.",
        )

    async def find_due_retries(self, now: datetime, limit: int) -> list[Notification]:
        return await self._select(
            [
                ("status", "eq.pending"),
                ("next_attempt_at", f"lte.{to_iso_z(now)}"),
                ("order", "next_attempt_at.asc"),
            ],
            limit=limit,
            error_detail="Failed to fetch due notification retries from Supabase.",
        )

    async def find_archivable(self, cutoff: datetime, limit: int) -> list[Notification]:
        return await self._select(
            [
                ("status", "eq.delivered"),
                ("created_at", f"lt.{to_iso_z(cutoff)}"),
                ("metadata->>archived", "is.null"),
                ("order", "created_at.asc"),
            ],
            limit=limit,
            error_detail="Failed to fetch archivable notifications from Supabase.",
        )

    async def _select(self, params: QueryParams, *, limit: int, error_detail: str) -> list[Notification]:
        response = await self.client.request(
            "GET",
            self.table,
            params=[("select", "*"), *params, ("limit", str(max(1, limit)))],
            error_detail=error_detail,
        )
        rows = _validated_rows(response, error_detail)
        return [_notification_from_row(row) for row in rows]


class SupabaseInbox:
    def __init__(self, client: SupabaseRestClient, *, table: str = "in_app_messages") -> None:
        self.client = client
        self.table = table

    async def deliver(self, message: ChannelMessage) -> str:
        response = await self.client.request(
            "POST",
            self.table,
            json={
                "tenant_id": message.tenant_id,
                "user_id": message.target,
                "notification_id": message.notification_id,
                "title": message.subject,
                "body": message.body,
                "metadata": to_jsonable_python(message.metadata),
            },
            prefer="return=representation",
            error_detail="Failed to store in-app message in Supabase.",
        )
        rows = _validated_rows(response, "Invalid in-app message response from Supabase.")
        message_id = rows[0].get("id") if rows else None
        if not isinstance(message_id, str) or not message_id:
            raise StoreError("Supabase did not return the in-app message id.")
        return message_id


def _filter_params(filters: NotificationFilter) -> QueryParams:
    params: QueryParams = []
    if filters.tenant_id is not None:
        params.append(("tenant_id", f"eq.{filters.tenant_id}"))
    if filters.user_id is not None:
        params.append(("user_id", f"eq.{filters.user_id}"))
    if filters.status is not None:
        params.append(("status", f"eq.{filters.status}"))
    if filters.channel is not None:
        params.append(("channels", f"cs.{{{filters.channel}}}"))
    if filters.priority is not None:
        params.append(("priority", f"eq.{filters.priority}"))
    if filters.template_id is not None:
        params.append(("template_id", f"eq.{filters.template_id}"))
    if filters.created_after is not None:
        params.append(("created_at", f"gte.{to_iso_z(filters.created_after)}"))
    if filters.created_before is not None:
        params.append(("created_at", f"lte.{to_iso_z(filters.created_before)}"))
    if filters.delivered_after is not None:
        params.append(("delivered_at", f"gte.{to_iso_z(filters.delivered_after)}"))
    if filters.delivered_before is not None:
        params.append(("delivered_at", f"lte.{to_iso_z(filters.delivered_before)}"))
    return params


def _serialize_patch(patch: dict[str, Any]) -> dict[str, Any]:
    values = {**patch}
    values.setdefault("updated_at", utc_now())
    serialized: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, datetime):
            serialized[key] = to_iso_z(value)
        else:
            serialized[key] = to_jsonable_python(value)
    return serialized


def _validated_rows(response: httpx.Response, error_message: str) -> list[dict[str, Any]]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise StoreError(error_message) from exc
    if not isinstance(payload, list):
        raise StoreError(error_message)
    for item in payload:
        if not isinstance(item, dict):
            raise StoreError(error_message)
    return payload


def _notification_from_row(row: dict[str, Any]) -> Notification:
    try:
        return Notification.model_validate(row)
    except ValidationError as exc:
        raise StoreError(f"Invalid notification row {row.get('id')!r} in Supabase.") from exc


def _content_range_total(value: str | None) -> int | None:
    if not value:
        return None
    match = _CONTENT_RANGE_TOTAL.search(value.strip())
    return int(match.group(1)) if match else None
