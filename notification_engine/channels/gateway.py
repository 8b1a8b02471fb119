from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx

from notification_engine.channels.base import (
    ChannelMessage,
    ChannelNotConfiguredError,
    SendOutcome,
)
from notification_engine.channels.pool import TenantClientPool

PayloadBuilder = Callable[[ChannelMessage], dict[str, Any]]


def sms_payload(message: ChannelMessage) -> dict[str, Any]:
    return {
        "to": message.target,
        "body": message.body,
        "priority": message.priority,
        "reference": message.notification_id,
        "metadata": message.metadata,
    }


def push_payload(message: ChannelMessage) -> dict[str, Any]:
    return {
        "device_token": message.target,
        "title": message.subject,
        "body": message.body,
        "priority": message.priority,
        "reference": message.notification_id,
        "data": message.metadata,
    }


def gateway_client_pool(*, token: str | None, timeout_seconds: float) -> TenantClientPool[httpx.AsyncClient]:
    def build(tenant_id: str) -> httpx.AsyncClient:
        headers = {"Accept": "application/json", "X-Tenant-ID": tenant_id}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return httpx.AsyncClient(timeout=timeout_seconds, headers=headers)

    async def close(client: httpx.AsyncClient) -> None:
        await client.aclose()

    return TenantClientPool(build, closer=close)


class HttpGatewaySender:
    """Posts one JSON request per message to an SMS or push provider gateway."""

    def __init__(
        self,
        *,
        url: str | None,
        payload_builder: PayloadBuilder,
        clients: TenantClientPool[httpx.AsyncClient],
        name: str,
    ) -> None:
        self.url = (url or "").strip() or None
        self.payload_builder = payload_builder
        self.clients = clients
        self.name = name

    async def send(self, message: ChannelMessage) -> SendOutcome:
        if self.url is None:
            raise ChannelNotConfiguredError(f"{self.name} gateway is not configured.")

        client = await self.clients.get(message.tenant_id)
        response = await client.post(self.url, json=self.payload_builder(message))
        response.raise_for_status()
        return SendOutcome.ok(provider_reference=_provider_reference(response))


def _provider_reference(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    reference = payload.get("id") or payload.get("message_id")
    return str(reference) if reference is not None else None
