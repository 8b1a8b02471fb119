import asyncio
import json

import httpx
import pytest

from notification_engine.channels.base import ChannelMessage, ChannelNotConfiguredError
from notification_engine.channels.gateway import HttpGatewaySender, push_payload, sms_payload
from notification_engine.channels.pool import TenantClientPool
from notification_engine.channels.registry import ChannelRegistry


def _message(channel: str = "sms", target: str = "+15550100") -> ChannelMessage:
    return ChannelMessage(
        notification_id="n-1",
        tenant_id="tenant-1",
        channel=channel,
        target=target,
        subject="Delivery update",
        body="Your parcel is out for delivery.",
        priority="high",
        metadata={"parcel": "p-7"},
    )


def _pool(handler) -> TenantClientPool[httpx.AsyncClient]:
    def build(tenant_id: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            headers={"X-Tenant-ID": tenant_id, "Authorization": "Bearer gateway-token"},
        )

    async def close(client: httpx.AsyncClient) -> None:
        await client.aclose()

    return TenantClientPool(build, closer=close)


def test_sms_gateway_posts_payload_and_returns_reference() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202, json={"message_id": "sms-42"})

    pool = _pool(handler)
    sender = HttpGatewaySender(url="https://sms.example.test/messages", payload_builder=sms_payload, clients=pool, name="sms")

    async def scenario():
        try:
            return await sender.send(_message())
        finally:
            await pool.aclose()

    outcome = asyncio.run(scenario())

    assert outcome.success is True
    assert outcome.provider_reference == "sms-42"
    assert requests[0].headers["X-Tenant-ID"] == "tenant-1"
    assert json.loads(requests[0].content) == {
        "to": "+15550100",
        "body": "Your parcel is out for delivery.",
        "priority": "high",
        "reference": "n-1",
        "metadata": {"parcel": "p-7"},
    }


def test_push_payload_shape() -> None:
    assert push_payload(_message("push", "device-1")) == {
        "device_token": "device-1",
        "title": "Delivery update",
        "body": "Your parcel is out for delivery.",
        "priority": "high",
        "reference": "n-1",
        "data": {"parcel": "p-7"},
    }


def test_gateway_error_status_becomes_failed_outcome_through_registry() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "overloaded"})

    pool = _pool(handler)
    registry = ChannelRegistry(
        {
            "push": HttpGatewaySender(
                url="https://push.example.test/send",
                payload_builder=push_payload,
                clients=pool,
                name="push",
            )
        }
    )

    async def scenario():
        try:
            return await registry.send(_message("push", "device-1"))
        finally:
            await pool.aclose()

    outcome = asyncio.run(scenario())

    assert outcome.success is False
    assert outcome.error == "push delivery failed: gateway responded with status 503"


def test_gateway_without_url_is_not_configured() -> None:
    sender = HttpGatewaySender(url="  ", payload_builder=sms_payload, clients=_pool(lambda r: httpx.Response(200)), name="sms")

    with pytest.raises(ChannelNotConfiguredError):
        asyncio.run(sender.send(_message()))
