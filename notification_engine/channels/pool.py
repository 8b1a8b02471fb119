from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

ClientT = TypeVar("ClientT")


class TenantClientPool(Generic[ClientT]):
    """Lazily builds one client per tenant and hands the same instance back afterwards.

    The pool is owned by whoever constructs it (normally the engine wiring) and
    must be closed by that owner.
    """

    def __init__(
        self,
        factory: Callable[[str], ClientT | Awaitable[ClientT]],
        *,
        closer: Callable[[ClientT], Awaitable[None]] | None = None,
    ) -> None:
        self._factory = factory
        self._closer = closer
        self._clients: dict[str, ClientT] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._clients)

    async def get(self, tenant_id: str) -> ClientT:
        client = self._clients.get(tenant_id)
        if client is not None:
            return client

        async with self._lock:
            client = self._clients.get(tenant_id)
            if client is None:
                built = self._factory(tenant_id)
                client = await built if inspect.isawaitable(built) else built
                self._clients[tenant_id] = client
            return client

    async def aclose(self) -> None:
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        if self._closer is None:
            return
        for client in clients:
            await self._closer(client)
