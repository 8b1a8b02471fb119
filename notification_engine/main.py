from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notification_engine.api.v1.router import router as v1_router
from notification_engine.core.logging import configure_logging, get_logger
from notification_engine.core.settings import Settings, get_settings
from notification_engine.engine import NotificationEngine, build_engine
from notification_engine.middleware.request_context import RequestContextMiddleware

logger = get_logger("api.main")


def create_app(settings: Settings | None = None, engine: NotificationEngine | None = None) -> FastAPI:
    settings = settings or get_settings()
    engine = engine or build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        stop = asyncio.Event()
        scheduler_task: asyncio.Task[None] | None = None
        if settings.SCHEDULER_ENABLED:
            scheduler_task = asyncio.create_task(engine.scheduler.run_forever(stop=stop))
        try:
            yield
        finally:
            stop.set()
            if scheduler_task is not None:
                await scheduler_task
            await engine.aclose()

    app = FastAPI(title="Notification Engine API", lifespan=lifespan)
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Tenant-ID"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/healthz")
    def root_healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app


configure_logging()
app = create_app()
