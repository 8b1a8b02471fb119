from __future__ import annotations

import asyncio
import os
import signal

import uvicorn

from notification_engine.core.logging import configure_logging, get_logger
from notification_engine.core.settings import get_settings
from notification_engine.engine import build_engine

logger = get_logger("worker.supervisor")


async def run_scheduler_loop() -> None:
    settings = get_settings()
    engine = build_engine(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            # Windows event loops lack add_signal_handler.
            pass

    try:
        await engine.scheduler.run_forever(stop=stop)
    finally:
        await engine.aclose()


def main() -> None:
    configure_logging()
    settings = get_settings()
    mode = settings.NOTIFY_MODE.strip().lower()

    if mode == "worker":
        logger.info("worker.starting", extra={"component": "worker", "store_backend": settings.STORE_BACKEND})
        asyncio.run(run_scheduler_loop())
        return

    host = os.getenv("API_HOST", settings.API_HOST)
    port = int(os.getenv("PORT", str(settings.API_PORT)))
    uvicorn.run("notification_engine.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
