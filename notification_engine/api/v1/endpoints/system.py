from fastapi import APIRouter, Request

from notification_engine.api.v1.schemas.system import SystemHealthOut
from notification_engine.core.timeutil import utc_now

router = APIRouter()


@router.get("/system/health")
async def system_health(request: Request) -> SystemHealthOut:
    engine = request.app.state.engine
    return SystemHealthOut(
        ok=True,
        env=engine.settings.NOTIFY_ENV.strip() or "development",
        time_utc=utc_now(),
        store_backend=engine.settings.STORE_BACKEND.strip().lower(),
        channels=list(engine.registry.channels),
        scheduler_enabled=engine.settings.SCHEDULER_ENABLED,
        dispatches_in_flight=engine.runner.in_flight,
    )
