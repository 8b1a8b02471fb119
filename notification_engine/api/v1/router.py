from fastapi import APIRouter

from notification_engine.api.v1.endpoints import notifications, system

router = APIRouter()
router.include_router(system.router)
router.include_router(notifications.router)
