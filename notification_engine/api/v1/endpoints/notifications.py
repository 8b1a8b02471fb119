from __future__ import annotations

from datetime import datetime
from typing import NoReturn

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from notification_engine.api.v1.schemas.notifications import NotificationCreateIn, NotificationListOut
from notification_engine.core.errors import (
    AlreadyProcessingError,
    InvalidStateTransitionError,
    NotDispatchableError,
    NotificationError,
    NotificationNotFoundError,
    NotificationValidationError,
    StoreError,
    TemplateError,
)
from notification_engine.core.logging import get_logger
from notification_engine.domain.models import (
    Channel,
    Notification,
    NotificationDraft,
    NotificationFilter,
    NotificationStatus,
    Priority,
)
from notification_engine.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = get_logger("api.notifications")

tenant_header = Header(alias="X-Tenant-ID", min_length=1)
page_query = Query(default=1, ge=1)
limit_query = Query(default=20, ge=1, le=100)
status_filter_query = Query(default=None, alias="status")


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.engine.service


service_dependency = Depends(get_notification_service)


def _raise_http(exc: NotificationError) -> NoReturn:
    if isinstance(exc, NotificationNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found.") from exc
    if isinstance(exc, InvalidStateTransitionError | AlreadyProcessingError | NotDispatchableError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, NotificationValidationError | TemplateError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, StoreError):
        logger.error("notifications.store_unavailable", extra={"component": "api", "error": str(exc)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Notification store unavailable.") from exc
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Notification error.") from exc


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(
    payload: NotificationCreateIn,
    tenant_id: str = tenant_header,
    service: NotificationService = service_dependency,
) -> Notification:
    draft = NotificationDraft(tenant_id=tenant_id, **payload.model_dump())
    try:
        return await service.create(draft)
    except NotificationError as exc:
        _raise_http(exc)


@router.get("")
async def list_notifications(
    tenant_id: str = tenant_header,
    user_id: str | None = None,
    status_filter: NotificationStatus | None = status_filter_query,
    channel: Channel | None = None,
    priority: Priority | None = None,
    template_id: str | None = None,
    created_after: datetime | None = None,
    created_before: datetime | None = None,
    delivered_after: datetime | None = None,
    delivered_before: datetime | None = None,
    page: int = page_query,
    limit: int = limit_query,
    service: NotificationService = service_dependency,
) -> NotificationListOut:
    filters = NotificationFilter(
        tenant_id=tenant_id,
        user_id=user_id,
        status=status_filter,
        channel=channel,
        priority=priority,
        template_id=template_id,
        created_after=created_after,
        created_before=created_before,
        delivered_after=delivered_after,
        delivered_before=delivered_before,
        page=page,
        limit=limit,
    )
    try:
        result = await service.list(filters)
    except NotificationError as exc:
        _raise_http(exc)
    return NotificationListOut(items=result.items, total=result.total, page=page, limit=limit)


@router.get("/{notification_id}")
async def get_notification(
    notification_id: str,
    tenant_id: str = tenant_header,
    service: NotificationService = service_dependency,
) -> Notification:
    try:
        return await service.get(notification_id, tenant_id)
    except NotificationError as exc:
        _raise_http(exc)


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    tenant_id: str = tenant_header,
    service: NotificationService = service_dependency,
) -> Notification:
    try:
        return await service.mark_as_read(notification_id, tenant_id)
    except NotificationError as exc:
        _raise_http(exc)


@router.post("/{notification_id}/cancel")
async def cancel_notification(
    notification_id: str,
    tenant_id: str = tenant_header,
    service: NotificationService = service_dependency,
) -> Notification:
    try:
        return await service.cancel(notification_id, tenant_id)
    except NotificationError as exc:
        _raise_http(exc)
