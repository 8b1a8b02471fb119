import uuid
from time import perf_counter

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from notification_engine.core.logging import (
    bind_tenant_id,
    get_logger,
    reset_request_id,
    reset_tenant_id,
    set_request_id,
)

logger = get_logger("api.request")

REQUEST_ID_HEADER = "X-Request-ID"
TENANT_HEADER = "X-Tenant-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind the request ID and the calling tenant to every log record a request produces.

    Background dispatch tasks started while handling the request copy this
    context, so their records carry the same request ID and tenant.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        request_id = request.headers.get(REQUEST_ID_HEADER, "").strip() or str(uuid.uuid4())
        tenant_id = request.headers.get(TENANT_HEADER, "").strip() or None
        request.state.request_id = request_id
        request.state.tenant_id = tenant_id
        request_token = set_request_id(request_id)
        tenant_token = bind_tenant_id(tenant_id)
        route = f"{request.method} {request.url.path}"
        started = perf_counter()
        response: Response | None = None

        logger.info("request.start", extra={"component": "api", "route": route})
        try:
            response = await call_next(request)
            return response
        except Exception:
            logger.exception("request.error", extra={"component": "api", "route": route})
            raise
        finally:
            status_code = response.status_code if response is not None else 500
            log = logger.warning if status_code >= 500 else logger.info
            log(
                "request.end",
                extra={
                    "component": "api",
                    "route": route,
                    "status_code": status_code,
                    "duration_ms": int((perf_counter() - started) * 1000),
                },
            )
            if response is not None:
                response.headers[REQUEST_ID_HEADER] = request_id
            reset_tenant_id(tenant_token)
            reset_request_id(request_token)
