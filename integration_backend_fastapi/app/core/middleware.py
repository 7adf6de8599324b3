"""
Request logging for the integration API.

Every request gets a request id (echoed back as X-Request-ID) and the caller's
tenant from the bearer token is put on the logging context, so records written
by routers and the job store while serving the request carry it.
Bodies are never logged: uploads are multipart files.
"""
import time
import uuid
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logger import app_logger, set_request_context, clear_request_context
from app.core.config import settings
from app.helpers.auth_helper import tenant_from_payload

QUIET_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json"}


def identity_from_request(request: Request) -> Optional[Dict[str, Any]]:
    """
    Soft-decode the bearer token for logging. Never raises; enforcement is
    left to the auth dependencies.
    """
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None

    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return {"error": "expired"}
    except jwt.InvalidTokenError:
        return {"error": "invalid"}

    return {
        "user_id": payload.get("sub"),
        "tenant_id": tenant_from_payload(payload),
        "roles": payload.get("roles"),
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request and one per response, tagged with the request id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        identity = identity_from_request(request)
        tenant_id = identity.get("tenant_id") if identity else None
        request.state.tenant_id = tenant_id

        path = request.url.path
        set_request_context(request_id=request_id, method=request.method, path=path, tenant_id=tenant_id)
        quiet = path in QUIET_PATHS
        verbose_log = app_logger.debug if settings.ENVIRONMENT in ("dev", "uat") else app_logger.info

        if not quiet:
            verbose_log(
                "API Request",
                extra={
                    "query_params": dict(request.query_params) or None,
                    "client_ip": request.client.host if request.client else "unknown",
                    "user": identity,
                },
            )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            app_logger.exception("Request failed with exception", extra={"exception_type": type(exc).__name__})
            clear_request_context()
            raise

        response.headers["X-Request-ID"] = request_id
        if not quiet:
            if response.status_code >= 500:
                log_func = app_logger.error
            elif response.status_code >= 400:
                log_func = app_logger.warning
            else:
                log_func = verbose_log
            log_func(
                "API Response",
                extra={
                    "status_code": response.status_code,
                    "process_time_ms": round((time.perf_counter() - start_time) * 1000, 2),
                },
            )
        clear_request_context()
        return response
