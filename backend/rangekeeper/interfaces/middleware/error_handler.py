"""
Rangekeeper - Error Handler Middleware
Request ids and structured error responses
"""

import asyncio
import traceback
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from rangekeeper.core.exceptions import ErrorKind, ResourceError

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

STATUS_BY_KIND = {
    ErrorKind.INVALID_SPEC: 400,
    ErrorKind.CYCLE_DETECTED: 400,
    ErrorKind.LEVEL_VIOLATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.STATE_MISMATCH: 409,
    ErrorKind.ALREADY_DELETED: 410,
    ErrorKind.DEPENDENCY_FAILED: 424,
    ErrorKind.DEPLOYMENT_FAILED: 502,
    ErrorKind.VERIFICATION_FAILED: 502,
    ErrorKind.VERIFICATION_TIMEOUT: 504,
    ErrorKind.DUPLICATE_ID: 500,
}


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Wraps every route; only CORS sits outside it.

    Tags every request with an id (taken from ``X-Request-ID`` when the
    caller sends one), turns ResourceError into a response keyed by its kind
    and reports anything else as an internal error.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        try:
            response = await call_next(request)

        except ResourceError as exc:
            status_code = STATUS_BY_KIND.get(exc.kind, 500)
            log = logger.warning if status_code < 500 else logger.error
            log(
                "Resource error",
                error=exc.kind.value,
                resource_id=exc.resource_id,
                detail=exc.detail,
                path=request.url.path,
                method=request.method,
                request_id=request_id,
            )
            response = self._response(
                status_code,
                exc.kind.value.upper(),
                exc.detail,
                request_id,
                resource_id=exc.resource_id,
            )

        except Exception as exc:
            logger.error(
                "Unhandled exception",
                error=str(exc),
                error_type=type(exc).__name__,
                path=request.url.path,
                method=request.method,
                request_id=request_id,
                traceback=traceback.format_exc(),
            )
            error_code, status_code, detail = self._classify_unexpected(exc)
            response = self._response(status_code, error_code, detail, request_id)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @staticmethod
    def _response(
        status_code: int,
        error_code: str,
        detail: str,
        request_id: Optional[str],
        resource_id: Optional[int] = None,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={
                "error": error_code,
                "detail": detail,
                "resource_id": resource_id,
                "request_id": request_id,
            },
        )

    @staticmethod
    def _classify_unexpected(exc: Exception) -> tuple[str, int, str]:
        """Map an exception outside the resource taxonomy to (error_code, status_code, detail)."""
        if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
            return "TIMEOUT", 504, "The operation timed out"
        if isinstance(exc, ValueError):
            return "BAD_REQUEST", 400, str(exc)
        if isinstance(exc, LookupError):
            return "NOT_FOUND", 404, str(exc)
        return "INTERNAL_ERROR", 500, "An unexpected error occurred"
