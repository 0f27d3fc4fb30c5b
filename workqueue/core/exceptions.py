import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from workqueue.config.logging import add_request_context, get_logger

logger = get_logger(__name__)


class WorkQueueException(Exception):
    """Base exception for the job queue."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidPayloadError(WorkQueueException, TypeError):
    """Raised when an object without a perform() method is enqueued."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class PayloadEncodingError(WorkQueueException, ValueError):
    """Raised when a payload holds state the codec cannot serialize."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class ConstraintViolation(WorkQueueException):
    """
    A store-level uniqueness violation, identified by the column it hit.

    Only ``field == "unique_key"`` is benign during enqueue.
    """

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(
            message or f"Constraint violation on {field}",
            status.HTTP_409_CONFLICT,
            {"field": field},
        )


class DeserializationError(WorkQueueException):
    """Raised when a job handler cannot be turned back into a payload."""

    def __init__(self, message: str, handler: str | None = None):
        self.handler = handler
        super().__init__(
            f"Job failed to load: {message}. Handler: {handler!r}",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"reason": message},
        )
        self.reason = message


class InvocationError(WorkQueueException):
    """Wraps an exception raised by a payload's perform() or its hooks."""

    def __init__(self, job_id: Any, original: BaseException):
        self.job_id = job_id
        self.original = original
        super().__init__(
            f"{type(original).__name__}: {original}",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"job_id": str(job_id) if job_id is not None else None},
        )


class NotFoundError(WorkQueueException):
    """Raised when a resource is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_json(
    request: Request,
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(
            status_code=status_code,
            message=message,
            details=details,
            request_id=_request_id(request),
        ),
    )


async def workqueue_exception_handler(
    request: Request, exc: WorkQueueException
) -> JSONResponse:
    """Render queue exceptions with their own status code."""
    # Lookups of missing jobs and similar client errors are not server faults
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_json(request, exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail)
    return _error_json(request, exc.status_code, str(exc.detail))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking their text to the client."""
    logger.exception("Unhandled exception", exception=exc.__class__.__name__)
    return _error_json(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tag each request with a correlation id.

    An ``X-Request-ID`` sent by the caller (e.g. a proxy) is reused so log
    lines can be matched across services; otherwise a new one is generated.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
