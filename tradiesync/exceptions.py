"""
Error responses.

Every error leaves the API as an ``application/problem+json`` body
(RFC 7807) carrying a stable ``code`` and the request's ``trace_id``.
Internal detail (provider response bodies, token material, stack traces)
never crosses this boundary.
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import re
import uuid

from tradiesync.utils.clock import utcnow

logger = logging.getLogger(__name__)

PROBLEM_BASE_URL = "https://api.tradiemate.com.au/problems"

STATUS_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def current_trace_id() -> str:
    """The correlation id of the current request, or a fresh short id outside one."""
    from tradiesync.middleware.correlation import get_request_id

    request_id = get_request_id()
    if request_id and request_id != "unknown":
        return request_id
    return uuid.uuid4().hex[:12]


class ErrorCode(str, Enum):
    UNAUTHORIZED = "AUTH_001"
    FORBIDDEN = "AUTH_002"
    OAUTH_STATE_INVALID = "AUTH_004"
    RECONNECT_REQUIRED = "AUTH_005"

    VALIDATION_ERROR = "VAL_001"

    NOT_FOUND = "RES_001"

    QUOTA_EXCEEDED = "BIZ_002"
    NOT_CONNECTED = "BIZ_004"

    EXTERNAL_SERVICE_ERROR = "EXT_001"

    INTERNAL_ERROR = "SRV_001"
    SERVICE_UNAVAILABLE = "SRV_002"
    NOT_CONFIGURED = "SRV_004"


# Status codes raised by FastAPI/Starlette themselves
HTTP_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    429: ErrorCode.QUOTA_EXCEEDED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


class ProblemDetail(BaseModel):
    """
    Problem response body.

    ``code`` is what clients branch on; ``trace_id`` matches the
    X-Correlation-ID header and the Sentry event for the request.
    """

    type: str = "about:blank"
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    code: str
    timestamp: str
    trace_id: str
    errors: Optional[List[Dict[str, Any]]] = None
    retry_after: Optional[int] = None


class TradieSyncException(HTTPException):
    """Base for every error the API raises on purpose."""

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        retry_after: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.errors = errors
        self.retry_after = retry_after
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class UnauthorizedError(TradieSyncException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(401, ErrorCode.UNAUTHORIZED, detail, headers={"WWW-Authenticate": "Bearer"})


class InvalidOAuthStateError(TradieSyncException):
    """OAuth state failed verification. The reason is logged, not returned."""

    def __init__(self):
        super().__init__(403, ErrorCode.OAUTH_STATE_INVALID, "Invalid or expired OAuth state")


class ReconnectRequiredError(TradieSyncException):
    """Stored credentials are unusable and have been cleared."""

    def __init__(self, provider_name: str):
        super().__init__(
            401,
            ErrorCode.RECONNECT_REQUIRED,
            f"{provider_name} credentials are no longer valid. Please reconnect {provider_name}.",
        )


class ValidationError(TradieSyncException):
    def __init__(self, detail: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(400, ErrorCode.VALIDATION_ERROR, detail, errors=errors)


class NotFoundError(TradieSyncException):
    def __init__(self, resource: str):
        super().__init__(404, ErrorCode.NOT_FOUND, f"{resource} not found")


class NotConnectedError(TradieSyncException):
    def __init__(self, provider_name: str):
        super().__init__(
            400,
            ErrorCode.NOT_CONNECTED,
            f"{provider_name} not connected. Please connect {provider_name} first.",
        )


class RateLimitError(TradieSyncException):
    def __init__(self, retry_after: int = 60):
        super().__init__(
            429,
            ErrorCode.QUOTA_EXCEEDED,
            "Too many requests. Please try again later.",
            retry_after=retry_after,
            headers={"Retry-After": str(retry_after)},
        )


class ExternalServiceError(TradieSyncException):
    """Upstream provider failure. ``detail`` must already be safe to show."""

    def __init__(self, service: str, detail: str):
        super().__init__(502, ErrorCode.EXTERNAL_SERVICE_ERROR, f"{service}: {detail}")


class ProviderNotConfiguredError(TradieSyncException):
    """Provider client credentials are missing on the server."""

    def __init__(self, provider_name: str):
        super().__init__(503, ErrorCode.NOT_CONFIGURED, f"{provider_name} integration not configured")


class CorsOrigins:
    """Origins whose error responses carry CORS headers, matched like CORSMiddleware."""

    def __init__(self, origins: List[str], origin_regex: Optional[str] = None):
        self.origins = set(origins)
        self.pattern = re.compile(origin_regex) if origin_regex else None

    def allows(self, origin: str) -> bool:
        if not origin:
            return False
        if origin in self.origins:
            return True
        return bool(self.pattern and self.pattern.fullmatch(origin))


def problem_response(
    request: Request,
    status_code: int,
    code: ErrorCode,
    detail: str,
    cors: Optional[CorsOrigins] = None,
    errors: Optional[List[Dict[str, Any]]] = None,
    retry_after: Optional[int] = None,
    trace_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    problem = ProblemDetail(
        type=f"{PROBLEM_BASE_URL}/{code.value.lower().replace('_', '-')}",
        title=STATUS_TITLES.get(status_code, "Error"),
        status=status_code,
        detail=detail,
        instance=request.url.path,
        code=code.value,
        timestamp=utcnow().isoformat() + "Z",
        trace_id=trace_id or current_trace_id(),
        errors=errors,
        retry_after=retry_after,
    )
    response = JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers,
    )

    # Error responses skip CORSMiddleware when raised from a handler
    origin = request.headers.get("origin", "")
    if cors is not None and cors.allows(origin):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


def create_exception_handlers(allowed_origins: List[str], allowed_origin_regex: Optional[str] = None):
    """Exception handlers keyed by kind; main.py registers each one."""
    cors = CorsOrigins(allowed_origins, allowed_origin_regex)

    async def handle_tradiesync_exception(request: Request, exc: TradieSyncException) -> JSONResponse:
        trace_id = current_trace_id()
        logger.warning(
            f"{exc.code.value} - {exc.detail}",
            extra={"trace_id": trace_id, "status_code": exc.status_code, "path": request.url.path},
        )
        return problem_response(
            request,
            exc.status_code,
            exc.code,
            str(exc.detail),
            cors,
            errors=exc.errors,
            retry_after=exc.retry_after,
            trace_id=trace_id,
            headers=exc.headers,
        )

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return problem_response(
            request,
            exc.status_code,
            HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
            str(exc.detail),
            cors,
            headers=getattr(exc, "headers", None),
        )

    async def handle_validation_exception(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed bodies and parameters are client errors (400, not 422)."""
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        return problem_response(
            request, 400, ErrorCode.VALIDATION_ERROR, "Request validation failed", cors, errors=errors
        )

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        from tradiesync.config import settings
        from tradiesync.core.sentry import capture_exception

        trace_id = current_trace_id()
        logger.exception(
            f"Unhandled exception: {type(exc).__name__}",
            extra={"trace_id": trace_id, "path": request.url.path},
        )
        capture_exception(exc, context={"trace_id": trace_id, "path": request.url.path, "method": request.method})

        detail = str(exc) if settings.DEBUG else "An unexpected error occurred"
        return problem_response(
            request, 500, ErrorCode.INTERNAL_ERROR, detail, cors, trace_id=trace_id
        )

    return {
        "tradiesync": handle_tradiesync_exception,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "generic": handle_generic_exception,
    }
