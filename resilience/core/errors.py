"""
Standardized error response system.

Provides consistent error responses across all API endpoints.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from resilience.core.exceptions import TransientStoreError

logger = logging.getLogger(__name__)


class ErrorCode:
    """Standard error codes."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Authentication/Authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Throttling
    RATE_LIMITED = "RATE_LIMITED"

    # System errors
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class ErrorResponse:
    """Standard error response format."""

    @staticmethod
    def create(
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> JSONResponse:
        """
        Create a standardized error response.

        Args:
            code: Machine-readable error code
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details (optional)
            request_id: Request correlation ID (optional)
            headers: Extra response headers (optional)

        Returns:
            JSONResponse with standard error format
        """
        error_data: Dict[str, Any] = {
            "error": {
                "code": code,
                "message": message,
            }
        }

        if details:
            error_data["error"]["details"] = details

        if request_id:
            error_data["error"]["request_id"] = request_id

        return JSONResponse(status_code=status_code, content=error_data, headers=headers)


class HTTPError(HTTPException):
    """
    Enhanced HTTPException with standard error response format.

    Usage:
        raise HTTPError(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            message="Job not found",
            details={"job_id": "..."}
        )
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message, headers=headers)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


async def http_error_handler(request: Request, exc: HTTPError) -> JSONResponse:
    """Handle HTTPError exceptions and return standardized error response."""
    return ErrorResponse.create(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=_request_id(request),
        headers=exc.headers,
    )


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies are a 400 here, not FastAPI's default 422."""
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return ErrorResponse.create(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_400_BAD_REQUEST,
        details={"errors": errors},
        request_id=_request_id(request),
    )


async def transient_store_error_handler(
    request: Request, exc: TransientStoreError
) -> JSONResponse:
    """Persistence failures surface as 500 so callers deny rather than allow."""
    logger.error("Store unavailable during %s %s: %s", request.method, request.url.path, exc)
    return ErrorResponse.create(
        code=ErrorCode.STORE_UNAVAILABLE,
        message="Persistent store unavailable",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        details={"operation": exc.operation},
        request_id=_request_id(request),
    )


# Convenience functions for common errors

def not_found(resource: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 404 NOT_FOUND error."""
    return HTTPError(
        status_code=status.HTTP_404_NOT_FOUND,
        code=ErrorCode.NOT_FOUND,
        message=f"{resource} not found",
        details=details,
    )


def unauthorized(message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 401 UNAUTHORIZED error."""
    return HTTPError(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=ErrorCode.UNAUTHORIZED,
        message=message,
        details=details,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(message: str = "Forbidden", details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 403 FORBIDDEN error."""
    return HTTPError(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.FORBIDDEN,
        message=message,
        details=details,
    )


def validation_error(message: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 400 VALIDATION_ERROR error."""
    return HTTPError(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=ErrorCode.VALIDATION_ERROR,
        message=message,
        details=details,
    )


def conflict(message: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 409 CONFLICT error."""
    return HTTPError(
        status_code=status.HTTP_409_CONFLICT,
        code=ErrorCode.CONFLICT,
        message=message,
        details=details,
    )


def rate_limited(retry_after: int, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 429 RATE_LIMITED error for request-volume limits."""
    return HTTPError(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        code=ErrorCode.RATE_LIMITED,
        message="Too many requests",
        details=details,
        headers={"Retry-After": str(retry_after)},
    )
