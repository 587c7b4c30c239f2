"""
Error taxonomy for the auth subsystem.

Every error raised across a component boundary is an AppError subclass with
a stable code, an HTTP status for the routing layer, and a `recoverable`
flag:

- recoverable=False: the caller must prompt the user to re-authenticate
  (or the request is simply wrong)
- recoverable=True: the condition may clear on its own; retry with backoff

Stack traces are NEVER returned to clients.

Standard HTTP status codes:
- 400: Bad Request (invalid callback state, unsupported platform)
- 401: Unauthorized (no usable credential, wallet not authorized)
- 404: Not Found
- 429: Too Many Requests (platform rate limit)
- 500: Internal Server Error (corrupt credential)
- 502: Bad Gateway (platform unreachable)
- 503: Service Unavailable (key-value store)
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "recoverable": self.recoverable,
            }
        }


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class UnsupportedPlatformError(AppError):
    """No orchestrator is registered for the requested platform (400)."""

    def __init__(self, platform: str):
        super().__init__(
            code="UNSUPPORTED_PLATFORM",
            message=f"Platform '{platform}' is not supported",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"platform": platform},
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class CredentialNotFoundError(NotFoundError):
    """No credential bundle stored for (platform, user)."""

    def __init__(self, platform: str, user_id: str):
        # User id stays off the message; messages end up in audit records
        super().__init__(f"{platform} credential")
        self.platform = platform
        self.user_id = user_id


class InvalidStateError(AppError):
    """OAuth callback state is missing, expired or already consumed (400)."""

    def __init__(self, message: str = "Invalid or expired OAuth state"):
        super().__init__(
            code="INVALID_STATE",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class CorruptCredentialError(AppError):
    """
    Stored credential could not be decrypted or parsed (500).

    SECURITY: always fail closed. Never return a partially decoded bundle.
    """

    def __init__(self, platform: str, user_id: str, reason: str = "Credential could not be decoded"):
        super().__init__(
            code="CORRUPT_CREDENTIAL",
            message=reason,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"platform": platform},
        )


class UnauthorizedError(AppError):
    """No usable credential or wallet not authorized (401)."""

    def __init__(
        self,
        message: str = "Authentication required",
        recoverable: bool = False,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
            recoverable=recoverable,
        )


class TransientNetworkError(AppError):
    """Platform could not be reached or returned a server error (502)."""

    def __init__(self, message: str = "Platform temporarily unreachable", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="NETWORK_ERROR",
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
            recoverable=True,
        )


class PlatformRequestError(AppError):
    """
    Platform rejected the request itself, not the user's credential (502).

    Raised for client misconfiguration such as invalid_client or
    invalid_request. The stored credential stays untouched.
    """

    def __init__(self, message: str = "Platform rejected the request", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="PLATFORM_REQUEST_REJECTED",
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


class RateLimitedError(AppError):
    """Platform rate limit exceeded (429)."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        details = {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            code="RATE_LIMITED",
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details=details,
            recoverable=True,
        )
        self.retry_after = retry_after


class StoreUnavailableError(AppError):
    """Key-value store failed or is unreachable (503)."""

    def __init__(self, message: str = "Key-value store unavailable", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="STORE_UNAVAILABLE",
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
            recoverable=True,
        )


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Get correlation ID from request or generate new one.

    Checks X-Correlation-ID header first, then request state.
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that turns auth errors into consistent JSON responses.

    IMPORTANT: Stack traces are NEVER returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except AppError as e:
            logger.warning(
                "Application error",
                extra={
                    "correlation_id": correlation_id,
                    "error_code": e.code,
                    "status_code": e.status_code,
                    "recoverable": e.recoverable,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_dict(),
                headers={"X-Correlation-ID": correlation_id},
            )

        except HTTPException as e:
            logger.warning(
                "HTTP exception",
                extra={
                    "correlation_id": correlation_id,
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=e.status_code,
                content={
                    "error": {
                        "code": "HTTP_ERROR",
                        "message": str(e.detail),
                        "details": {},
                        "recoverable": False,
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )

        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                        "recoverable": False,
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )


def register_error_handlers(app: FastAPI) -> None:
    """Install the auth error middleware on a FastAPI app."""
    app.add_middleware(ErrorHandlerMiddleware)
