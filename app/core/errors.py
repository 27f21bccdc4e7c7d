"""
Application errors and FastAPI exception handlers

Every rejected precondition has a stable error code so clients can
render a specific message without parsing free text.
"""

from typing import Any, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.core.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base class for typed, client-visible failures"""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "APP_ERROR"

    def __init__(self, message: str = "", details: Optional[dict[str, Any]] = None):
        super().__init__(message or self.error_code)
        self.message = message or self.error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotAMemberError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "NOT_A_MEMBER"


class BlockedError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "BLOCKED"


class InvalidPayloadError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_PAYLOAD"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTHENTICATION_FAILED"


class ValidationError(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "VALIDATION_ERROR"


def _error_response(status_code: int, error: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


async def app_exception_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.info(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return _error_response(exc.status_code, exc.to_dict())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(exc.status_code, {"code": "HTTP_ERROR", "message": str(exc.detail)})


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {
            "code": ValidationError.error_code,
            "message": "Request validation failed",
            "details": {"errors": jsonable_errors(exc)},
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"code": "INTERNAL_ERROR", "message": "Internal server error"},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
