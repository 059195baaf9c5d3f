# API error types and the JSON error envelope shared by every non-2xx response:
#   {"success": false, "message": ..., "error_code": ..., "details": ..., "timestamp": ...}
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("libyastay.errors")


def _truthy(val: Optional[str]) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


# Internal exception detail is only exposed to clients in development
DEBUG_ERRORS = _truthy(os.getenv("DEBUG_ERRORS"))


class ApiError(HTTPException):
    """HTTPException carrying a machine-readable error code and optional details."""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str,
        details: Any = None,
        headers: Optional[dict] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.message = message
        self.error_code = error_code
        self.details = details


class ValidationFailed(ApiError):
    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", details: Any = None) -> None:
        super().__init__(status.HTTP_400_BAD_REQUEST, message, error_code, details)


class Unauthorized(ApiError):
    def __init__(self, message: str, error_code: str = "AUTH_TOKEN_INVALID") -> None:
        super().__init__(status.HTTP_401_UNAUTHORIZED, message, error_code)


class Forbidden(ApiError):
    def __init__(self, message: str, error_code: str = "FORBIDDEN_ACCESS") -> None:
        super().__init__(status.HTTP_403_FORBIDDEN, message, error_code)


class NotFound(ApiError):
    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(status.HTTP_404_NOT_FOUND, message, error_code)


class Conflict(ApiError):
    def __init__(self, message: str, error_code: str, details: Any = None) -> None:
        super().__init__(status.HTTP_409_CONFLICT, message, error_code, details)


# Fallback codes for HTTPExceptions raised by the framework itself (404 route, 405 method, ...)
_DEFAULT_CODES = {
    400: "BAD_REQUEST",
    401: "AUTH_TOKEN_INVALID",
    403: "FORBIDDEN_ACCESS",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
}


def error_body(message: str, error_code: Optional[str] = None, details: Any = None) -> dict:
    body: dict = {
        "success": False,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if error_code:
        body["error_code"] = error_code
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body


def _validation_details(exc: RequestValidationError) -> list:
    details = []
    for err in exc.errors():
        # Drop the leading "body"/"query"/"path" segment from the location
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in {"body", "query", "path", "header"}:
            loc = loc[1:]
        details.append({"field": ".".join(loc), "message": err.get("msg"), "type": err.get("type")})
    return details


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.error_code, exc.details),
        headers=exc.headers,
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc, ApiError):
        return await _api_error_handler(request, exc)
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    details = exc.detail if not isinstance(exc.detail, str) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, _DEFAULT_CODES.get(exc.status_code, "ERROR"), details),
        headers=getattr(exc, "headers", None),
    )


async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("Validation error", "VALIDATION_ERROR", _validation_details(exc)),
    )


async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request.unhandled_error", exc_info=exc, extra={"path": request.url.path, "method": request.method})
    details = {"name": type(exc).__name__, "message": str(exc)} if DEBUG_ERRORS else None
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", "INTERNAL_SERVER_ERROR", details),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_handler)
    app.add_exception_handler(Exception, _unhandled_handler)
