"""
Error envelope and exception handlers for StockAPI.

Every failure leaves the API as:

    {"success": false, "error": {"code": "STOCK_NOT_FOUND", "message": "..."}}

Codes are stable identifiers for API consumers; messages are in Indonesian.
"""

from typing import Any, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger()

SERVER_ERROR_MESSAGE = "Terjadi kesalahan server"


class ApiError(HTTPException):
    """An HTTP error carrying a stable machine-readable code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code
        self.message = message


# =============================================================================
# Common errors
# =============================================================================


def bad_request(code: str, message: str) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, code, message)


def unauthorized(code: str, message: str) -> ApiError:
    return ApiError(status.HTTP_401_UNAUTHORIZED, code, message)


def forbidden() -> ApiError:
    return ApiError(
        status.HTTP_403_FORBIDDEN,
        "FORBIDDEN",
        "Akses ditolak. Hanya admin yang dapat mengakses endpoint ini",
    )


def not_found(code: str, message: str) -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, code, message)


def conflict(code: str, message: str) -> ApiError:
    return ApiError(status.HTTP_409_CONFLICT, code, message)


def error_body(code: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


# =============================================================================
# Handlers
# =============================================================================


def _validation_code(exc: RequestValidationError) -> tuple[str, str]:
    errors = exc.errors()
    in_body = any(err.get("loc", ("",))[0] == "body" for err in errors)
    types = {err.get("type") for err in errors}
    fields = sorted({
        str(err["loc"][-1])
        for err in errors
        if len(err.get("loc", ())) > 1
    })
    suffix = f": {', '.join(fields)}" if fields else ""

    if in_body:
        if "missing" in types:
            return "MISSING_FIELDS", f"Field wajib belum diisi{suffix}"
        if "extra_forbidden" in types:
            return "UNKNOWN_FIELDS", f"Field tidak dikenal{suffix}"
        return "INVALID_FIELDS", f"Format field tidak valid{suffix}"

    if "missing" in types:
        return "MISSING_QUERY", f"Parameter wajib belum diisi{suffix}"
    return "INVALID_QUERY", f"Parameter tidak valid{suffix}"


async def api_error_handler(request: Request, exc: ApiError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message),
        headers=exc.headers,
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    code, message = _validation_code(exc)
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(code, message),
    )


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> ORJSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        code, message = "NOT_FOUND", "Endpoint tidak ditemukan"
    elif exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        code, message = "METHOD_NOT_ALLOWED", "Metode HTTP tidak didukung"
    else:
        code, message = "HTTP_ERROR", str(exc.detail)
    return ORJSONResponse(
        status_code=exc.status_code,
        content=error_body(code, message),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.error(
        "internal_error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("SERVER_ERROR", SERVER_ERROR_MESSAGE),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
