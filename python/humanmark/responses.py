"""Response envelopes and the exception handlers that produce them.

    success: {"data": ...}
    failure: {"error": {"code": "E_...", "message": "...", "request_id": "...",
                        "retry_after_seconds": 30}}

retry_after_seconds (and a Retry-After header) only appear on rate-limit
failures. request_id is filled from the logging context when not given.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from humanmark.config import get_settings
from humanmark.errors import ApiError, ApiErrorCode
from humanmark.logging import get_logger, get_request_id

logger = get_logger(__name__)


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode,
    message: str,
    request_id: str | None = None,
    retry_after: int | None = None,
) -> dict[str, Any]:
    """Build the failure envelope for an error code."""
    error: dict[str, Any] = {"code": code.value, "message": message}

    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    if retry_after is not None:
        error["retry_after_seconds"] = retry_after

    return {"error": error}


def _error_json(
    status_code: int, code: ApiErrorCode, message: str, retry_after: int | None = None
) -> JSONResponse:
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, retry_after=retry_after),
        headers=headers,
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _error_json(exc.status_code, exc.code, exc.message, exc.retry_after)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body parsing failures are E_INVALID_REQUEST (400), never FastAPI's 422."""
    malformed = any(err.get("type") == "json_invalid" for err in exc.errors())
    message = "Malformed JSON body" if malformed else "Invalid request body"
    return _error_json(400, ApiErrorCode.E_INVALID_REQUEST, message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework-raised HTTP errors (unknown route, wrong method) in the envelope."""
    if exc.status_code == 401:
        code = ApiErrorCode.E_UNAUTHENTICATED
    elif exc.status_code < 500:
        code = ApiErrorCode.E_INVALID_REQUEST
    else:
        code = ApiErrorCode.E_INTERNAL
    return _error_json(exc.status_code, code, str(exc.detail or "Request failed"))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log server-side, answer E_INTERNAL with no details."""
    logger.error(
        "unhandled_exception",
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=get_settings().debug_mode,
    )
    return _error_json(500, ApiErrorCode.E_INTERNAL, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
