from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wagate.core.errors import (
    DatabaseError,
    InvalidInputError,
    NotConnectedError,
    NotFoundError,
    NotInitializedError,
    ProtocolConfigError,
    RecipientUnregisteredError,
    UpstreamFailureError,
    WagateError,
    WorkingStateError,
)


logger = logging.getLogger(__name__)

# Ordered most-specific first; the first isinstance match wins.
_ERROR_STATUS: tuple[tuple[type[WagateError], int, str], ...] = (
    (InvalidInputError, 400, "INVALID_INPUT"),
    (NotFoundError, 404, "NOT_FOUND"),
    (NotInitializedError, 503, "NOT_INITIALIZED"),
    (NotConnectedError, 503, "NOT_CONNECTED"),
    (RecipientUnregisteredError, 422, "RECIPIENT_UNREGISTERED"),
    (UpstreamFailureError, 502, "UPSTREAM_FAILURE"),
    (WorkingStateError, 500, "WORKING_STATE_ERROR"),
    (DatabaseError, 500, "DATABASE_ERROR"),
    (ProtocolConfigError, 500, "PROTOCOL_CONFIG_ERROR"),
)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def error_payload(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


def status_for(exc: WagateError) -> tuple[int, str]:
    for error_type, status_code, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


async def wagate_exception_handler(request: Request, exc: WagateError) -> JSONResponse:
    status_code, code = status_for(exc)
    if status_code >= 500:
        logger.warning("request_failed path=%s code=%s error=%s", request.url.path, code, exc)
    return JSONResponse(content=error_payload(code, str(exc)), status_code=status_code)


async def http_exception_handler(request: Request, exc: HTTPException | StarletteHTTPException) -> JSONResponse:
    code = _DEFAULT_ERROR_CODES.get(exc.status_code, "UNKNOWN_ERROR")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(content=error_payload(code, message), status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Body/query shape errors are caller input errors.
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg") or "Validation error")
    return JSONResponse(content=error_payload("INVALID_INPUT", message), status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(content=error_payload("INTERNAL_ERROR", "Internal server error"), status_code=500)
