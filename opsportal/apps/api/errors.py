from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from opsportal.apps.api.response import error_response, portal_error_response
from opsportal.core.errors import PortalError, UnauthenticatedError
from opsportal.persistence.guards import TeamPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "AUTH_UNAUTHENTICATED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    500: "INTERNAL_ERROR",
    503: "STORE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    # Render taxonomy errors with their stable code and offending field details.
    payload = portal_error_response(request=request, exc=exc)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthenticatedError) else None
    return JSONResponse(content=payload, status_code=exc.status_code, headers=headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Unknown routes and disallowed methods still answer with the shared envelope.
    detail: Any = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    payload = error_response(request=request, code=_default_code(exc.status_code), message=message)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Malformed request bodies are Validation failures like any other malformed input.
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=400)


async def team_predicate_exception_handler(request: Request, exc: TeamPredicateError) -> JSONResponse:
    # A query without team scope is a server bug; never leak the query shape.
    logger.error("team_predicate_missing path=%s message=%s", request.url.path, exc.message)
    payload = error_response(request=request, code="TEAM_SCOPE_REQUIRED", message="Team scope required")
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
