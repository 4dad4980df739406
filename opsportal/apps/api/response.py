from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from opsportal.core.errors import PortalError


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION
    # Slug of the team named in the path; None on routes outside a team.
    team: str | None = None


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


def request_meta(request: Request) -> dict[str, Any]:
    # The request-context middleware stamps every request; fall back for handlers invoked without it.
    request_id = getattr(request.state, "request_id", None) or str(uuid4())
    return ResponseMeta(request_id=request_id, team=request.path_params.get("slug")).model_dump()


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    return {"data": data, "meta": request_meta(request)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body = ErrorBody(code=code, message=message, details=details or None)
    return {"error": body.model_dump(exclude_none=True), "meta": request_meta(request)}


def portal_error_response(*, request: Request, exc: PortalError) -> dict[str, Any]:
    # Governance errors carry their offending ids and fields as flat details.
    return error_response(
        request=request,
        code=exc.code,
        message=exc.message,
        details=jsonable_encoder(exc.details),
    )
