from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from opsportal.apps.api.deps import get_directory_store, get_status_engine, require_team_permission
from opsportal.apps.api.response import SuccessEnvelope, success_response
from opsportal.domain.models import TeamComplianceStatus
from opsportal.persistence.store import DirectoryStore
from opsportal.services.audit import record_event
from opsportal.services.authz.guard import MemberAccess
from opsportal.services.authz.permissions import Action, Resource
from opsportal.services.status_workflow import StatusDefinition, StatusWorkflowEngine


router = APIRouter(prefix="/teams/{slug}/compliance-statuses", tags=["compliance-statuses"])


class StatusPayload(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    code: str = Field(min_length=1, max_length=64)
    description: str | None = Field(default=None, max_length=1024)
    color: str | None = Field(default=None, max_length=32)
    icon: str | None = Field(default=None, max_length=64)
    order: int | None = None
    is_default: bool = False

    def to_definition(self) -> StatusDefinition:
        return StatusDefinition(
            name=self.name,
            code=self.code,
            description=self.description,
            color=self.color,
            icon=self.icon,
            order=self.order,
            is_default=self.is_default,
        )


class DefaultStatusesRequest(BaseModel):
    statuses: list[StatusPayload]


class StatusUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=1024)
    color: str | None = Field(default=None, max_length=32)
    icon: str | None = Field(default=None, max_length=64)
    order: int | None = None
    is_default: bool | None = None


class StatusResponse(BaseModel):
    id: str
    team_id: str
    code: str
    name: str
    description: str | None
    color: str | None
    icon: str | None
    order: int
    is_default: bool


def _status_payload(row: TeamComplianceStatus) -> StatusResponse:
    return StatusResponse(
        id=row.id,
        team_id=row.team_id,
        code=row.code,
        name=row.name,
        description=row.description,
        color=row.color,
        icon=row.icon,
        order=row.order,
        is_default=row.is_default,
    )


@router.get("", response_model=SuccessEnvelope[list[StatusResponse]])
async def list_statuses(
    request: Request,
    access: MemberAccess = Depends(require_team_permission(Resource.COMPLIANCE_STATUS, Action.READ)),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
) -> dict:
    rows = await engine.list_statuses(access.team_id)
    return success_response(request=request, data=[_status_payload(row) for row in rows])


@router.post("/defaults", status_code=201, response_model=SuccessEnvelope[list[StatusResponse]])
async def define_default_statuses(
    request: Request,
    payload: DefaultStatusesRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.COMPLIANCE_STATUS, Action.CREATE)),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    rows = await engine.define_defaults(
        access.team_id, [item.to_definition() for item in payload.statuses]
    )
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="compliance_status.defaults_defined",
        resource_type="compliance_status",
        request=request,
        metadata={"codes": [row.code for row in rows]},
    )
    return success_response(request=request, data=[_status_payload(row) for row in rows])


@router.post("", status_code=201, response_model=SuccessEnvelope[StatusResponse])
async def create_status(
    request: Request,
    payload: StatusPayload,
    access: MemberAccess = Depends(require_team_permission(Resource.COMPLIANCE_STATUS, Action.CREATE)),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    row = await engine.create_status(access.team_id, payload.to_definition())
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="compliance_status.created",
        resource_type="compliance_status",
        resource_id=row.id,
        request=request,
        metadata={"code": row.code, "is_default": row.is_default},
    )
    return success_response(request=request, data=_status_payload(row))


@router.put("/{status_id}", response_model=SuccessEnvelope[StatusResponse])
async def update_status(
    request: Request,
    status_id: str,
    payload: StatusUpdateRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.COMPLIANCE_STATUS, Action.UPDATE)),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    row = await engine.update_status(access.team_id, status_id, changes)
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="compliance_status.updated",
        resource_type="compliance_status",
        resource_id=row.id,
        request=request,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=_status_payload(row))


@router.delete("/{status_id}", status_code=204)
async def delete_status(
    request: Request,
    status_id: str,
    access: MemberAccess = Depends(require_team_permission(Resource.COMPLIANCE_STATUS, Action.DELETE)),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
    store: DirectoryStore = Depends(get_directory_store),
) -> Response:
    await engine.delete_status(access.team_id, status_id)
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="compliance_status.deleted",
        resource_type="compliance_status",
        resource_id=status_id,
        request=request,
    )
    return Response(status_code=204)
