from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from opsportal.apps.api.deps import (
    get_actor,
    get_directory_store,
    get_status_engine,
    require_team_permission,
)
from opsportal.apps.api.response import SuccessEnvelope, success_response
from opsportal.domain.models import ComplianceAlert
from opsportal.persistence.store import DirectoryStore
from opsportal.services.audit import record_event
from opsportal.services.auth.sessions import Principal
from opsportal.services.authz.guard import MemberAccess
from opsportal.services.authz.permissions import Action, Resource
from opsportal.services.status_workflow import StatusWorkflowEngine


router = APIRouter(prefix="/teams/{slug}/alerts", tags=["alerts"])


class AlertCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=512)
    severity: str | None = Field(default=None, max_length=16)


class StatusTransitionRequest(BaseModel):
    # Comment emptiness is checked by the workflow engine so it maps to VALIDATION_ERROR.
    status_id: str = Field(min_length=1)
    comment: str = ""
    severity: str | None = Field(default=None, max_length=16)


class AlertResponse(BaseModel):
    id: str
    team_id: str
    status_id: str | None
    severity: str | None
    title: str
    comments: list[dict[str, Any]]
    created_at: str
    updated_at: str


def _alert_payload(record: ComplianceAlert) -> AlertResponse:
    return AlertResponse(
        id=record.id,
        team_id=record.team_id,
        status_id=record.status_id,
        severity=record.severity,
        title=record.title,
        comments=list(record.comments or []),
        created_at=record.created_at.isoformat(),
        updated_at=record.updated_at.isoformat(),
    )


@router.get("", response_model=SuccessEnvelope[list[AlertResponse]])
async def list_alerts(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    access: MemberAccess = Depends(require_team_permission(Resource.ALERT, Action.READ)),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
) -> dict:
    records = await engine.list_records(access.team_id, limit=limit)
    return success_response(request=request, data=[_alert_payload(record) for record in records])


@router.post("", status_code=201, response_model=SuccessEnvelope[AlertResponse])
async def open_alert(
    request: Request,
    payload: AlertCreateRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.ALERT, Action.CREATE)),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
) -> dict:
    record = await engine.open_record(access.team_id, payload.title, payload.severity)
    return success_response(request=request, data=_alert_payload(record))


@router.post("/{alert_id}/update-status", response_model=SuccessEnvelope[AlertResponse])
async def update_alert_status(
    request: Request,
    alert_id: str,
    payload: StatusTransitionRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.ALERT, Action.UPDATE)),
    actor: Principal | None = Depends(get_actor),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    record = await engine.transition(
        alert_id,
        payload.status_id,
        payload.comment,
        payload.severity,
        actor,
        team_id=access.team_id,
    )
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="alert.status.transitioned",
        resource_type="compliance_alert",
        resource_id=record.id,
        request=request,
        metadata={"status_to": record.status_id, "history_length": len(record.comments or [])},
    )
    return success_response(request=request, data=_alert_payload(record))


@router.get("/{alert_id}/history", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def get_alert_history(
    request: Request,
    alert_id: str,
    access: MemberAccess = Depends(require_team_permission(Resource.ALERT, Action.READ)),
    engine: StatusWorkflowEngine = Depends(get_status_engine),
) -> dict:
    history = await engine.history(alert_id, team_id=access.team_id)
    return success_response(request=request, data=history)
