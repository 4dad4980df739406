from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from opsportal.apps.api.deps import (
    get_directory_store,
    get_policy_resolver,
    get_team_directory,
    require_team_permission,
)
from opsportal.apps.api.response import SuccessEnvelope, success_response
from opsportal.persistence.store import DirectoryStore
from opsportal.services.audit import list_events, record_event
from opsportal.services.authz.guard import MemberAccess
from opsportal.services.authz.permissions import Action, Resource
from opsportal.services.teams import TeamDirectory
from opsportal.services.tenant_policy import TenantPolicy, TenantPolicyResolver


router = APIRouter(prefix="/teams/{slug}", tags=["teams"])


class TenantPolicyResponse(BaseModel):
    team_id: str
    slug: str
    tenant_type: str
    vocabulary: dict[str, str]
    enabled_features: list[str]


class VendorSettingRequest(BaseModel):
    use_vendors: bool


class MemberCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    role: str = Field(default="MEMBER", min_length=1, max_length=32)


class MemberResponse(BaseModel):
    id: str
    team_id: str
    user_id: str
    role_id: str


class LocationCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)


class LocationResponse(BaseModel):
    id: str
    team_id: str
    name: str
    label: str


class RolePermissionsRequest(BaseModel):
    permissions: dict[str, list[str]]


class RolePermissionsResponse(BaseModel):
    role: str
    permissions: dict[str, int]


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str
    actor_id: str | None
    event_type: str
    outcome: str
    resource_type: str | None
    resource_id: str | None
    metadata: dict[str, Any]


def _policy_payload(policy: TenantPolicy, slug: str) -> TenantPolicyResponse:
    return TenantPolicyResponse(
        team_id=policy.team_id,
        slug=slug,
        tenant_type=policy.tenant_type,
        vocabulary=policy.vocabulary.as_dict(),
        enabled_features=sorted(policy.enabled_features),
    )


@router.get("/policy", response_model=SuccessEnvelope[TenantPolicyResponse])
async def get_policy(
    request: Request,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM, Action.READ)),
    resolver: TenantPolicyResolver = Depends(get_policy_resolver),
) -> dict:
    policy = await resolver.resolve(access.team_id)
    return success_response(request=request, data=_policy_payload(policy, access.team.slug))


@router.post("/settings/vendors", response_model=SuccessEnvelope[TenantPolicyResponse])
async def toggle_vendor_setting(
    request: Request,
    payload: VendorSettingRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM, Action.UPDATE)),
    directory: TeamDirectory = Depends(get_team_directory),
    resolver: TenantPolicyResolver = Depends(get_policy_resolver),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    await directory.set_use_vendors(access.team_id, payload.use_vendors)
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="team.vendors.toggled",
        resource_type="team",
        resource_id=access.team_id,
        request=request,
        metadata={"use_vendors": payload.use_vendors},
    )
    policy = await resolver.resolve(access.team_id)
    return success_response(request=request, data=_policy_payload(policy, access.team.slug))


@router.post("/members", status_code=201, response_model=SuccessEnvelope[MemberResponse])
async def add_member(
    request: Request,
    payload: MemberCreateRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_MEMBER, Action.CREATE)),
    directory: TeamDirectory = Depends(get_team_directory),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    member = await directory.add_member(
        access.team_id, payload.user_id, payload.role, granted_by=access
    )
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="team.member.added",
        resource_type="team_member",
        resource_id=member.id,
        request=request,
        metadata={"user_id": payload.user_id, "role": payload.role},
    )
    data = MemberResponse(
        id=member.id, team_id=member.team_id, user_id=member.user_id, role_id=member.role_id
    )
    return success_response(request=request, data=data)


@router.put("/roles/{role}/permissions", response_model=SuccessEnvelope[RolePermissionsResponse])
async def replace_role_permissions(
    request: Request,
    role: str,
    payload: RolePermissionsRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_MEMBER, Action.UPDATE)),
    directory: TeamDirectory = Depends(get_team_directory),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    rows = await directory.set_role_permissions(
        access.team_id, role, payload.permissions, granted_by=access
    )
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="team.role.permissions_replaced",
        resource_type="team_role",
        resource_id=role.upper(),
        request=request,
        metadata={"resources": sorted(rows)},
    )
    return success_response(
        request=request, data=RolePermissionsResponse(role=role.upper(), permissions=rows)
    )


@router.post("/locations", status_code=201, response_model=SuccessEnvelope[LocationResponse])
async def add_location(
    request: Request,
    payload: LocationCreateRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.LOCATION, Action.CREATE)),
    directory: TeamDirectory = Depends(get_team_directory),
    resolver: TenantPolicyResolver = Depends(get_policy_resolver),
) -> dict:
    location = await directory.add_location(access.team_id, payload.name)
    policy = await resolver.resolve(access.team_id)
    data = LocationResponse(
        id=location.id,
        team_id=location.team_id,
        name=location.name,
        label=policy.vocabulary.location_label,
    )
    return success_response(request=request, data=data)


@router.get("/audit-events", response_model=SuccessEnvelope[list[AuditEventResponse]])
async def get_audit_events(
    request: Request,
    event_type: str | None = Query(default=None, max_length=128),
    limit: int = Query(default=50, ge=1, le=500),
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_AUDIT_LOG, Action.READ)),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    events = await list_events(store, access.team_id, event_type=event_type, limit=limit)
    data = [
        AuditEventResponse(
            id=event.id,
            occurred_at=event.occurred_at.isoformat(),
            actor_id=event.actor_id,
            event_type=event.event_type,
            outcome=event.outcome,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            metadata=event.metadata_json or {},
        )
        for event in events
    ]
    return success_response(request=request, data=data)
