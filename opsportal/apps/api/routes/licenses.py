from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from opsportal.apps.api.deps import get_directory_store, get_entitlements, require_team_permission
from opsportal.apps.api.response import SuccessEnvelope, success_response
from opsportal.domain.models import License, PurchasedLicense
from opsportal.persistence.store import DirectoryStore
from opsportal.services.audit import record_event
from opsportal.services.authz.guard import MemberAccess
from opsportal.services.authz.permissions import Action, Resource
from opsportal.services.entitlements import EntitlementManager, SeatUsage


router = APIRouter(prefix="/teams/{slug}", tags=["licenses"])


class LicenseCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    description: str | None = Field(default=None, max_length=4096)
    price: Decimal = Field(default=Decimal("0"))
    renewal_period: str
    max_users: int | None = None
    max_locations: int | None = None
    status: str = "ACTIVE"
    features: list[str] = Field(default_factory=list)


class LicenseResponse(BaseModel):
    id: str
    team_id: str
    name: str
    description: str | None
    price: str
    renewal_period: str
    max_users: int | None
    max_locations: int | None
    status: str
    features: list[str]


class PurchaseRequest(BaseModel):
    license_ids: list[str]


class SeatUsageResponse(BaseModel):
    max_users: int | None
    max_locations: int | None
    active_users: int
    active_locations: int
    users_available: int | None
    locations_available: int | None


class PurchasedLicenseResponse(BaseModel):
    id: str
    team_id: str
    license_id: str
    license_name: str | None = None
    purchased_at: str
    expires_at: str | None
    is_active: bool
    last_renewal_date: str | None
    next_renewal_date: str | None
    notes: str | None
    usage: SeatUsageResponse | None = None


class UserSeatRequest(BaseModel):
    user_id: str = Field(min_length=1)
    expires_at: datetime | None = None


class LocationSeatRequest(BaseModel):
    location_id: str = Field(min_length=1)
    expires_at: datetime | None = None


class SeatResponse(BaseModel):
    id: str
    purchased_license_id: str
    user_id: str | None = None
    location_id: str | None = None
    assigned_at: str
    expires_at: str | None
    is_active: bool = True


class RevokeResponse(BaseModel):
    revoked: int


class EntitlementResponse(BaseModel):
    feature_key: str
    entitled: bool


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _license_payload(license: License) -> LicenseResponse:
    return LicenseResponse(
        id=license.id,
        team_id=license.team_id,
        name=license.name,
        description=license.description,
        price=str(license.price),
        renewal_period=license.renewal_period,
        max_users=license.max_users,
        max_locations=license.max_locations,
        status=license.status,
        features=list(license.features or []),
    )


def _usage_payload(usage: SeatUsage) -> SeatUsageResponse:
    return SeatUsageResponse(
        max_users=usage.max_users,
        max_locations=usage.max_locations,
        active_users=usage.active_users,
        active_locations=usage.active_locations,
        users_available=usage.users_available,
        locations_available=usage.locations_available,
    )


def _purchase_payload(
    purchased: PurchasedLicense,
    *,
    license: License | None = None,
    usage: SeatUsage | None = None,
) -> PurchasedLicenseResponse:
    return PurchasedLicenseResponse(
        id=purchased.id,
        team_id=purchased.team_id,
        license_id=purchased.license_id,
        license_name=license.name if license is not None else None,
        purchased_at=purchased.purchased_at.isoformat(),
        expires_at=_iso(purchased.expires_at),
        is_active=purchased.is_active,
        last_renewal_date=_iso(purchased.last_renewal_date),
        next_renewal_date=_iso(purchased.next_renewal_date),
        notes=purchased.notes,
        usage=_usage_payload(usage) if usage is not None else None,
    )


@router.post("/licenses", status_code=201, response_model=SuccessEnvelope[LicenseResponse])
async def create_license(
    request: Request,
    payload: LicenseCreateRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.LICENSE, Action.CREATE)),
    entitlements: EntitlementManager = Depends(get_entitlements),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    license = await entitlements.create_license(
        access.team_id,
        name=payload.name,
        description=payload.description,
        price=payload.price,
        renewal_period=payload.renewal_period,
        max_users=payload.max_users,
        max_locations=payload.max_locations,
        status=payload.status,
        features=payload.features,
    )
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="license.created",
        resource_type="license",
        resource_id=license.id,
        request=request,
    )
    return success_response(request=request, data=_license_payload(license))


@router.get("/purchased-licenses", response_model=SuccessEnvelope[list[PurchasedLicenseResponse]])
async def list_purchased_licenses(
    request: Request,
    access: MemberAccess = Depends(require_team_permission(Resource.LICENSE, Action.READ)),
    entitlements: EntitlementManager = Depends(get_entitlements),
) -> dict:
    summaries = await entitlements.list_purchased_licenses(access.team_id)
    data = [
        _purchase_payload(item.purchased, license=item.license, usage=item.usage) for item in summaries
    ]
    return success_response(request=request, data=data)


@router.post(
    "/purchased-licenses",
    status_code=201,
    response_model=SuccessEnvelope[list[PurchasedLicenseResponse]],
)
async def purchase_licenses(
    request: Request,
    payload: PurchaseRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_LICENSES, Action.CREATE)),
    entitlements: EntitlementManager = Depends(get_entitlements),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    purchased = await entitlements.purchase(access.team_id, payload.license_ids)
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="license.purchased",
        resource_type="purchased_license",
        request=request,
        metadata={"purchased_license_ids": [row.id for row in purchased]},
    )
    return success_response(request=request, data=[_purchase_payload(row) for row in purchased])


@router.post(
    "/purchased-licenses/{purchased_license_id}/renew",
    response_model=SuccessEnvelope[PurchasedLicenseResponse],
)
async def renew_license(
    request: Request,
    purchased_license_id: str,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_LICENSES, Action.UPDATE)),
    entitlements: EntitlementManager = Depends(get_entitlements),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    purchased = await entitlements.renew(purchased_license_id, team_id=access.team_id)
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="license.renewed",
        resource_type="purchased_license",
        resource_id=purchased.id,
        request=request,
    )
    return success_response(request=request, data=_purchase_payload(purchased))


@router.get(
    "/purchased-licenses/{purchased_license_id}/usage",
    response_model=SuccessEnvelope[SeatUsageResponse],
)
async def get_seat_usage(
    request: Request,
    purchased_license_id: str,
    access: MemberAccess = Depends(require_team_permission(Resource.LICENSE, Action.READ)),
    entitlements: EntitlementManager = Depends(get_entitlements),
) -> dict:
    usage = await entitlements.seat_usage(purchased_license_id, team_id=access.team_id)
    return success_response(request=request, data=_usage_payload(usage))


@router.post(
    "/purchased-licenses/{purchased_license_id}/users",
    status_code=201,
    response_model=SuccessEnvelope[SeatResponse],
)
async def assign_user_seat(
    request: Request,
    purchased_license_id: str,
    payload: UserSeatRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_LICENSES, Action.UPDATE)),
    entitlements: EntitlementManager = Depends(get_entitlements),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    seat = await entitlements.assign_to_user(
        purchased_license_id, payload.user_id, payload.expires_at, team_id=access.team_id
    )
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="license.seat.assigned",
        resource_type="user_license",
        resource_id=seat.id,
        request=request,
        metadata={"purchased_license_id": purchased_license_id, "user_id": payload.user_id},
    )
    data = SeatResponse(
        id=seat.id,
        purchased_license_id=seat.purchased_license_id,
        user_id=seat.user_id,
        assigned_at=seat.assigned_at.isoformat(),
        expires_at=_iso(seat.expires_at),
    )
    return success_response(request=request, data=data)


@router.delete(
    "/purchased-licenses/{purchased_license_id}/users/{user_id}",
    response_model=SuccessEnvelope[RevokeResponse],
)
async def revoke_user_seat(
    request: Request,
    purchased_license_id: str,
    user_id: str,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_LICENSES, Action.UPDATE)),
    entitlements: EntitlementManager = Depends(get_entitlements),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    revoked = await entitlements.revoke_user(purchased_license_id, user_id, team_id=access.team_id)
    if revoked:
        await record_event(
            store,
            team_id=access.team_id,
            actor_id=access.user_id,
            event_type="license.seat.revoked",
            resource_type="user_license",
            request=request,
            metadata={"purchased_license_id": purchased_license_id, "user_id": user_id, "count": revoked},
        )
    return success_response(request=request, data=RevokeResponse(revoked=revoked))


@router.post(
    "/purchased-licenses/{purchased_license_id}/locations",
    status_code=201,
    response_model=SuccessEnvelope[SeatResponse],
)
async def assign_location_seat(
    request: Request,
    purchased_license_id: str,
    payload: LocationSeatRequest,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_LICENSES, Action.UPDATE)),
    entitlements: EntitlementManager = Depends(get_entitlements),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    seat = await entitlements.assign_to_location(
        purchased_license_id, payload.location_id, payload.expires_at, team_id=access.team_id
    )
    await record_event(
        store,
        team_id=access.team_id,
        actor_id=access.user_id,
        event_type="license.seat.assigned",
        resource_type="location_license",
        resource_id=seat.id,
        request=request,
        metadata={"purchased_license_id": purchased_license_id, "location_id": payload.location_id},
    )
    data = SeatResponse(
        id=seat.id,
        purchased_license_id=seat.purchased_license_id,
        location_id=seat.location_id,
        assigned_at=seat.assigned_at.isoformat(),
        expires_at=_iso(seat.expires_at),
        is_active=seat.is_active,
    )
    return success_response(request=request, data=data)


@router.delete(
    "/purchased-licenses/{purchased_license_id}/locations/{location_id}",
    response_model=SuccessEnvelope[RevokeResponse],
)
async def revoke_location_seat(
    request: Request,
    purchased_license_id: str,
    location_id: str,
    access: MemberAccess = Depends(require_team_permission(Resource.TEAM_LICENSES, Action.UPDATE)),
    entitlements: EntitlementManager = Depends(get_entitlements),
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    revoked = await entitlements.revoke_location(
        purchased_license_id, location_id, team_id=access.team_id
    )
    if revoked:
        await record_event(
            store,
            team_id=access.team_id,
            actor_id=access.user_id,
            event_type="license.seat.revoked",
            resource_type="location_license",
            request=request,
            metadata={
                "purchased_license_id": purchased_license_id,
                "location_id": location_id,
                "count": revoked,
            },
        )
    return success_response(request=request, data=RevokeResponse(revoked=revoked))


@router.get("/entitlements/{feature_key}", response_model=SuccessEnvelope[EntitlementResponse])
async def check_entitlement(
    request: Request,
    feature_key: str,
    access: MemberAccess = Depends(require_team_permission(Resource.LICENSE, Action.READ)),
    entitlements: EntitlementManager = Depends(get_entitlements),
) -> dict:
    entitled = await entitlements.is_entitled(access.team_id, feature_key)
    return success_response(
        request=request, data=EntitlementResponse(feature_key=feature_key, entitled=entitled)
    )
