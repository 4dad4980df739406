from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import logging
from typing import Iterable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PortalError,
    ValidationError,
)
from opsportal.domain.models import License, LocationLicense, PurchasedLicense, UserLicense
from opsportal.persistence.repos import licenses as licenses_repo
from opsportal.persistence.repos import teams as teams_repo
from opsportal.persistence.store import DirectoryStore


logger = logging.getLogger(__name__)

# Months added to the purchase (or renewal) date for each renewal period.
RENEWAL_PERIOD_MONTHS: dict[str, int] = {
    "MONTHLY": 1,
    "QUARTERLY": 3,
    "SEMIANNUALLY": 6,
    "ANNUALLY": 12,
    "BIANNUALLY": 24,
}

LICENSE_STATUS_PENDING = "PENDING"
LICENSE_STATUS_ACTIVE = "ACTIVE"
LICENSE_STATUS_EXPIRED = "EXPIRED"
LICENSE_STATUS_SUSPENDED = "SUSPENDED"

LICENSE_STATUSES = {
    LICENSE_STATUS_PENDING,
    LICENSE_STATUS_ACTIVE,
    LICENSE_STATUS_EXPIRED,
    LICENSE_STATUS_SUSPENDED,
}


def _utc_now() -> datetime:
    # Keep entitlement timestamps in UTC for consistent expiry checks.
    return datetime.now(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    # Clamp the day so Jan 31 + 1 month lands on the last day of February.
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def is_unexpired(expires_at: datetime | None, now: datetime) -> bool:
    return expires_at is None or expires_at > now


@dataclass(frozen=True)
class SeatUsage:
    purchased_license_id: str
    license_id: str
    max_users: int | None
    max_locations: int | None
    active_users: int
    active_locations: int

    @property
    def users_available(self) -> int | None:
        if self.max_users is None:
            return None
        return max(0, self.max_users - self.active_users)

    @property
    def locations_available(self) -> int | None:
        if self.max_locations is None:
            return None
        return max(0, self.max_locations - self.active_locations)


@dataclass(frozen=True)
class PurchasedLicenseSummary:
    purchased: PurchasedLicense
    license: License
    usage: SeatUsage


def _normalize_renewal_period(value: str) -> str:
    normalized = (value or "").strip().upper()
    if normalized not in RENEWAL_PERIOD_MONTHS:
        raise ValidationError(
            f"Unsupported renewal period: {value}", code="INVALID_RENEWAL_PERIOD", field="renewal_period"
        )
    return normalized


def _normalize_cap(value: int | None, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field_name} must be a positive integer", field=field_name)
    return value


def _normalize_features(features: Iterable[str] | None) -> list[str]:
    # Keep declaration order but drop blanks and duplicates.
    seen: list[str] = []
    for feature in features or []:
        key = str(feature).strip()
        if key and key not in seen:
            seen.append(key)
    return seen


class EntitlementManager:
    """License catalog, purchases and seat allocation for teams.

    Seat assignment locks the purchased license row before counting so that the
    cap check and the insert happen under one writer. Expiry is evaluated lazily
    against the current clock; nothing here rewrites a row because it aged out.
    """

    def __init__(self, store: DirectoryStore) -> None:
        self._store = store

    async def create_license(
        self,
        team_id: str,
        *,
        name: str,
        renewal_period: str,
        price: Decimal | str | int | float = Decimal("0"),
        description: str | None = None,
        max_users: int | None = None,
        max_locations: int | None = None,
        status: str = LICENSE_STATUS_ACTIVE,
        features: Iterable[str] | None = None,
    ) -> License:
        # Validate before opening a transaction so malformed input never touches the store.
        if not name or not name.strip():
            raise ValidationError("License name is required", field="name")
        period = _normalize_renewal_period(renewal_period)
        try:
            amount = Decimal(str(price))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError("Price must be a number", field="price") from exc
        if amount < 0:
            raise ValidationError("Price must not be negative", field="price")
        normalized_status = (status or "").strip().upper()
        if normalized_status not in LICENSE_STATUSES:
            raise ValidationError(f"Unsupported license status: {status}", field="status")
        users_cap = _normalize_cap(max_users, "max_users")
        locations_cap = _normalize_cap(max_locations, "max_locations")

        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            now = _utc_now()
            license = License(
                id=uuid4().hex,
                team_id=team.id,
                name=name.strip(),
                description=description,
                price=amount,
                renewal_period=period,
                max_users=users_cap,
                max_locations=locations_cap,
                status=normalized_status,
                features=_normalize_features(features),
                created_at=now,
                updated_at=now,
            )
            session.add(license)
        logger.info("license_created team_id=%s license_id=%s", team_id, license.id)
        return license

    async def purchase(self, team_id: str, license_ids: list[str]) -> list[PurchasedLicense]:
        """Record one purchased license per id, all in a single transaction.

        Repeated ids create repeated purchases; callers that want idempotency must
        dedupe before calling.
        """
        if not license_ids:
            raise ValidationError("At least one license id is required", field="license_ids")
        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            catalog = await licenses_repo.get_licenses(session, list(license_ids))
            missing = [license_id for license_id in license_ids if license_id not in catalog]
            if missing:
                raise NotFoundError("License not found", license_id=missing[0])

            now = _utc_now()
            instance_counts: dict[str, int] = {}
            purchased: list[PurchasedLicense] = []
            for license_id in license_ids:
                license = catalog[license_id]
                if license_id not in instance_counts:
                    instance_counts[license_id] = await licenses_repo.count_purchases(
                        session, team_id=team.id, license_id=license_id
                    )
                instance_counts[license_id] += 1
                months = RENEWAL_PERIOD_MONTHS.get(license.renewal_period, 12)
                expires_at = add_months(now, months)
                row = PurchasedLicense(
                    id=uuid4().hex,
                    team_id=team.id,
                    license_id=license_id,
                    purchased_at=now,
                    expires_at=expires_at,
                    is_active=True,
                    last_renewal_date=None,
                    next_renewal_date=expires_at,
                    notes=f"Instance {instance_counts[license_id]} - {now.isoformat()}",
                )
                session.add(row)
                purchased.append(row)
        logger.info(
            "licenses_purchased team_id=%s count=%s license_ids=%s",
            team_id,
            len(purchased),
            ",".join(license_ids),
        )
        return purchased

    async def assign_to_user(
        self,
        purchased_license_id: str,
        user_id: str,
        expires_at: datetime | None = None,
        *,
        team_id: str | None = None,
    ) -> UserLicense:
        async with self._store.transaction() as session:
            purchased = await self._locked_purchase(session, purchased_license_id, team_id)
            member = await teams_repo.get_member(session, team_id=purchased.team_id, user_id=user_id)
            if member is None:
                raise ForbiddenError(
                    "User is not a member of the license's team",
                    code="SEAT_OWNER_NOT_MEMBER",
                    user_id=user_id,
                )
            license = await licenses_repo.get_license(session, purchased.license_id)
            now = _utc_now()
            if license is not None and license.max_users is not None:
                active = await licenses_repo.count_active_user_seats(
                    session, purchased_license_id=purchased.id, now=now
                )
                if active >= license.max_users:
                    logger.info(
                        "seat_cap_reached purchased_license_id=%s kind=user active=%s max=%s",
                        purchased.id,
                        active,
                        license.max_users,
                    )
                    raise ConflictError(
                        "User seat limit reached",
                        code="SEAT_LIMIT_REACHED",
                        purchased_license_id=purchased.id,
                        max_users=license.max_users,
                    )
            seat = UserLicense(
                id=uuid4().hex,
                purchased_license_id=purchased.id,
                user_id=user_id,
                assigned_at=now,
                expires_at=expires_at if expires_at is not None else purchased.expires_at,
            )
            session.add(seat)
        logger.info(
            "seat_assigned kind=user purchased_license_id=%s user_id=%s", purchased_license_id, user_id
        )
        return seat

    async def assign_to_location(
        self,
        purchased_license_id: str,
        location_id: str,
        expires_at: datetime | None = None,
        *,
        team_id: str | None = None,
    ) -> LocationLicense:
        async with self._store.transaction() as session:
            purchased = await self._locked_purchase(session, purchased_license_id, team_id)
            location = await teams_repo.get_location(
                session, team_id=purchased.team_id, location_id=location_id
            )
            if location is None:
                raise ForbiddenError(
                    "Location does not belong to the license's team",
                    code="SEAT_OWNER_NOT_IN_TEAM",
                    location_id=location_id,
                )
            license = await licenses_repo.get_license(session, purchased.license_id)
            now = _utc_now()
            if license is not None and license.max_locations is not None:
                active = await licenses_repo.count_active_location_seats(
                    session, purchased_license_id=purchased.id, now=now
                )
                if active >= license.max_locations:
                    logger.info(
                        "seat_cap_reached purchased_license_id=%s kind=location active=%s max=%s",
                        purchased.id,
                        active,
                        license.max_locations,
                    )
                    raise ConflictError(
                        "Location seat limit reached",
                        code="SEAT_LIMIT_REACHED",
                        purchased_license_id=purchased.id,
                        max_locations=license.max_locations,
                    )
            seat = LocationLicense(
                id=uuid4().hex,
                purchased_license_id=purchased.id,
                location_id=location_id,
                assigned_at=now,
                expires_at=expires_at if expires_at is not None else purchased.expires_at,
                is_active=True,
            )
            session.add(seat)
        logger.info(
            "seat_assigned kind=location purchased_license_id=%s location_id=%s",
            purchased_license_id,
            location_id,
        )
        return seat

    async def revoke(
        self,
        purchased_license_id: str,
        *,
        user_id: str | None = None,
        location_id: str | None = None,
        team_id: str | None = None,
    ) -> int:
        # Exactly one seat holder must be named.
        if (user_id is None) == (location_id is None):
            raise ValidationError("Provide exactly one of user_id or location_id")
        if user_id is not None:
            return await self.revoke_user(purchased_license_id, user_id, team_id=team_id)
        return await self.revoke_location(purchased_license_id, location_id or "", team_id=team_id)

    async def revoke_user(
        self, purchased_license_id: str, user_id: str, *, team_id: str | None = None
    ) -> int:
        async with self._store.transaction() as session:
            purchased = await licenses_repo.get_purchased_license(
                session, purchased_license_id, for_update=True
            )
            if purchased is None or (team_id is not None and purchased.team_id != team_id):
                return 0
            # User seats carry no active flag; revocation removes them.
            removed = await licenses_repo.delete_user_seats(
                session, purchased_license_id=purchased.id, user_id=user_id
            )
        if removed:
            logger.info(
                "seat_revoked kind=user purchased_license_id=%s user_id=%s count=%s",
                purchased_license_id,
                user_id,
                removed,
            )
        return removed

    async def revoke_location(
        self, purchased_license_id: str, location_id: str, *, team_id: str | None = None
    ) -> int:
        async with self._store.transaction() as session:
            purchased = await licenses_repo.get_purchased_license(
                session, purchased_license_id, for_update=True
            )
            if purchased is None or (team_id is not None and purchased.team_id != team_id):
                return 0
            deactivated = await licenses_repo.deactivate_location_seats(
                session, purchased_license_id=purchased.id, location_id=location_id
            )
        if deactivated:
            logger.info(
                "seat_revoked kind=location purchased_license_id=%s location_id=%s count=%s",
                purchased_license_id,
                location_id,
                deactivated,
            )
        return deactivated

    async def renew(self, purchased_license_id: str, *, team_id: str | None = None) -> PurchasedLicense:
        async with self._store.transaction() as session:
            purchased = await self._locked_purchase(session, purchased_license_id, team_id)
            license = await licenses_repo.get_license(session, purchased.license_id)
            months = RENEWAL_PERIOD_MONTHS.get(license.renewal_period if license else "", 12)
            now = _utc_now()
            # Extend from the current expiry when it is still ahead so early renewals keep paid time.
            anchor = purchased.expires_at if purchased.expires_at and purchased.expires_at > now else now
            expires_at = add_months(anchor, months)
            purchased.expires_at = expires_at
            purchased.next_renewal_date = expires_at
            purchased.last_renewal_date = now
            purchased.is_active = True
        logger.info(
            "license_renewed purchased_license_id=%s expires_at=%s",
            purchased_license_id,
            expires_at.isoformat(),
        )
        return purchased

    async def is_entitled(self, team_id: str, feature_key: str) -> bool:
        # Entitlement checks gate UI surfaces; store or lookup failures read as "not entitled".
        if not team_id or not feature_key:
            return False
        try:
            async with self._store.session() as session:
                licenses = await licenses_repo.list_live_licenses(
                    session, team_id=team_id, now=_utc_now()
                )
        except PortalError as exc:
            logger.warning(
                "entitlement_check_failed team_id=%s feature=%s error=%s", team_id, feature_key, exc.code
            )
            return False
        return any(feature_key in (license.features or []) for license in licenses)

    async def require_entitlement(self, team_id: str, feature_key: str) -> None:
        if not await self.is_entitled(team_id, feature_key):
            raise ForbiddenError(
                "Feature not entitled for team",
                code="FEATURE_NOT_ENTITLED",
                feature_key=feature_key,
            )

    async def list_purchased_licenses(self, team_id: str) -> list[PurchasedLicenseSummary]:
        async with self._store.session() as session:
            team = await teams_repo.get_team(session, team_id)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            rows = await licenses_repo.list_purchased_licenses(session, team.id)
            now = _utc_now()
            summaries = []
            for purchased, license in rows:
                usage = await self._usage(session, purchased, license, now)
                summaries.append(PurchasedLicenseSummary(purchased=purchased, license=license, usage=usage))
        return summaries

    async def seat_usage(self, purchased_license_id: str, *, team_id: str | None = None) -> SeatUsage:
        async with self._store.session() as session:
            purchased = await licenses_repo.get_purchased_license(session, purchased_license_id)
            if purchased is None or (team_id is not None and purchased.team_id != team_id):
                raise NotFoundError("Purchased license not found", purchased_license_id=purchased_license_id)
            license = await licenses_repo.get_license(session, purchased.license_id)
            return await self._usage(session, purchased, license, _utc_now())

    async def _locked_purchase(
        self, session: AsyncSession, purchased_license_id: str, team_id: str | None
    ) -> PurchasedLicense:
        purchased = await licenses_repo.get_purchased_license(
            session, purchased_license_id, for_update=True
        )
        # Purchases owned by another team are reported as absent.
        if purchased is None or (team_id is not None and purchased.team_id != team_id):
            raise NotFoundError("Purchased license not found", purchased_license_id=purchased_license_id)
        return purchased

    async def _usage(
        self,
        session: AsyncSession,
        purchased: PurchasedLicense,
        license: License | None,
        now: datetime,
    ) -> SeatUsage:
        active_users = await licenses_repo.count_active_user_seats(
            session, purchased_license_id=purchased.id, now=now
        )
        active_locations = await licenses_repo.count_active_location_seats(
            session, purchased_license_id=purchased.id, now=now
        )
        return SeatUsage(
            purchased_license_id=purchased.id,
            license_id=purchased.license_id,
            max_users=license.max_users if license else None,
            max_locations=license.max_locations if license else None,
            active_users=active_users,
            active_locations=active_locations,
        )
