from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.domain.models import License, LocationLicense, PurchasedLicense, UserLicense
from opsportal.persistence.guards import team_predicate


async def get_licenses(session: AsyncSession, license_ids: list[str]) -> dict[str, License]:
    # Fetch catalog entries for a purchase batch in a single query.
    if not license_ids:
        return {}
    result = await session.execute(select(License).where(License.id.in_(set(license_ids))))
    return {license.id: license for license in result.scalars().all()}


async def get_license(session: AsyncSession, license_id: str) -> License | None:
    return await session.get(License, license_id)


async def get_purchased_license(
    session: AsyncSession,
    purchased_license_id: str,
    *,
    for_update: bool = False,
) -> PurchasedLicense | None:
    # Seat assignment locks the purchased license row so cap checks serialize.
    stmt = select(PurchasedLicense).where(PurchasedLicense.id == purchased_license_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_purchased_licenses(
    session: AsyncSession, team_id: str
) -> list[tuple[PurchasedLicense, License]]:
    result = await session.execute(
        select(PurchasedLicense, License)
        .join(License, License.id == PurchasedLicense.license_id)
        .where(team_predicate(PurchasedLicense, team_id))
        .order_by(PurchasedLicense.purchased_at.desc(), PurchasedLicense.id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def count_purchases(session: AsyncSession, *, team_id: str, license_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(PurchasedLicense)
        .where(
            team_predicate(PurchasedLicense, team_id),
            PurchasedLicense.license_id == license_id,
        )
    )
    return int(result.scalar_one())


async def count_active_user_seats(
    session: AsyncSession, *, purchased_license_id: str, now: datetime
) -> int:
    # A user seat is active while it has no expiry or the expiry is in the future.
    result = await session.execute(
        select(func.count())
        .select_from(UserLicense)
        .where(
            UserLicense.purchased_license_id == purchased_license_id,
            or_(UserLicense.expires_at.is_(None), UserLicense.expires_at > now),
        )
    )
    return int(result.scalar_one())


async def count_active_location_seats(
    session: AsyncSession, *, purchased_license_id: str, now: datetime
) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(LocationLicense)
        .where(
            LocationLicense.purchased_license_id == purchased_license_id,
            LocationLicense.is_active.is_(True),
            or_(LocationLicense.expires_at.is_(None), LocationLicense.expires_at > now),
        )
    )
    return int(result.scalar_one())


async def delete_user_seats(
    session: AsyncSession, *, purchased_license_id: str, user_id: str
) -> int:
    result = await session.execute(
        delete(UserLicense).where(
            UserLicense.purchased_license_id == purchased_license_id,
            UserLicense.user_id == user_id,
        )
    )
    return int(result.rowcount or 0)


async def deactivate_location_seats(
    session: AsyncSession, *, purchased_license_id: str, location_id: str
) -> int:
    result = await session.execute(
        update(LocationLicense)
        .where(
            LocationLicense.purchased_license_id == purchased_license_id,
            LocationLicense.location_id == location_id,
            LocationLicense.is_active.is_(True),
        )
        .values(is_active=False)
    )
    return int(result.rowcount or 0)


async def list_live_licenses(
    session: AsyncSession, *, team_id: str, now: datetime
) -> list[License]:
    # Catalog entries behind active, unexpired purchases; feature filtering happens in Python
    # so the JSON features column works the same on every backend.
    result = await session.execute(
        select(License)
        .join(PurchasedLicense, PurchasedLicense.license_id == License.id)
        .where(
            team_predicate(PurchasedLicense, team_id),
            PurchasedLicense.is_active.is_(True),
            or_(PurchasedLicense.expires_at.is_(None), PurchasedLicense.expires_at > now),
        )
    )
    return list(result.scalars().unique().all())
