from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.domain.models import (
    Location,
    RolePermission,
    Team,
    TeamMember,
    TeamRole,
    TenantType,
    User,
)
from opsportal.persistence.guards import team_predicate


async def get_team(session: AsyncSession, team_id: str, *, for_update: bool = False) -> Team | None:
    # Lock the team row when callers serialize per-team writes (status defaults).
    stmt = select(Team).where(Team.id == team_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_team_by_slug(session: AsyncSession, slug: str) -> Team | None:
    result = await session.execute(select(Team).where(Team.slug == slug))
    return result.scalar_one_or_none()


async def get_tenant_type(session: AsyncSession, tenant_type_id: str) -> TenantType | None:
    return await session.get(TenantType, tenant_type_id)


async def get_tenant_type_by_name(session: AsyncSession, name: str) -> TenantType | None:
    result = await session.execute(select(TenantType).where(TenantType.name == name))
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    return await session.get(User, user_id)


async def get_member(session: AsyncSession, *, team_id: str, user_id: str) -> TeamMember | None:
    result = await session.execute(
        select(TeamMember).where(
            team_predicate(TeamMember, team_id),
            TeamMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_role(session: AsyncSession, *, team_id: str, role_id: str) -> TeamRole | None:
    # Roles are team-scoped; a role id from another team never resolves.
    result = await session.execute(
        select(TeamRole).where(team_predicate(TeamRole, team_id), TeamRole.id == role_id)
    )
    return result.scalar_one_or_none()


async def get_role_by_name(session: AsyncSession, *, team_id: str, name: str) -> TeamRole | None:
    result = await session.execute(
        select(TeamRole).where(team_predicate(TeamRole, team_id), TeamRole.name == name)
    )
    return result.scalar_one_or_none()


async def list_role_permissions(session: AsyncSession, role_id: str) -> list[RolePermission]:
    result = await session.execute(
        select(RolePermission)
        .where(RolePermission.team_role_id == role_id)
        .order_by(RolePermission.resource)
    )
    return list(result.scalars().all())


async def get_location(session: AsyncSession, *, team_id: str, location_id: str) -> Location | None:
    result = await session.execute(
        select(Location).where(team_predicate(Location, team_id), Location.id == location_id)
    )
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()
