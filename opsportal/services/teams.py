from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping
from uuid import uuid4

from sqlalchemy import delete

from opsportal.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from opsportal.domain.models import (
    Location,
    RolePermission,
    Team,
    TeamMember,
    TeamRole,
    TenantType,
    User,
)
from opsportal.persistence.repos import teams as teams_repo
from opsportal.persistence.store import DirectoryStore
from opsportal.services.authz.guard import MemberAccess
from opsportal.services.authz.permissions import (
    Action,
    DEFAULT_ROLE_PERMISSIONS,
    build_permission_map,
    excess_permissions,
    normalize_permission_rows,
    role_rank,
)
from opsportal.services.tenant_policy import canonical_tenant_type


logger = logging.getLogger(__name__)

_SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")


def normalize_slug(slug: str) -> str:
    normalized = (slug or "").strip().lower()
    if not _SLUG_PATTERN.match(normalized):
        raise ValidationError("Slug must contain only a-z, 0-9 and '-'", field="slug")
    return normalized


def _check_grant(granted_by: MemberAccess, role_name: str, rows: dict[str, int]) -> None:
    target = (role_name or "").strip().upper()
    if role_rank(target) > role_rank(granted_by.role_name):
        raise ForbiddenError(
            "Cannot change a role ranked above your own",
            code="ROLE_CHANGE_FORBIDDEN",
            role=target,
        )
    excess = excess_permissions(build_permission_map(rows.items()), granted_by.permissions)
    if excess:
        resources = sorted(resource.value for resource in excess)
        logger.warning(
            "role_grant_rejected team_id=%s role=%s actor_id=%s resources=%s",
            granted_by.team_id,
            target,
            granted_by.user_id,
            ",".join(resources),
        )
        raise ForbiddenError(
            "Cannot grant permissions you do not hold",
            code="PERMISSION_ESCALATION",
            resources=resources,
        )


class TeamDirectory:
    """Onboarding and administration for teams, members, roles and locations.

    Slugs are assigned once at creation and no operation here rewrites them.
    """

    def __init__(self, store: DirectoryStore) -> None:
        self._store = store

    async def create_user(self, email: str, name: str | None = None) -> User:
        normalized = (email or "").strip().lower()
        if "@" not in normalized:
            raise ValidationError("A valid email is required", field="email")
        async with self._store.transaction() as session:
            if await teams_repo.get_user_by_email(session, normalized) is not None:
                raise ConflictError("Email already registered", code="USER_EMAIL_EXISTS", field="email")
            user = User(id=uuid4().hex, email=normalized, name=(name or "").strip() or None, is_active=True)
            session.add(user)
        logger.info("user_created user_id=%s", user.id)
        return user

    async def create_team(self, slug: str, name: str, tenant_type_name: str) -> Team:
        normalized_slug = normalize_slug(slug)
        if not name or not name.strip():
            raise ValidationError("Team name is required", field="name")
        type_name = canonical_tenant_type(tenant_type_name)

        async with self._store.transaction() as session:
            if await teams_repo.get_team_by_slug(session, normalized_slug) is not None:
                raise ConflictError("Team slug already taken", code="TEAM_SLUG_EXISTS", slug=normalized_slug)
            tenant_type = await teams_repo.get_tenant_type_by_name(session, type_name)
            if tenant_type is None:
                tenant_type = TenantType(id=uuid4().hex, name=type_name, description=None)
                session.add(tenant_type)
                await session.flush()
            team = Team(
                id=uuid4().hex,
                slug=normalized_slug,
                name=name.strip(),
                tenant_type_id=tenant_type.id,
                use_vendors=False,
            )
            session.add(team)
            await session.flush()
            # Seed the built-in roles so the creator can be granted OWNER immediately.
            for role_name, matrix in DEFAULT_ROLE_PERMISSIONS.items():
                role = TeamRole(id=uuid4().hex, team_id=team.id, name=role_name)
                session.add(role)
                await session.flush()
                for resource_name, bits in matrix.items():
                    session.add(RolePermission(team_role_id=role.id, resource=resource_name, actions=bits))
        logger.info("team_created team_id=%s slug=%s tenant_type=%s", team.id, team.slug, type_name)
        return team

    async def add_member(
        self,
        team_id: str,
        user_id: str,
        role_name: str,
        *,
        granted_by: MemberAccess | None = None,
    ) -> TeamMember:
        # granted_by is the acting member; nobody may hand out a role above their own.
        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            user = await teams_repo.get_user(session, user_id)
            if user is None:
                raise NotFoundError("User not found", user_id=user_id)
            role = await teams_repo.get_role_by_name(
                session, team_id=team.id, name=(role_name or "").strip().upper()
            )
            if role is None:
                raise NotFoundError("Role not found", role=role_name)
            if granted_by is not None and role_rank(role.name) > role_rank(granted_by.role_name):
                raise ForbiddenError(
                    "Cannot assign a role above your own",
                    code="ROLE_ASSIGNMENT_FORBIDDEN",
                    role=role.name,
                )
            if await teams_repo.get_member(session, team_id=team.id, user_id=user.id) is not None:
                raise ConflictError("User is already a member", code="MEMBER_EXISTS", user_id=user_id)
            member = TeamMember(id=uuid4().hex, team_id=team.id, user_id=user.id, role_id=role.id)
            session.add(member)
        logger.info("member_added team_id=%s user_id=%s role=%s", team_id, user_id, role.name)
        return member

    async def set_role_permissions(
        self,
        team_id: str,
        role_name: str,
        permissions: Mapping[str, Iterable[Action | str]],
        *,
        granted_by: MemberAccess | None = None,
    ) -> dict[str, int]:
        """Replace a role's permission matrix.

        When ``granted_by`` is given the caller may not edit a role ranked above
        their own, and may not grant any resource or action they do not hold.
        """
        # Validate the whole matrix first so a bad entry never leaves a half-written role.
        rows = normalize_permission_rows(permissions)
        if granted_by is not None:
            _check_grant(granted_by, role_name, rows)
        async with self._store.transaction() as session:
            role = await teams_repo.get_role_by_name(
                session, team_id=team_id, name=(role_name or "").strip().upper()
            )
            if role is None:
                raise NotFoundError("Role not found", role=role_name)
            await session.execute(delete(RolePermission).where(RolePermission.team_role_id == role.id))
            for resource_name, bits in rows.items():
                session.add(RolePermission(team_role_id=role.id, resource=resource_name, actions=bits))
        logger.info(
            "role_permissions_replaced team_id=%s role=%s resources=%s", team_id, role.name, len(rows)
        )
        return rows

    async def set_use_vendors(self, team_id: str, use_vendors: bool) -> Team:
        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id, for_update=True)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            team.use_vendors = bool(use_vendors)
        logger.info("team_vendors_toggled team_id=%s use_vendors=%s", team_id, team.use_vendors)
        return team

    async def add_location(self, team_id: str, name: str) -> Location:
        if not name or not name.strip():
            raise ValidationError("Location name is required", field="name")
        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            location = Location(id=uuid4().hex, team_id=team.id, name=name.strip())
            session.add(location)
        logger.info("location_added team_id=%s location_id=%s", team_id, location.id)
        return location

    async def get_team_by_slug(self, slug: str) -> Team:
        async with self._store.session() as session:
            team = await teams_repo.get_team_by_slug(session, slug)
        if team is None:
            raise NotFoundError("Team not found", team_slug=slug)
        return team
