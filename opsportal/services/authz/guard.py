from __future__ import annotations

from dataclasses import dataclass
import logging

from opsportal.core.errors import ForbiddenError, UnauthenticatedError
from opsportal.domain.models import Team, TeamMember
from opsportal.persistence.repos import teams as teams_repo
from opsportal.persistence.store import DirectoryStore
from opsportal.services.auth.sessions import Principal
from opsportal.services.authz.permissions import (
    Action,
    PermissionMap,
    Resource,
    build_permission_map,
    is_allowed,
    parse_action,
    parse_resource,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberAccess:
    # Resolved membership handed to downstream components so nothing re-resolves it.
    team: Team
    member: TeamMember
    role_name: str
    permissions: PermissionMap

    @property
    def team_id(self) -> str:
        return self.team.id

    @property
    def user_id(self) -> str:
        return self.member.user_id

    def allows(self, resource: Resource | str, action: Action | str) -> bool:
        return is_allowed(self.permissions, parse_resource(resource), parse_action(action))


class AuthorizationGuard:
    """Decide whether an actor may perform an action on a resource within a team.

    The guard only reads. Missing sessions and missing teams are both reported as
    Unauthenticated so callers cannot discover which team slugs exist; membership and
    permission failures are Forbidden.
    """

    def __init__(self, store: DirectoryStore) -> None:
        self._store = store

    async def check(
        self,
        actor: Principal | None,
        team_slug: str,
        resource: Resource | str,
        action: Action | str,
    ) -> MemberAccess:
        # Vocabulary errors are programming mistakes and surface before any lookup.
        resolved_resource = parse_resource(resource)
        resolved_action = parse_action(action)
        if actor is None:
            raise UnauthenticatedError("Authentication required")

        async with self._store.session() as session:
            team = await teams_repo.get_team_by_slug(session, team_slug)
            if team is None:
                logger.info("authz_denied reason=team_missing team_slug=%s", team_slug)
                raise UnauthenticatedError("Authentication required")
            member = await teams_repo.get_member(session, team_id=team.id, user_id=actor.user_id)
            if member is None:
                logger.info(
                    "authz_denied reason=not_member team_id=%s user_id=%s", team.id, actor.user_id
                )
                raise ForbiddenError("Not a member of this team", code="TEAM_MEMBERSHIP_REQUIRED")
            role = await teams_repo.get_role(session, team_id=team.id, role_id=member.role_id)
            rows = await teams_repo.list_role_permissions(session, member.role_id)

        permissions = build_permission_map((row.resource, row.actions) for row in rows)
        if not is_allowed(permissions, resolved_resource, resolved_action):
            logger.info(
                "authz_denied reason=permission team_id=%s user_id=%s resource=%s action=%s",
                team.id,
                actor.user_id,
                resolved_resource.value,
                resolved_action.value,
            )
            raise ForbiddenError(
                "Insufficient permissions",
                resource=resolved_resource.value,
                action=resolved_action.value,
            )
        return MemberAccess(
            team=team,
            member=member,
            role_name=role.name if role is not None else "",
            permissions=permissions,
        )
