from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Depends, Path, Request

from opsportal.core.config import get_settings
from opsportal.persistence.db import get_store
from opsportal.persistence.store import DirectoryStore
from opsportal.services.auth.sessions import Principal, resolve_session
from opsportal.services.authz.guard import AuthorizationGuard, MemberAccess
from opsportal.services.authz.permissions import Action, Resource
from opsportal.services.entitlements import EntitlementManager
from opsportal.services.status_workflow import StatusWorkflowEngine
from opsportal.services.teams import TeamDirectory
from opsportal.services.tenant_policy import TenantPolicyResolver


def get_directory_store() -> DirectoryStore:
    # Tests override this dependency with a store bound to a temporary database.
    return get_store()


def _parse_bearer_token(header_value: str | None) -> str | None:
    # Anything other than "Bearer <token>" is treated as no credentials.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def get_actor(
    request: Request,
    store: DirectoryStore = Depends(get_directory_store),
) -> Principal | None:
    # Resolve the session without raising; the guard decides what a missing actor means.
    settings = get_settings()
    raw_token = _parse_bearer_token(request.headers.get(settings.auth_session_header))
    if raw_token is None:
        return None
    async with store.session() as session:
        return await resolve_session(session=session, raw_token=raw_token)


def get_guard(store: DirectoryStore = Depends(get_directory_store)) -> AuthorizationGuard:
    return AuthorizationGuard(store)


def get_policy_resolver(store: DirectoryStore = Depends(get_directory_store)) -> TenantPolicyResolver:
    # One resolver per request so its cache never outlives a vendor toggle.
    return TenantPolicyResolver(store)


def get_entitlements(store: DirectoryStore = Depends(get_directory_store)) -> EntitlementManager:
    return EntitlementManager(store)


def get_status_engine(store: DirectoryStore = Depends(get_directory_store)) -> StatusWorkflowEngine:
    return StatusWorkflowEngine(store)


def get_team_directory(store: DirectoryStore = Depends(get_directory_store)) -> TeamDirectory:
    return TeamDirectory(store)


def require_team_permission(
    resource: Resource, action: Action
) -> Callable[..., Awaitable[MemberAccess]]:
    # Dependency factory: every team route authorizes before touching the core components.
    async def _dependency(
        slug: str = Path(..., min_length=1, max_length=128),
        actor: Principal | None = Depends(get_actor),
        guard: AuthorizationGuard = Depends(get_guard),
    ) -> MemberAccess:
        return await guard.check(actor, slug, resource, action)

    return _dependency
