from __future__ import annotations

import pytest

from opsportal.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from opsportal.persistence.repos import teams as teams_repo
from opsportal.services.authz.guard import AuthorizationGuard
from opsportal.services.authz.permissions import Action, Resource
from opsportal.services.teams import TeamDirectory, normalize_slug
from opsportal.tests.utils.directory import seed_member, seed_team, seed_user


@pytest.mark.parametrize("slug", ["Acme Safety", "acme_safety", "", "acme/ops"])
def test_normalize_slug_rejects_invalid(slug: str) -> None:
    with pytest.raises(ValidationError):
        normalize_slug(slug)


def test_normalize_slug_lowercases() -> None:
    assert normalize_slug("  Acme-2 ") == "acme-2"


@pytest.mark.asyncio
async def test_create_team_seeds_roles_and_tenant_type(store) -> None:
    directory = TeamDirectory(store)
    team = await directory.create_team("acme-safety", "Acme Safety", "ppe")
    other = await directory.create_team("acme-north", "Acme North", "PPE")
    assert team.use_vendors is False
    # Tenant types are shared by name.
    assert other.tenant_type_id == team.tenant_type_id

    async with store.session() as session:
        for role_name in ("OWNER", "ADMIN", "MEMBER"):
            role = await teams_repo.get_role_by_name(session, team_id=team.id, name=role_name)
            assert role is not None
            assert await teams_repo.list_role_permissions(session, role.id)

    with pytest.raises(ConflictError) as exc_info:
        await directory.create_team("acme-safety", "Again", "PPE")
    assert exc_info.value.code == "TEAM_SLUG_EXISTS"
    with pytest.raises(ValidationError):
        await directory.create_team("new-team", "  ", "PPE")


@pytest.mark.asyncio
async def test_create_user_normalizes_email(store) -> None:
    directory = TeamDirectory(store)
    user = await directory.create_user(" Ana@Example.com ", "Ana")
    assert user.email == "ana@example.com"
    with pytest.raises(ConflictError):
        await directory.create_user("ANA@example.com")
    with pytest.raises(ValidationError):
        await directory.create_user("not-an-email")


@pytest.mark.asyncio
async def test_add_member_rules(store) -> None:
    team = await seed_team(store)
    user = await seed_user(store)
    directory = TeamDirectory(store)

    member = await directory.add_member(team.id, user.id, "admin")
    assert member.team_id == team.id
    with pytest.raises(ConflictError) as exc_info:
        await directory.add_member(team.id, user.id, "MEMBER")
    assert exc_info.value.code == "MEMBER_EXISTS"
    with pytest.raises(NotFoundError):
        await directory.add_member(team.id, user.id, "AUDITOR")
    with pytest.raises(NotFoundError):
        await directory.add_member(team.id, "missing", "MEMBER")
    with pytest.raises(NotFoundError):
        await directory.add_member("missing", user.id, "MEMBER")


@pytest.mark.asyncio
async def test_set_role_permissions_validates_before_writing(store) -> None:
    team = await seed_team(store)
    directory = TeamDirectory(store)
    with pytest.raises(ValidationError):
        await directory.set_role_permissions(team.id, "MEMBER", {"ALERT": ["read"], "NOPE": ["read"]})

    async with store.session() as session:
        role = await teams_repo.get_role_by_name(session, team_id=team.id, name="MEMBER")
        rows = await teams_repo.list_role_permissions(session, role.id)
    # The default matrix survived the rejected update.
    assert len(rows) == 5

    assert await directory.set_role_permissions(team.id, "member", {"ALERT": ["read"]}) == {"ALERT": 2}
    with pytest.raises(NotFoundError):
        await directory.set_role_permissions(team.id, "AUDITOR", {"ALERT": ["read"]})


@pytest.mark.asyncio
async def test_locations_and_slug_lookup(store) -> None:
    team = await seed_team(store)
    directory = TeamDirectory(store)
    location = await directory.add_location(team.id, "  North Barn ")
    assert location.name == "North Barn"
    with pytest.raises(ValidationError):
        await directory.add_location(team.id, "")
    with pytest.raises(NotFoundError):
        await directory.add_location("missing", "Barn")

    found = await directory.get_team_by_slug(team.slug)
    assert found.id == team.id
    with pytest.raises(NotFoundError):
        await directory.get_team_by_slug("missing")


async def _access(store, team, role: str):
    seeded = await seed_member(store, team, role=role)
    return await AuthorizationGuard(store).check(seeded.principal, team.slug, Resource.TEAM_MEMBER, Action.UPDATE)


async def _role_rows(store, team, role_name: str) -> dict[str, int]:
    async with store.session() as session:
        role = await teams_repo.get_role_by_name(session, team_id=team.id, name=role_name)
        return {row.resource: row.actions for row in await teams_repo.list_role_permissions(session, role.id)}


@pytest.mark.asyncio
async def test_admin_cannot_grant_permissions_it_lacks(store) -> None:
    team = await seed_team(store)
    admin = await _access(store, team, "ADMIN")
    directory = TeamDirectory(store)
    before = await _role_rows(store, team, "ADMIN")

    with pytest.raises(ForbiddenError) as exc_info:
        await directory.set_role_permissions(
            team.id, "ADMIN", {"ALL": ["create", "read", "update", "delete"]}, granted_by=admin
        )
    assert exc_info.value.code == "PERMISSION_ESCALATION"
    assert exc_info.value.details["resources"] == ["TEAM_PAYMENTS"]
    with pytest.raises(ForbiddenError):
        await directory.set_role_permissions(team.id, "MEMBER", {"TEAM_PAYMENTS": ["read"]}, granted_by=admin)
    assert await _role_rows(store, team, "ADMIN") == before

    # Grants within the caller's own matrix go through.
    rows = await directory.set_role_permissions(
        team.id, "MEMBER", {"ALERT": ["read", "update", "delete"]}, granted_by=admin
    )
    assert rows == {"ALERT": 14}


@pytest.mark.asyncio
async def test_admin_cannot_change_owner_role(store) -> None:
    team = await seed_team(store)
    admin = await _access(store, team, "ADMIN")
    with pytest.raises(ForbiddenError) as exc_info:
        await TeamDirectory(store).set_role_permissions(team.id, "owner", {}, granted_by=admin)
    assert exc_info.value.code == "ROLE_CHANGE_FORBIDDEN"
    assert await _role_rows(store, team, "OWNER") == {"ALL": 15}


@pytest.mark.asyncio
async def test_owner_may_widen_admin(store) -> None:
    team = await seed_team(store)
    owner = await _access(store, team, "OWNER")
    rows = await TeamDirectory(store).set_role_permissions(
        team.id, "ADMIN", {"TEAM_PAYMENTS": ["read"]}, granted_by=owner
    )
    assert rows == {"TEAM_PAYMENTS": 2}


@pytest.mark.asyncio
async def test_role_assignment_is_capped_at_callers_role(store) -> None:
    team = await seed_team(store)
    admin = await _access(store, team, "ADMIN")
    directory = TeamDirectory(store)
    first = await seed_user(store)
    second = await seed_user(store)

    with pytest.raises(ForbiddenError) as exc_info:
        await directory.add_member(team.id, first.id, "OWNER", granted_by=admin)
    assert exc_info.value.code == "ROLE_ASSIGNMENT_FORBIDDEN"
    async with store.session() as session:
        assert await teams_repo.get_member(session, team_id=team.id, user_id=first.id) is None

    member = await directory.add_member(team.id, second.id, "ADMIN", granted_by=admin)
    assert member.user_id == second.id
