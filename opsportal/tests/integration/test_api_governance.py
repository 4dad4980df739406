from __future__ import annotations

import pytest

from opsportal.tests.utils.directory import (
    auth_headers,
    issue_token,
    seed_location,
    seed_member,
    seed_purchase,
    seed_team,
    seed_user,
)


def _assert_error(response, status_code: int, code: str) -> dict:
    assert response.status_code == status_code
    payload = response.json()
    assert payload["error"]["code"] == code
    assert payload["meta"]["api_version"] == "v1"
    return payload["error"]


async def _owner_headers(store, team) -> dict[str, str]:
    owner = await seed_member(store, team, role="OWNER", name="Olive Owner")
    return auth_headers(await issue_token(store, owner.user))


@pytest.mark.asyncio
async def test_health_reports_database(client) -> None:
    response = await client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["data"]["database"] == "ok"


@pytest.mark.asyncio
async def test_missing_or_bad_token_is_unauthenticated(client, store) -> None:
    team = await seed_team(store)
    response = await client.get(f"/v1/teams/{team.slug}/policy")
    _assert_error(response, 401, "AUTH_UNAUTHENTICATED")
    assert response.headers["WWW-Authenticate"] == "Bearer"

    response = await client.get(f"/v1/teams/{team.slug}/policy", headers={"Authorization": "Token abc"})
    _assert_error(response, 401, "AUTH_UNAUTHENTICATED")


@pytest.mark.asyncio
async def test_unknown_team_is_unauthenticated(client, store) -> None:
    team = await seed_team(store)
    headers = await _owner_headers(store, team)
    response = await client.get("/v1/teams/no-such-team/policy", headers=headers)
    _assert_error(response, 401, "AUTH_UNAUTHENTICATED")


@pytest.mark.asyncio
async def test_member_without_permission_is_forbidden(client, store) -> None:
    team = await seed_team(store)
    member = await seed_member(store, team, role="MEMBER")
    headers = auth_headers(await issue_token(store, member.user))

    response = await client.post(
        f"/v1/teams/{team.slug}/purchased-licenses", json={"license_ids": ["x"]}, headers=headers
    )
    error = _assert_error(response, 403, "AUTH_FORBIDDEN")
    assert error["details"] == {"resource": "TEAM_LICENSES", "action": "create"}

    other_team = await seed_team(store)
    response = await client.get(f"/v1/teams/{other_team.slug}/policy", headers=headers)
    _assert_error(response, 403, "TEAM_MEMBERSHIP_REQUIRED")


@pytest.mark.asyncio
async def test_policy_and_vendor_toggle(client, store) -> None:
    team = await seed_team(store, tenant_type="Farm")
    headers = await _owner_headers(store, team)

    response = await client.get(f"/v1/teams/{team.slug}/policy", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["meta"]["request_id"]
    assert body["data"]["vocabulary"] == {"location": "Farm", "locations": "Farms"}
    assert "vendors" not in body["data"]["enabled_features"]

    response = await client.post(
        f"/v1/teams/{team.slug}/settings/vendors", json={"use_vendors": True}, headers=headers
    )
    assert response.status_code == 200
    assert "vendors" in response.json()["data"]["enabled_features"]

    response = await client.post(f"/v1/teams/{team.slug}/locations", json={"name": "North"}, headers=headers)
    assert response.status_code == 201
    assert response.json()["data"]["label"] == "Farm"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client, store) -> None:
    team = await seed_team(store)
    headers = await _owner_headers(store, team)
    response = await client.get(
        f"/v1/teams/{team.slug}/policy", headers={**headers, "X-Request-Id": "req-123"}
    )
    assert response.headers["X-Request-Id"] == "req-123"
    assert response.json()["meta"]["request_id"] == "req-123"


@pytest.mark.asyncio
async def test_purchase_assign_and_revoke_flow(client, store) -> None:
    team = await seed_team(store)
    headers = await _owner_headers(store, team)
    first = await seed_member(store, team)
    second = await seed_member(store, team)

    response = await client.post(
        f"/v1/teams/{team.slug}/licenses",
        json={"name": "Pro", "renewal_period": "MONTHLY", "price": "25.00", "max_users": 1, "features": ["reports"]},
        headers=headers,
    )
    assert response.status_code == 201
    license_id = response.json()["data"]["id"]

    response = await client.post(
        f"/v1/teams/{team.slug}/purchased-licenses", json={"license_ids": [license_id]}, headers=headers
    )
    assert response.status_code == 201
    [purchase] = response.json()["data"]
    assert purchase["notes"].startswith("Instance 1 ")
    base = f"/v1/teams/{team.slug}/purchased-licenses/{purchase['id']}"

    response = await client.post(f"{base}/users", json={"user_id": first.user.id}, headers=headers)
    assert response.status_code == 201
    assert response.json()["data"]["expires_at"] == purchase["expires_at"]

    response = await client.post(f"{base}/users", json={"user_id": second.user.id}, headers=headers)
    _assert_error(response, 409, "SEAT_LIMIT_REACHED")

    response = await client.get(f"{base}/usage", headers=headers)
    assert response.json()["data"]["active_users"] == 1

    response = await client.delete(f"{base}/users/{first.user.id}", headers=headers)
    assert response.json()["data"] == {"revoked": 1}
    response = await client.post(f"{base}/users", json={"user_id": second.user.id}, headers=headers)
    assert response.status_code == 201

    response = await client.get(f"/v1/teams/{team.slug}/entitlements/reports", headers=headers)
    assert response.json()["data"] == {"feature_key": "reports", "entitled": True}

    response = await client.get(f"/v1/teams/{team.slug}/purchased-licenses", headers=headers)
    [listed] = response.json()["data"]
    assert listed["license_name"] == "Pro"
    assert listed["usage"]["users_available"] == 0


@pytest.mark.asyncio
async def test_location_seat_rejects_foreign_location(client, store) -> None:
    team = await seed_team(store, tenant_type="PPE")
    other_team = await seed_team(store)
    headers = await _owner_headers(store, team)
    _license, purchased = await seed_purchase(store, team, max_locations=2)
    foreign = await seed_location(store, other_team)
    local = await seed_location(store, team, "Plant 1")
    base = f"/v1/teams/{team.slug}/purchased-licenses/{purchased.id}/locations"

    response = await client.post(base, json={"location_id": foreign.id}, headers=headers)
    _assert_error(response, 403, "SEAT_OWNER_NOT_IN_TEAM")

    response = await client.post(base, json={"location_id": local.id}, headers=headers)
    assert response.status_code == 201
    response = await client.delete(f"{base}/{local.id}", headers=headers)
    assert response.json()["data"] == {"revoked": 1}


@pytest.mark.asyncio
async def test_status_crud_and_alert_transition(client, store) -> None:
    team = await seed_team(store)
    headers = await _owner_headers(store, team)
    base = f"/v1/teams/{team.slug}/compliance-statuses"

    response = await client.post(
        f"{base}/defaults",
        json={
            "statuses": [
                {"name": "Open", "code": "open", "is_default": True},
                {"name": "Resolved", "code": "resolved"},
            ]
        },
        headers=headers,
    )
    assert response.status_code == 201
    open_status, resolved = response.json()["data"]

    response = await client.post(
        f"{base}/defaults", json={"statuses": [{"name": "Again", "code": "again"}]}, headers=headers
    )
    _assert_error(response, 409, "STATUSES_ALREADY_DEFINED")

    response = await client.put(f"{base}/{resolved['id']}", json={"color": "#00ff00"}, headers=headers)
    assert response.json()["data"]["color"] == "#00ff00"
    assert response.json()["data"]["is_default"] is False

    alerts = f"/v1/teams/{team.slug}/alerts"
    response = await client.post(alerts, json={"title": "Missing gloves", "severity": "high"}, headers=headers)
    assert response.status_code == 201
    alert = response.json()["data"]
    assert alert["status_id"] == open_status["id"]

    response = await client.post(
        f"{alerts}/{alert['id']}/update-status",
        json={"status_id": resolved["id"], "comment": "   "},
        headers=headers,
    )
    _assert_error(response, 400, "VALIDATION_ERROR")

    response = await client.post(
        f"{alerts}/{alert['id']}/update-status",
        json={"status_id": resolved["id"], "comment": "Gloves restocked"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["status_id"] == resolved["id"]

    response = await client.get(f"{alerts}/{alert['id']}/history", headers=headers)
    [entry] = response.json()["data"]
    assert entry["user"] == "Olive Owner"
    assert entry["statusFrom"] == open_status["id"]
    assert entry["statusTo"] == resolved["id"]

    response = await client.delete(f"{base}/{resolved['id']}", headers=headers)
    _assert_error(response, 409, "STATUS_IN_USE")
    response = await client.delete(f"{base}/{open_status['id']}", headers=headers)
    _assert_error(response, 400, "STATUS_IS_DEFAULT")


@pytest.mark.asyncio
async def test_member_can_transition_but_not_define_statuses(client, store) -> None:
    team = await seed_team(store)
    owner_headers = await _owner_headers(store, team)
    member = await seed_member(store, team)
    member_headers = auth_headers(await issue_token(store, member.user))

    response = await client.post(
        f"/v1/teams/{team.slug}/compliance-statuses",
        json={"name": "Open", "code": "open", "is_default": True},
        headers=member_headers,
    )
    _assert_error(response, 403, "AUTH_FORBIDDEN")

    response = await client.post(
        f"/v1/teams/{team.slug}/compliance-statuses",
        json={"name": "Open", "code": "open", "is_default": True},
        headers=owner_headers,
    )
    status_id = response.json()["data"]["id"]
    response = await client.post(f"/v1/teams/{team.slug}/alerts", json={"title": "Spill"}, headers=owner_headers)
    alert_id = response.json()["data"]["id"]

    response = await client.post(
        f"/v1/teams/{team.slug}/alerts/{alert_id}/update-status",
        json={"status_id": status_id, "comment": "Checked"},
        headers=member_headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["comments"][0]["user"] == member.user.email


@pytest.mark.asyncio
async def test_malformed_body_is_validation_error(client, store) -> None:
    team = await seed_team(store)
    headers = await _owner_headers(store, team)
    response = await client.post(f"/v1/teams/{team.slug}/alerts", json={"severity": "low"}, headers=headers)
    error = _assert_error(response, 400, "VALIDATION_ERROR")
    assert error["details"]["errors"]


@pytest.mark.asyncio
async def test_mutations_are_audited(client, store) -> None:
    team = await seed_team(store)
    headers = await _owner_headers(store, team)
    await client.post(f"/v1/teams/{team.slug}/settings/vendors", json={"use_vendors": True}, headers=headers)
    await client.put(
        f"/v1/teams/{team.slug}/roles/member/permissions",
        json={"permissions": {"ALERT": ["read"]}},
        headers=headers,
    )

    response = await client.get(f"/v1/teams/{team.slug}/audit-events", headers=headers)
    assert response.status_code == 200
    event_types = [event["event_type"] for event in response.json()["data"]]
    assert event_types == ["team.role.permissions_replaced", "team.vendors.toggled"]

    response = await client.get(
        f"/v1/teams/{team.slug}/audit-events", params={"event_type": "team.vendors.toggled"}, headers=headers
    )
    [event] = response.json()["data"]
    assert event["metadata"] == {"use_vendors": True}


@pytest.mark.asyncio
async def test_admin_cannot_escalate_through_role_administration(client, store) -> None:
    team = await seed_team(store)
    owner_headers = await _owner_headers(store, team)
    admin = await seed_member(store, team, role="ADMIN")
    admin_headers = auth_headers(await issue_token(store, admin.user))
    newcomer = await seed_user(store)
    roles = f"/v1/teams/{team.slug}/roles"

    response = await client.put(
        f"{roles}/ADMIN/permissions",
        json={"permissions": {"ALL": ["create", "read", "update", "delete"]}},
        headers=admin_headers,
    )
    error = _assert_error(response, 403, "PERMISSION_ESCALATION")
    assert error["details"] == {"resources": ["TEAM_PAYMENTS"]}

    response = await client.put(f"{roles}/OWNER/permissions", json={"permissions": {}}, headers=admin_headers)
    _assert_error(response, 403, "ROLE_CHANGE_FORBIDDEN")

    response = await client.post(
        f"/v1/teams/{team.slug}/members", json={"user_id": newcomer.id, "role": "OWNER"}, headers=admin_headers
    )
    _assert_error(response, 403, "ROLE_ASSIGNMENT_FORBIDDEN")

    # The owner still holds every permission, including ones the admin tried to reach.
    response = await client.put(
        f"{roles}/ADMIN/permissions", json={"permissions": {"TEAM_PAYMENTS": ["read"]}}, headers=owner_headers
    )
    assert response.status_code == 200
    assert response.json()["data"] == {"role": "ADMIN", "permissions": {"TEAM_PAYMENTS": 2}}


@pytest.mark.asyncio
async def test_meta_carries_team_slug(client, store) -> None:
    team = await seed_team(store)
    headers = await _owner_headers(store, team)
    response = await client.get(f"/v1/teams/{team.slug}/policy", headers=headers)
    assert response.json()["meta"]["team"] == team.slug

    response = await client.get("/v1/health")
    assert response.json()["meta"]["team"] is None
