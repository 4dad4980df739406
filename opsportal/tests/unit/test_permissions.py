from __future__ import annotations

import pytest

from opsportal.core.errors import ValidationError
from opsportal.services.authz.permissions import (
    ALL_RESOURCES,
    DEFAULT_ROLE_PERMISSIONS,
    Action,
    Resource,
    actions_to_bits,
    bits_to_actions,
    build_permission_map,
    normalize_permission_rows,
    parse_action,
    parse_resource,
)


def test_action_bits_round_trip_through_mask() -> None:
    assert actions_to_bits(["create", "delete"]) == 9
    assert bits_to_actions(6) == frozenset({Action.READ, Action.UPDATE})
    assert bits_to_actions(0) == frozenset()


def test_parse_rejects_unknown_vocabulary() -> None:
    assert parse_resource("alert") is Resource.ALERT
    assert parse_action("READ") is Action.READ
    with pytest.raises(ValidationError) as resource_error:
        parse_resource("TEAM_SECRETS")
    assert resource_error.value.code == "UNKNOWN_RESOURCE"
    with pytest.raises(ValidationError) as action_error:
        parse_action("approve")
    assert action_error.value.code == "UNKNOWN_ACTION"


def test_all_row_expands_to_every_resource() -> None:
    permissions = build_permission_map([(ALL_RESOURCES, 15)])
    assert set(permissions) == set(Resource)
    assert all(actions == frozenset(Action) for actions in permissions.values())


def test_stale_resource_rows_are_ignored() -> None:
    permissions = build_permission_map([("LEGACY_THING", 15), ("ALERT", 2)])
    assert permissions == {Resource.ALERT: frozenset({Action.READ})}


def test_default_matrices_match_role_contract() -> None:
    admin = build_permission_map(DEFAULT_ROLE_PERMISSIONS["ADMIN"].items())
    assert Resource.TEAM_PAYMENTS not in admin
    assert admin[Resource.TEAM_LICENSES] == frozenset(Action)

    member = build_permission_map(DEFAULT_ROLE_PERMISSIONS["MEMBER"].items())
    assert member == {
        Resource.TEAM: frozenset({Action.READ}),
        Resource.LOCATION: frozenset({Action.READ}),
        Resource.COMPLIANCE_STATUS: frozenset({Action.READ}),
        Resource.LICENSE: frozenset({Action.READ}),
        Resource.ALERT: frozenset({Action.READ, Action.UPDATE}),
    }


def test_normalize_permission_rows_validates_and_drops_empty() -> None:
    rows = normalize_permission_rows({"alert": ["read", "update"], "LOCATION": [], "all": ["read"]})
    assert rows == {"ALERT": 6, "ALL": 2}
    with pytest.raises(ValidationError):
        normalize_permission_rows({"ALERT": ["publish"]})
