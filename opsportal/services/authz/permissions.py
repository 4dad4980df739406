from __future__ import annotations

from enum import Enum, IntFlag
from typing import Iterable, Mapping

from opsportal.core.errors import ValidationError


class Resource(str, Enum):
    TEAM = "TEAM"
    TEAM_MEMBER = "TEAM_MEMBER"
    TEAM_INVITATION = "TEAM_INVITATION"
    TEAM_SSO = "TEAM_SSO"
    TEAM_DSYNC = "TEAM_DSYNC"
    TEAM_AUDIT_LOG = "TEAM_AUDIT_LOG"
    TEAM_WEBHOOK = "TEAM_WEBHOOK"
    TEAM_PAYMENTS = "TEAM_PAYMENTS"
    TEAM_LICENSES = "TEAM_LICENSES"
    TEAM_API_KEY = "TEAM_API_KEY"
    LOCATION = "LOCATION"
    LICENSE = "LICENSE"
    COMPLIANCE_STATUS = "COMPLIANCE_STATUS"
    ALERT = "ALERT"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class ActionBits(IntFlag):
    NONE = 0
    CREATE = 1
    READ = 2
    UPDATE = 4
    DELETE = 8


# Permission rows with this resource grant every action on every resource.
ALL_RESOURCES = "ALL"
ALL_ACTIONS = ActionBits.CREATE | ActionBits.READ | ActionBits.UPDATE | ActionBits.DELETE

_ACTION_BITS = {
    Action.CREATE: ActionBits.CREATE,
    Action.READ: ActionBits.READ,
    Action.UPDATE: ActionBits.UPDATE,
    Action.DELETE: ActionBits.DELETE,
}

PermissionMap = dict[Resource, frozenset[Action]]

ROLE_OWNER = "OWNER"
ROLE_ADMIN = "ADMIN"
ROLE_MEMBER = "MEMBER"

# Built-in role precedence; a member may only hand out roles at or below their own.
ROLE_RANKS: dict[str, int] = {ROLE_OWNER: 3, ROLE_ADMIN: 2, ROLE_MEMBER: 1}


def parse_resource(value: Resource | str) -> Resource:
    # Unknown resource names are caller bugs, not authorization failures.
    if isinstance(value, Resource):
        return value
    try:
        return Resource(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(
            f"Unknown resource: {value}", code="UNKNOWN_RESOURCE", resource=str(value)
        ) from exc


def parse_action(value: Action | str) -> Action:
    if isinstance(value, Action):
        return value
    try:
        return Action(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(
            f"Unknown action: {value}", code="UNKNOWN_ACTION", action=str(value)
        ) from exc


def actions_to_bits(actions: Iterable[Action | str]) -> int:
    bits = ActionBits.NONE
    for action in actions:
        bits |= _ACTION_BITS[parse_action(action)]
    return int(bits)


def bits_to_actions(bits: int) -> frozenset[Action]:
    return frozenset(action for action, flag in _ACTION_BITS.items() if int(bits) & int(flag))


def build_permission_map(rows: Iterable[tuple[str, int]]) -> PermissionMap:
    """Fold stored (resource, bitmask) rows into a resource -> actions map.

    A row for ``ALL`` expands to the full vocabulary. Rows naming resources that
    are no longer part of the vocabulary are skipped so stale data cannot widen access.
    """
    merged: dict[Resource, int] = {}
    for resource_name, bits in rows:
        if resource_name == ALL_RESOURCES:
            for resource in Resource:
                merged[resource] = merged.get(resource, 0) | int(bits)
            continue
        try:
            resource = Resource(resource_name)
        except ValueError:
            continue
        merged[resource] = merged.get(resource, 0) | int(bits)
    return {resource: bits_to_actions(bits) for resource, bits in merged.items() if bits}


def is_allowed(permissions: Mapping[Resource, frozenset[Action]], resource: Resource, action: Action) -> bool:
    return action in permissions.get(resource, frozenset())


def _full_matrix(excluded: Iterable[Resource] = ()) -> dict[str, int]:
    skip = set(excluded)
    return {resource.value: int(ALL_ACTIONS) for resource in Resource if resource not in skip}


# Seed matrices applied when a team is created; (resource name -> action bitmask).
DEFAULT_ROLE_PERMISSIONS: dict[str, dict[str, int]] = {
    ROLE_OWNER: {ALL_RESOURCES: int(ALL_ACTIONS)},
    ROLE_ADMIN: _full_matrix(excluded=[Resource.TEAM_PAYMENTS]),
    ROLE_MEMBER: {
        Resource.TEAM.value: int(ActionBits.READ),
        Resource.LOCATION.value: int(ActionBits.READ),
        Resource.COMPLIANCE_STATUS.value: int(ActionBits.READ),
        Resource.LICENSE.value: int(ActionBits.READ),
        Resource.ALERT.value: int(ActionBits.READ | ActionBits.UPDATE),
    },
}


def normalize_permission_rows(
    permissions: Mapping[str, Iterable[Action | str]],
) -> dict[str, int]:
    # Validate a resource -> actions mapping supplied by an administrator.
    rows: dict[str, int] = {}
    for resource_name, actions in permissions.items():
        key = str(resource_name).strip().upper()
        if key != ALL_RESOURCES:
            key = parse_resource(key).value
        bits = actions_to_bits(actions)
        if bits:
            rows[key] = rows.get(key, 0) | bits
    return rows


def role_rank(role_name: str | None) -> int:
    return ROLE_RANKS.get((role_name or "").strip().upper(), 0)


def excess_permissions(requested: PermissionMap, held: Mapping[Resource, frozenset[Action]]) -> PermissionMap:
    # Return the part of ``requested`` that ``held`` does not already cover.
    excess: PermissionMap = {}
    for resource, actions in requested.items():
        missing = actions - held.get(resource, frozenset())
        if missing:
            excess[resource] = frozenset(missing)
    return excess
