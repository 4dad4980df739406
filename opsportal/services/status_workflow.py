from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from typing import Any, Iterable, Mapping
from uuid import uuid4

from opsportal.core.errors import ConflictError, NotFoundError, ValidationError
from opsportal.domain.models import ComplianceAlert, TeamComplianceStatus
from opsportal.persistence.repos import alerts as alerts_repo
from opsportal.persistence.repos import statuses as statuses_repo
from opsportal.persistence.repos import teams as teams_repo
from opsportal.persistence.store import DirectoryStore
from opsportal.services.auth.sessions import Principal


logger = logging.getLogger(__name__)

SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
UNKNOWN_USER = "Unknown User"
# Recorded as statusFrom when a record had no status before the transition.
NO_STATUS = "null"

# Fields an update may touch; code is fixed at creation.
_UPDATABLE_FIELDS = {"name", "description", "color", "icon", "order", "is_default"}

_WHITESPACE = re.compile(r"\s+")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso_timestamp(value: datetime) -> str:
    # Millisecond precision with a Z suffix, matching the stored history format.
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_code(code: str) -> str:
    return _WHITESPACE.sub("_", code.strip()).upper()


def normalize_severity(value: str | None) -> str | None:
    # Unknown severities are dropped rather than rejected.
    if value is None:
        return None
    normalized = str(value).strip().upper()
    if normalized in SEVERITIES:
        return normalized
    logger.warning("severity_ignored value=%s", value)
    return None


@dataclass(frozen=True)
class StatusDefinition:
    name: str
    code: str
    description: str | None = None
    color: str | None = None
    icon: str | None = None
    order: int | None = None
    is_default: bool = False

    @classmethod
    def coerce(cls, value: "StatusDefinition | Mapping[str, Any]") -> "StatusDefinition":
        if isinstance(value, StatusDefinition):
            return value
        return cls(
            name=value.get("name") or "",
            code=value.get("code") or "",
            description=value.get("description"),
            color=value.get("color"),
            icon=value.get("icon"),
            order=value.get("order"),
            is_default=bool(value.get("is_default", value.get("isDefault", False))),
        )


def _validated(definition: StatusDefinition, index: int | None = None) -> StatusDefinition:
    if not definition.name or not str(definition.name).strip():
        raise ValidationError("Status name is required", field="name", index=index)
    if not definition.code or not str(definition.code).strip():
        raise ValidationError("Status code is required", field="code", index=index)
    if definition.order is not None and (isinstance(definition.order, bool) or not isinstance(definition.order, int)):
        raise ValidationError("Status order must be an integer", field="order", index=index)
    return definition


class StatusWorkflowEngine:
    """Per-team compliance status vocabulary and the governed-record audit trail.

    Every default change locks the team row and runs clear-then-set inside one
    transaction, and a partial unique index backs the single-default rule. A
    transition locks and re-reads its record before appending to the history.
    """

    def __init__(self, store: DirectoryStore) -> None:
        self._store = store

    async def define_defaults(
        self,
        team_id: str,
        statuses: Iterable[StatusDefinition | Mapping[str, Any]],
    ) -> list[TeamComplianceStatus]:
        definitions = [StatusDefinition.coerce(item) for item in statuses]
        if not definitions:
            raise ValidationError("At least one status is required", field="statuses")
        for index, definition in enumerate(definitions):
            _validated(definition, index)
        if sum(1 for definition in definitions if definition.is_default) > 1:
            raise ValidationError("Only one status may be marked default", field="is_default")
        seen: set[str] = set()
        for definition in definitions:
            code = normalize_code(definition.code)
            if code in seen:
                raise ConflictError("Duplicate status code", code="STATUS_CODE_EXISTS", status_code=code)
            seen.add(code)

        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id, for_update=True)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            existing = await statuses_repo.count_statuses(session, team.id)
            if existing:
                raise ConflictError("Team already has statuses defined", code="STATUSES_ALREADY_DEFINED")
            created = []
            for index, definition in enumerate(definitions):
                row = TeamComplianceStatus(
                    id=uuid4().hex,
                    team_id=team.id,
                    code=normalize_code(definition.code),
                    name=definition.name.strip(),
                    description=definition.description or None,
                    color=definition.color or None,
                    icon=definition.icon or None,
                    order=definition.order if definition.order is not None else index,
                    is_default=definition.is_default,
                    created_at=_utc_now(),
                )
                session.add(row)
                created.append(row)
        logger.info("statuses_defined team_id=%s count=%s", team_id, len(created))
        return created

    async def create_status(
        self,
        team_id: str,
        status: StatusDefinition | Mapping[str, Any],
    ) -> TeamComplianceStatus:
        definition = _validated(StatusDefinition.coerce(status))
        code = normalize_code(definition.code)
        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id, for_update=True)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            if await statuses_repo.get_status_by_code(session, team_id=team.id, code=code) is not None:
                raise ConflictError(
                    "Status code already exists", code="STATUS_CODE_EXISTS", status_code=code
                )
            order = definition.order
            if order is None:
                order = await statuses_repo.count_statuses(session, team.id)
            if definition.is_default:
                await statuses_repo.clear_defaults(session, team_id=team.id)
            row = TeamComplianceStatus(
                id=uuid4().hex,
                team_id=team.id,
                code=code,
                name=definition.name.strip(),
                description=definition.description or None,
                color=definition.color or None,
                icon=definition.icon or None,
                order=order,
                is_default=definition.is_default,
                created_at=_utc_now(),
            )
            session.add(row)
        logger.info(
            "status_created team_id=%s status_id=%s code=%s is_default=%s",
            team_id,
            row.id,
            code,
            row.is_default,
        )
        return row

    async def update_status(
        self,
        team_id: str,
        status_id: str,
        changes: Mapping[str, Any],
    ) -> TeamComplianceStatus:
        if "code" in changes:
            raise ValidationError("Status code cannot be changed", field="code")
        unknown = sorted(set(changes) - _UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unsupported status fields: {', '.join(unknown)}", field=unknown[0])
        if "name" in changes and not str(changes["name"] or "").strip():
            raise ValidationError("Status name is required", field="name")
        if "order" in changes and (isinstance(changes["order"], bool) or not isinstance(changes["order"], int)):
            raise ValidationError("Status order must be an integer", field="order")

        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id, for_update=True)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            row = await statuses_repo.get_team_status(session, team_id=team.id, status_id=status_id)
            if row is None:
                raise NotFoundError("Status not found", status_id=status_id)
            make_default = bool(changes.get("is_default"))
            if make_default and not row.is_default:
                await statuses_repo.clear_defaults(session, team_id=team.id, keep_id=row.id)
            for field_name in ("name", "description", "color", "icon", "order"):
                if field_name in changes:
                    value = changes[field_name]
                    setattr(row, field_name, value.strip() if field_name == "name" else value)
            if "is_default" in changes:
                row.is_default = make_default
        logger.info("status_updated team_id=%s status_id=%s fields=%s", team_id, status_id, ",".join(sorted(changes)))
        return row

    async def delete_status(self, team_id: str, status_id: str) -> None:
        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id, for_update=True)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            row = await statuses_repo.get_team_status(session, team_id=team.id, status_id=status_id)
            if row is None:
                raise NotFoundError("Status not found", status_id=status_id)
            if row.is_default:
                raise ValidationError("Cannot delete the default status", code="STATUS_IS_DEFAULT")
            usage = await statuses_repo.count_alerts_using(session, status_id=row.id)
            if usage:
                raise ConflictError("Status is in use", code="STATUS_IN_USE", usage_count=usage)
            await session.delete(row)
        logger.info("status_deleted team_id=%s status_id=%s", team_id, status_id)

    async def list_statuses(self, team_id: str) -> list[TeamComplianceStatus]:
        async with self._store.session() as session:
            team = await teams_repo.get_team(session, team_id)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            return await statuses_repo.list_statuses(session, team.id)

    async def get_default_status(self, team_id: str) -> TeamComplianceStatus | None:
        async with self._store.session() as session:
            return await statuses_repo.get_default_status(session, team_id)

    async def open_record(
        self,
        team_id: str,
        title: str,
        severity: str | None = None,
    ) -> ComplianceAlert:
        # New records start in the team's default status, or none when the team has no default.
        if not title or not title.strip():
            raise ValidationError("Title is required", field="title")
        async with self._store.transaction() as session:
            team = await teams_repo.get_team(session, team_id)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            default = await statuses_repo.get_default_status(session, team.id)
            now = _utc_now()
            record = ComplianceAlert(
                id=uuid4().hex,
                team_id=team.id,
                status_id=default.id if default is not None else None,
                severity=normalize_severity(severity),
                title=title.strip(),
                comments=[],
                created_at=now,
                updated_at=now,
            )
            session.add(record)
        logger.info("record_opened team_id=%s record_id=%s", team_id, record.id)
        return record

    async def list_records(self, team_id: str, *, limit: int = 100) -> list[ComplianceAlert]:
        async with self._store.session() as session:
            return await alerts_repo.list_alerts(session, team_id, limit=limit)

    async def transition(
        self,
        record_id: str,
        new_status_id: str,
        comment: str,
        severity: str | None = None,
        actor: Principal | None = None,
        *,
        team_id: str | None = None,
    ) -> ComplianceAlert:
        """Move a record to another status and append one history entry.

        The comment is checked before anything is read. The history list is only
        ever extended; earlier entries are copied through unchanged.
        """
        if comment is None or not str(comment).strip():
            raise ValidationError("Comment is required", field="comment")
        text = str(comment).strip()
        resolved_severity = normalize_severity(severity) if severity else None

        async with self._store.transaction() as session:
            record = await alerts_repo.get_alert(session, record_id, team_id=team_id, for_update=True)
            if record is None:
                raise NotFoundError("Alert not found", record_id=record_id)
            status = await statuses_repo.get_status(session, new_status_id)
            if status is None or status.team_id != record.team_id:
                raise NotFoundError(
                    "Status not found or not associated with this team", status_id=new_status_id
                )
            now = _utc_now()
            entry = {
                "text": text,
                "timestamp": _iso_timestamp(now),
                "user": actor.display_name if actor is not None else UNKNOWN_USER,
                "statusFrom": record.status_id or NO_STATUS,
                "statusTo": status.id,
            }
            # Assign a new list so the JSON column is marked dirty.
            record.comments = [*list(record.comments or []), entry]
            record.status_id = status.id
            if resolved_severity is not None:
                record.severity = resolved_severity
            record.updated_at = now
        logger.info(
            "record_transitioned record_id=%s status_from=%s status_to=%s",
            record_id,
            entry["statusFrom"],
            entry["statusTo"],
        )
        return record

    async def history(self, record_id: str, *, team_id: str | None = None) -> list[dict[str, Any]]:
        async with self._store.session() as session:
            record = await alerts_repo.get_alert(session, record_id, team_id=team_id)
            if record is None:
                raise NotFoundError("Alert not found", record_id=record_id)
            return list(record.comments or [])
