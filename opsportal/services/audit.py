from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import select
from starlette.requests import Request

from opsportal.core.config import get_settings
from opsportal.core.errors import PortalError
from opsportal.domain.models import AuditEvent
from opsportal.persistence.guards import team_predicate
from opsportal.persistence.store import DirectoryStore


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password"]
# Free-text fields are matched by exact name so keys like "context" survive.
_SENSITIVE_KEY_NAMES = {"comment", "comments", "text"}
_REDACTED_VALUE = "[REDACTED]"

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered in _SENSITIVE_KEY_NAMES:
        return True
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


async def record_event(
    store: DirectoryStore,
    *,
    team_id: str | None,
    actor_id: str | None,
    event_type: str,
    outcome: str = OUTCOME_SUCCESS,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request: Request | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    best_effort: bool | None = None,
) -> None:
    """Persist one audit row in its own transaction.

    Governance mutations have already committed when this runs, so a failed audit
    write is logged and dropped unless best-effort mode is switched off.
    """
    settings = get_settings()
    if not settings.audit_enabled:
        return
    resolved_best_effort = settings.audit_best_effort if best_effort is None else best_effort
    context = get_request_context(request)
    event = AuditEvent(
        occurred_at=datetime.now(timezone.utc),
        team_id=team_id,
        actor_id=actor_id,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=context["request_id"],
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    try:
        async with store.transaction() as session:
            session.add(event)
    except PortalError as exc:
        if not resolved_best_effort:
            raise
        logger.warning(
            "audit_event_write_failed event_type=%s request_id=%s error=%s",
            event_type,
            context["request_id"],
            exc.code,
        )


async def list_events(
    store: DirectoryStore,
    team_id: str,
    *,
    event_type: str | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    async with store.session() as session:
        stmt = select(AuditEvent).where(team_predicate(AuditEvent, team_id))
        if event_type:
            stmt = stmt.where(AuditEvent.event_type == event_type)
        result = await session.execute(
            stmt.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
