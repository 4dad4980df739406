from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.domain.models import ComplianceAlert
from opsportal.persistence.guards import team_predicate


async def get_alert(
    session: AsyncSession,
    alert_id: str,
    *,
    team_id: str | None = None,
    for_update: bool = False,
) -> ComplianceAlert | None:
    # Transitions lock the alert row and re-read it so appends never interleave.
    stmt = select(ComplianceAlert).where(ComplianceAlert.id == alert_id)
    if team_id is not None:
        stmt = stmt.where(team_predicate(ComplianceAlert, team_id))
    if for_update:
        # populate_existing replaces any stale copy held in the identity map.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_alerts(session: AsyncSession, team_id: str, *, limit: int = 100) -> list[ComplianceAlert]:
    result = await session.execute(
        select(ComplianceAlert)
        .where(team_predicate(ComplianceAlert, team_id))
        .order_by(ComplianceAlert.created_at.desc(), ComplianceAlert.id)
        .limit(limit)
    )
    return list(result.scalars().all())
