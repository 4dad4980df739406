from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.domain.models import ComplianceAlert, TeamComplianceStatus
from opsportal.persistence.guards import team_predicate


async def list_statuses(session: AsyncSession, team_id: str) -> list[TeamComplianceStatus]:
    result = await session.execute(
        select(TeamComplianceStatus)
        .where(team_predicate(TeamComplianceStatus, team_id))
        .order_by(TeamComplianceStatus.order, TeamComplianceStatus.code)
    )
    return list(result.scalars().all())


async def count_statuses(session: AsyncSession, team_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(TeamComplianceStatus)
        .where(team_predicate(TeamComplianceStatus, team_id))
    )
    return int(result.scalar_one())


async def get_status(session: AsyncSession, status_id: str) -> TeamComplianceStatus | None:
    return await session.get(TeamComplianceStatus, status_id)


async def get_team_status(
    session: AsyncSession, *, team_id: str, status_id: str
) -> TeamComplianceStatus | None:
    result = await session.execute(
        select(TeamComplianceStatus).where(
            team_predicate(TeamComplianceStatus, team_id),
            TeamComplianceStatus.id == status_id,
        )
    )
    return result.scalar_one_or_none()


async def get_status_by_code(
    session: AsyncSession, *, team_id: str, code: str
) -> TeamComplianceStatus | None:
    result = await session.execute(
        select(TeamComplianceStatus).where(
            team_predicate(TeamComplianceStatus, team_id),
            TeamComplianceStatus.code == code,
        )
    )
    return result.scalar_one_or_none()


async def get_default_status(session: AsyncSession, team_id: str) -> TeamComplianceStatus | None:
    result = await session.execute(
        select(TeamComplianceStatus).where(
            team_predicate(TeamComplianceStatus, team_id),
            TeamComplianceStatus.is_default.is_(True),
        )
    )
    return result.scalars().first()


async def clear_defaults(session: AsyncSession, *, team_id: str, keep_id: str | None = None) -> int:
    # Clear first and flush before setting the new default so the partial unique index never sees two.
    stmt = update(TeamComplianceStatus).where(
        team_predicate(TeamComplianceStatus, team_id),
        TeamComplianceStatus.is_default.is_(True),
    )
    if keep_id is not None:
        stmt = stmt.where(TeamComplianceStatus.id != keep_id)
    result = await session.execute(
        stmt.values(is_default=False).execution_options(synchronize_session="fetch")
    )
    return int(result.rowcount or 0)


async def count_alerts_using(session: AsyncSession, *, status_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(ComplianceAlert)
        .where(ComplianceAlert.status_id == status_id)
    )
    return int(result.scalar_one())
