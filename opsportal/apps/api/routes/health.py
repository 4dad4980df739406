from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text

from opsportal.apps.api.deps import get_directory_store
from opsportal.apps.api.response import SuccessEnvelope, success_response
from opsportal.persistence.store import DirectoryStore


router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    database: str
    pool: dict[str, int | None]


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(
    request: Request,
    store: DirectoryStore = Depends(get_directory_store),
) -> dict:
    # Probe the store so load balancers drop instances whose database is unreachable.
    async with store.session() as session:
        await session.execute(text("SELECT 1"))
    payload = HealthResponse(status="ok", database="ok", pool=store.pool_stats())
    return success_response(request=request, data=payload)
