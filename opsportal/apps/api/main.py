from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from opsportal.apps.api.errors import (
    portal_error_handler,
    starlette_http_exception_handler,
    team_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from opsportal.apps.api.response import API_VERSION
from opsportal.apps.api.routes.alerts import router as alerts_router
from opsportal.apps.api.routes.health import router as health_router
from opsportal.apps.api.routes.licenses import router as licenses_router
from opsportal.apps.api.routes.statuses import router as statuses_router
from opsportal.apps.api.routes.teams import router as teams_router
from opsportal.core.config import get_settings
from opsportal.core.errors import PortalError
from opsportal.core.logging import configure_logging
from opsportal.persistence.db import close_store
from opsportal.persistence.guards import TeamPredicateError


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # The shared store owns the connection pool; release it on shutdown.
    await close_store()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name, lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(TeamPredicateError, team_predicate_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(teams_router, prefix=f"/{API_VERSION}")
    app.include_router(licenses_router, prefix=f"/{API_VERSION}")
    app.include_router(statuses_router, prefix=f"/{API_VERSION}")
    app.include_router(alerts_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
