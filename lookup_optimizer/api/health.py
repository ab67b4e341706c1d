"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from lookup_optimizer.api.deps import get_components, get_session
from lookup_optimizer.services.container import Components

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    lookup_table: str
    sync_timer: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    components: Annotated[Components, Depends(get_components)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    if not components.index.enabled:
        lookup_table = "disabled"
    elif db_status == "ok" and await components.index.table_exists():
        lookup_table = "ok"
    else:
        lookup_table = "missing"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version="0.1.0",
        database=db_status,
        lookup_table=lookup_table,
        sync_timer="running" if components.timer.active else "stopped",
    )
