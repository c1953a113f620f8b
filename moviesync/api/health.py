"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from moviesync import __version__
from moviesync.api.deps import get_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    elasticsearch: str


async def _elasticsearch_status(request: Request) -> str:
    index = getattr(request.app.state, "search_index", None)
    if index is None:
        return "disabled"
    health = await index.get_health()
    if "error" in health:
        return "error"
    if health.get("cluster", {}).get("status") == "red":
        return "error"
    return "ok"


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    es_status = await _elasticsearch_status(request)
    healthy = db_status == "ok" and es_status in {"ok", "disabled"}
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=__version__,
        database=db_status,
        elasticsearch=es_status,
    )
