"""Admin endpoints that drive the search-index sync engine."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from moviesync.api.deps import get_sync_service, require_admin_token
from moviesync.exceptions import InternalServerError, SyncError
from moviesync.services.base import ChangeAction, DataType, SyncResult
from moviesync.services.sync_service import DataSyncService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/sync",
    tags=["sync"],
    dependencies=[Depends(require_admin_token)],
)


# ── Schemas ──────────────────────────────────────────


class SyncRunResult(BaseModel):
    """Counts and item-level errors of one pipeline run."""

    movies: int
    episodes: int
    errors: list[str] = Field(default_factory=list)


class SyncRunResponse(BaseModel):
    """Response after a full or incremental sync."""

    status: str
    message: str
    result: SyncRunResult


class BatchSyncRequest(BaseModel):
    """Slugs of the movies to re-index."""

    movie_slugs: list[str] = Field(min_length=1)


class BatchSyncResponse(BaseModel):
    success: int
    failed: int
    total: int
    errors: list[str] = Field(default_factory=list)


class MessageResponse(BaseModel):
    status: str
    message: str


class WebhookRequest(BaseModel):
    """A data-change event from the catalogue."""

    type: DataType
    action: ChangeAction
    data: dict[str, Any] = Field(default_factory=dict)


class ValidationResponse(BaseModel):
    db_movies: int
    es_movies: int
    db_episodes: int
    es_episodes: int
    is_in_sync: bool


class SyncStatusResponse(BaseModel):
    """Sync engine status, index health and drift check."""

    auto_sync: bool
    last_sync: datetime | None = None
    is_full_sync_running: bool
    metadata: dict[str, Any] | None = None
    health: dict[str, Any]
    validation: ValidationResponse


def _run_response(kind: str, result: SyncResult) -> SyncRunResponse:
    if result.errors:
        status = "partial"
        message = f"{kind} sync completed with {len(result.errors)} error(s)"
    else:
        status = "ok"
        message = f"{kind} sync completed"
    return SyncRunResponse(
        status=status,
        message=message,
        result=SyncRunResult(
            movies=result.movies, episodes=result.episodes, errors=result.errors
        ),
    )


# ── Endpoints ────────────────────────────────────────


@router.post("/full", response_model=SyncRunResponse)
async def trigger_full_sync(
    service: Annotated[DataSyncService, Depends(get_sync_service)],
) -> SyncRunResponse:
    """Drop and rebuild both indices from the catalogue."""
    try:
        result = await service.full_sync()
    except SyncError:
        raise
    except Exception as exc:
        raise InternalServerError(f"Full sync failed: {exc}") from exc
    return _run_response("Full", result)


@router.post("/incremental", response_model=SyncRunResponse)
async def trigger_incremental_sync(
    service: Annotated[DataSyncService, Depends(get_sync_service)],
) -> SyncRunResponse:
    try:
        result = await service.incremental_sync()
    except Exception as exc:
        raise InternalServerError(f"Incremental sync failed: {exc}") from exc
    return _run_response("Incremental", result)


@router.post("/batch", response_model=BatchSyncResponse)
async def trigger_batch_sync(
    body: BatchSyncRequest,
    service: Annotated[DataSyncService, Depends(get_sync_service)],
) -> BatchSyncResponse:
    result = await service.sync_batch(body.movie_slugs)
    return BatchSyncResponse(
        success=result.success,
        failed=result.failed,
        total=len(body.movie_slugs),
        errors=result.errors,
    )


@router.post("/movies/{slug}", response_model=MessageResponse)
async def sync_movie(
    slug: str,
    service: Annotated[DataSyncService, Depends(get_sync_service)],
) -> MessageResponse:
    await service.sync_single_movie(slug)
    return MessageResponse(status="ok", message=f"Movie {slug} synced")


@router.delete("/movies/{slug}", response_model=MessageResponse)
async def delete_movie(
    slug: str,
    service: Annotated[DataSyncService, Depends(get_sync_service)],
) -> MessageResponse:
    await service.delete_synced_movie(slug)
    return MessageResponse(status="ok", message=f"Movie {slug} removed from the index")


@router.post("/webhook", response_model=MessageResponse)
async def data_change_webhook(
    body: WebhookRequest,
    service: Annotated[DataSyncService, Depends(get_sync_service)],
) -> MessageResponse:
    """Apply a catalogue change to the index."""
    await service.handle_data_change(body.type, body.action, body.data)
    return MessageResponse(status="ok", message=f"Processed {body.type} {body.action}")


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    service: Annotated[DataSyncService, Depends(get_sync_service)],
) -> SyncStatusResponse:
    status = await service.get_sync_status()
    validation = await service.validate_sync()
    return SyncStatusResponse(
        auto_sync=service.is_auto_sync_enabled(),
        last_sync=status.last_sync_time,
        is_full_sync_running=status.is_full_sync_running,
        metadata=status.metadata,
        health=status.elasticsearch_health,
        validation=ValidationResponse(
            db_movies=validation.db_movie_count,
            es_movies=validation.es_movie_count,
            db_episodes=validation.db_episode_count,
            es_episodes=validation.es_episode_count,
            is_in_sync=validation.is_in_sync,
        ),
    )
