"""Sync control endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException

from api.models.sync import CurrentSync, SyncRequest, SyncStarted, SyncState, SyncStatus
from api.services.errors import ConcurrentRunError, ConfigurationError, StoreError
from api.services.rule_store import rule_store
from api.services.sync_orchestrator import sync_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("", response_model=SyncStarted, status_code=202)
async def trigger_sync(body: SyncRequest | None = None):
    """Start a sync run in the background. 409 if one is already running."""
    if body is None:
        body = SyncRequest()

    mode = "Full" if body.force else "Incremental"
    if not rule_store.is_configured:
        raise HTTPException(status_code=503, detail="Elasticsearch client not configured")

    try:
        sync_orchestrator.start(force=body.force)
    except ConcurrentRunError as e:
        raise HTTPException(
            status_code=409,
            detail={"success": False, "message": "Sync already in progress", "current_progress": e.progress},
        )

    logger.info("%s sync triggered", mode)
    return SyncStarted(
        success=True,
        message=f"{mode} sync started",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/status", response_model=SyncStatus)
async def sync_status():
    """Last run result, progress of the current run and the persisted checkpoint."""
    try:
        state = await rule_store.get_checkpoint()
    except (StoreError, ConfigurationError, ValueError):
        state = SyncState()

    return SyncStatus(
        last_sync=sync_orchestrator.last_result,
        current_sync=CurrentSync.from_stats(sync_orchestrator.current_run),
        sync_state=state,
    )
