"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from api.config import settings
from api.models.sync import CurrentSync, RunStatus, SyncStats
from api.services.errors import StoreError
from api.services.github_source import rule_source
from api.services.rule_store import rule_store
from api.services.sync_orchestrator import sync_orchestrator

router = APIRouter(tags=["health"])


class ServiceStatus(BaseModel):
    name: str
    status: str  # "healthy", "unhealthy", "unknown", "not-configured"
    detail: str | None = None


class LastSync(BaseModel):
    status: RunStatus
    timestamp: datetime | None
    processed: int
    indexed: int
    updated: int
    skipped: int
    errors: int
    marker: str | None = None
    last_error: str | None = None

    @classmethod
    def from_stats(cls, stats: SyncStats) -> "LastSync":
        return cls(
            status=stats.status,
            timestamp=stats.end_time,
            processed=stats.processed,
            indexed=stats.indexed,
            updated=stats.updated,
            skipped=stats.skipped,
            errors=stats.errors,
            marker=stats.marker,
            last_error=stats.error,
        )


class HealthResponse(BaseModel):
    status: str  # "ok", "degraded"
    timestamp: datetime
    version: str
    services: list[ServiceStatus]
    last_sync: LastSync | None = None
    current_sync: CurrentSync


async def check_store() -> ServiceStatus:
    """Ping Elasticsearch and report the number of indexed rules."""
    if not rule_store.is_configured:
        return ServiceStatus(name="elasticsearch", status="not-configured")
    if not await rule_store.ping():
        return ServiceStatus(name="elasticsearch", status="unhealthy")
    try:
        count = await rule_store.count()
    except StoreError:
        # Rules index may not exist before the first sync
        return ServiceStatus(name="elasticsearch", status="healthy")
    return ServiceStatus(name="elasticsearch", status="healthy", detail=f"{count} rules indexed")


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Service health: store connectivity, GitHub access mode and sync progress."""
    last = sync_orchestrator.last_result
    services = [
        ServiceStatus(name="sync", status="healthy"),
        ServiceStatus(
            name="github",
            status="healthy",
            detail="authenticated" if rule_source.authenticated else "public-access",
        ),
        await check_store(),
    ]

    overall = "ok"
    if services[-1].status == "unhealthy":
        overall = "degraded"
    if last is not None and last.status == RunStatus.FAILED:
        services[0] = ServiceStatus(name="sync", status="unhealthy", detail=last.error)
        overall = "degraded"

    return HealthResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc),
        version=settings.version,
        services=services,
        last_sync=LastSync.from_stats(last) if last else None,
        current_sync=CurrentSync.from_stats(sync_orchestrator.current_run),
    )
