"""Detection Rule Sync Service: FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.config import settings
from api.routes import health, metrics, source, sync
from api.services.github_source import rule_source
from api.services.rule_store import rule_store
from api.services.sync_orchestrator import sync_orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    logger = logging.getLogger("rule-sync")
    logger.info(
        "Syncing %s/%s (%s GitHub access); Elasticsearch %s",
        rule_source.owner, rule_source.repo,
        "authenticated" if rule_source.authenticated else "public",
        "configured" if rule_store.is_configured else "not configured",
    )
    yield
    await sync_orchestrator.wait_idle()
    await rule_source.close()
    await rule_store.close()


app = FastAPI(
    title=settings.app_name,
    description=(
        "Syncs Elastic detection rules from GitHub into Elasticsearch. "
        "Trigger syncs, follow their progress and check service health."
    ),
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Routes already define their own prefix and tags
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(source.router)
app.include_router(metrics.router)


@app.get("/", tags=["root"])
async def root():
    """API root: basic info and endpoint directory."""
    return {
        "name": settings.app_name,
        "version": settings.version,
        "docs": "/docs",
        "endpoints": {
            "health": "/health",
            "sync": "/sync",
            "sync_status": "/sync/status",
            "source": "/source",
            "metrics": "/metrics",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
