"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api.metrics import registry

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def metrics():
    """Prometheus text format metrics."""
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
