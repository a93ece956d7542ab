"""Prometheus scrape endpoint, mounted at the app root outside the API prefix."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from vaultsync.services.metrics import render_latest

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=render_latest(), media_type=CONTENT_TYPE_LATEST)
