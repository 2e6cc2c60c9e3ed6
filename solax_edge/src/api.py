"""
Realtime read API over the in-memory flow store.

Endpoints:
- GET /health: ``{"status": "ok"}``, no authentication (Docker HEALTHCHECK).
- GET /v1/sources: summary of every configured source (including the
  aggregate), in configuration order.
- GET /v1/sources/{source_id}: raw and smoothed flows, battery state, update
  pulse and last update timestamp of one source; 404 if unknown.

The store is attached to ``app.state.store`` by :func:`create_app`; route
handlers only read it.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException, Request

from solax_edge.src.sink import FlowStore

logger = logging.getLogger(__name__)

health_router = APIRouter(tags=["health"])
router = APIRouter(prefix="/v1", tags=["realtime"])


def _store(request: Request) -> FlowStore:
    return request.app.state.store


@health_router.get("/health")
async def health() -> dict[str, str]:
    """Return a simple health status.

    Returns:
        dict: ``{"status": "ok"}`` indicating the service is alive.
    """
    return {"status": "ok"}


@router.get("/sources")
async def list_sources(request: Request) -> list[dict[str, Any]]:
    """Return a summary of every source known to the store."""
    store = _store(request)
    summaries = []
    for source_id in store.source_ids():
        view = store.as_dict(source_id)
        summaries.append(
            {
                "source_id": view["source_id"],
                "name": view["name"],
                "model": view["model"],
                "status": view["status"],
                "updated": view["updated"],
                "updated_at": view["updated_at"],
            }
        )
    return summaries


@router.get("/sources/{source_id}")
async def get_source(source_id: str, request: Request) -> dict[str, Any]:
    """Return the latest published values of one source.

    Raises:
        HTTPException: 404 if the source is unknown.
    """
    store = _store(request)
    try:
        return store.as_dict(source_id.lower())
    except KeyError:
        raise HTTPException(
            status_code=404,
            detail=f"No source found with id '{source_id}'.",
        ) from None


def create_app(store: FlowStore) -> FastAPI:
    """Build the realtime API application serving *store*."""
    app = FastAPI(
        title="Solax Edge API",
        description="Realtime raw and smoothed Solax inverter flows.",
        version="0.1.0",
    )
    app.state.store = store
    app.include_router(health_router)
    app.include_router(router)
    return app
