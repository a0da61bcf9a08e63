"""
villagerdb.api.routes.admin — Search Index Admin Endpoints
===========================================================

JWT-protected admin routes for:
    - Full town reindex trigger     (fire-and-forget)
    - Delta town reindex trigger    (fire-and-forget)
    - Orphan generation sweep
    - Index status (live generation, documents, pending changes, lease)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel

from villagerdb.api.deps import get_current_admin, get_indexer
from villagerdb.services.indexer import IndexerBusyError, TownIndexer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/search", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class TriggerResponse(BaseModel):
    status: str
    job: str


class SweepResponse(BaseModel):
    deleted: list[str]


class IndexStatus(BaseModel):
    index_name: str
    live_generation: str | None
    documents: int | None
    pending_changes: int
    generations: list[str]
    lease: dict[str, Any] | None


# ---------------------------------------------------------------------------
# Background runners — failures are logged, never raised to the client
# ---------------------------------------------------------------------------
def _run_full_reindex(indexer: TownIndexer, actor: str) -> None:
    logger.info("Full town reindex requested by %s", actor)
    try:
        result = indexer.full_reindex()
        logger.info(
            "Full town reindex complete: %s (%d documents)",
            result.generation, result.documents,
        )
    except IndexerBusyError:
        logger.warning("Full town reindex skipped: another run is in progress")
    except Exception:
        logger.exception("Unexpected exception while running full town indexer.")


def _run_delta_reindex(indexer: TownIndexer, actor: str) -> None:
    logger.info("Delta town reindex requested by %s", actor)
    try:
        indexer.delta_reindex()
    except Exception:
        logger.exception("Unexpected exception while running delta town indexer.")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/full-reindex", response_model=TriggerResponse, status_code=202)
def trigger_full_reindex(
    background_tasks: BackgroundTasks,
    admin: dict = Depends(get_current_admin),
    indexer: TownIndexer = Depends(get_indexer),
):
    """Queue a full rebuild of the town index."""
    background_tasks.add_task(_run_full_reindex, indexer, str(admin.get("sub")))
    return TriggerResponse(status="accepted", job="full_reindex")


@router.post("/delta-reindex", response_model=TriggerResponse, status_code=202)
def trigger_delta_reindex(
    background_tasks: BackgroundTasks,
    admin: dict = Depends(get_current_admin),
    indexer: TownIndexer = Depends(get_indexer),
):
    """Queue an out-of-schedule delta run."""
    background_tasks.add_task(_run_delta_reindex, indexer, str(admin.get("sub")))
    return TriggerResponse(status="accepted", job="delta_reindex")


@router.post("/sweep", response_model=SweepResponse)
def sweep_orphans(
    admin: dict = Depends(get_current_admin),  # noqa: ARG001
    indexer: TownIndexer = Depends(get_indexer),
):
    """Delete index generations that are not live."""
    try:
        return SweepResponse(deleted=indexer.sweep_orphans())
    except IndexerBusyError:
        raise HTTPException(status.HTTP_409_CONFLICT, "A reindex run is in progress")


@router.get("/status", response_model=IndexStatus)
def index_status(
    admin: dict = Depends(get_current_admin),  # noqa: ARG001
    indexer: TownIndexer = Depends(get_indexer),
):
    return indexer.status()
