"""
villagerdb.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn villagerdb.api.main:app --reload --port 8000

The periodic delta reindex runs in the worker process
(``python -m villagerdb.worker``), not here.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

from villagerdb.api.deps import get_engine  # noqa: E402
from villagerdb.api.routes.admin import router as admin_router  # noqa: E402
from villagerdb.api.routes.towns import router as towns_router  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("VillagerDB API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("VillagerDB API shutting down")


app = FastAPI(
    title="VillagerDB API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(towns_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
