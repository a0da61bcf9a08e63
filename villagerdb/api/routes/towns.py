"""
villagerdb.api.routes.towns — Dream Directory & Town Endpoints
===============================================================

Public reads (search, town detail) and owner-authenticated writes.  Writes
go through :mod:`villagerdb.services.town_service`, which appends the
change event that later carries the edit into the search index.
"""

from __future__ import annotations

import re

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Engine

from villagerdb.api.deps import (
    get_config,
    get_current_user,
    get_engine,
    get_search_store,
)
from villagerdb.config import VillagerConfig
from villagerdb.search.store import SearchIndexStore
from villagerdb.services import town_service
from villagerdb.services.index_pointer import IndexPointerCache
from villagerdb.services.town_search import search_towns
from villagerdb.services.town_service import TownExistsError, TownNotFoundError

router = APIRouter(tags=["towns"])

# Letters, numbers and spaces; must start with a letter or number.
NAME_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9 ]+$"
DREAM_ADDRESS_PATTERN = r"^DA-[0-9]{4}-[0-9]{4}-[0-9]{4}$"

_NAME_ID_RE = re.compile(NAME_ID_PATTERN)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class TownWrite(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    town_name: str = Field(min_length=1, max_length=10, pattern=NAME_ID_PATTERN)
    town_address: str = Field(pattern=DREAM_ADDRESS_PATTERN)
    town_description: str = Field(min_length=3, max_length=4096)
    town_tags: list[str] = Field(default_factory=list)
    image: str | None = None

    @field_validator("town_tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value):
        tags = town_service.normalize_tags(value)
        for tag in tags:
            if not _NAME_ID_RE.match(tag):
                raise ValueError(
                    "Town tags can only contain letters, numbers and spaces."
                )
        return tags


class TownOut(BaseModel):
    username: str
    town_id: str
    town_name: str
    town_address: str | None
    town_description: str | None
    town_tags: list[str]
    image: str | None


class TownHit(BaseModel):
    id: str
    town_name: str | None
    town_tags: list[str]
    town_description: str | None


class TownSearchResponse(BaseModel):
    current_page: int
    page_count: int
    page_size: int
    total_count: int
    results: list[TownHit]


# ---------------------------------------------------------------------------
# Public reads
# ---------------------------------------------------------------------------
@router.get("/towns/search", response_model=TownSearchResponse)
def search(
    q: str | None = Query(None, description="Free-text query"),
    page: int = Query(1, ge=1),
    engine: Engine = Depends(get_engine),
    store: SearchIndexStore = Depends(get_search_store),
    config: VillagerConfig = Depends(get_config),
):
    """Search the live town index (empty query → every town)."""
    return search_towns(
        store,
        IndexPointerCache(engine),
        config.town_index_name,
        q,
        page_number=page,
        page_size=config.search_page_size,
    )


@router.get("/users/{username}/towns", response_model=list[TownOut])
def list_user_towns(username: str, engine: Engine = Depends(get_engine)):
    return town_service.find_towns(engine, username)


@router.get("/towns/{username}/{town_id}", response_model=TownOut)
def get_town(username: str, town_id: str, engine: Engine = Depends(get_engine)):
    town = town_service.find_town(engine, username, town_id)
    if town is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Town not found")
    return town


# ---------------------------------------------------------------------------
# Owner writes
# ---------------------------------------------------------------------------
@router.post("/towns", response_model=TownOut, status_code=201)
def create_town(
    body: TownWrite,
    username: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    town_id = town_service.slugify(body.town_name)
    try:
        return town_service.create_town(
            engine, username, town_id, body.town_name, body.town_address,
            body.town_description, body.town_tags, body.image,
        )
    except TownExistsError:
        raise HTTPException(
            status.HTTP_409_CONFLICT,
            "You already have a town by that name. Please choose another name.",
        )


@router.put("/towns/{town_id}", response_model=TownOut)
def update_town(
    town_id: str,
    body: TownWrite,
    username: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    try:
        return town_service.save_town(
            engine, username, town_id, body.town_name, body.town_address,
            body.town_description, body.town_tags, body.image,
        )
    except TownNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Town not found")


@router.delete("/towns/{town_id}", status_code=204)
def delete_town(
    town_id: str,
    username: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    if not town_service.delete_town(engine, username, town_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Town not found")
    return Response(status_code=204)
