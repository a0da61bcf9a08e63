"""
villagerdb.services.town_search — Dream Directory Search
=========================================================

Read path for the public town browser.  Always queries whichever
generation the index pointer names at call time.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from villagerdb.search.documents import TOWN_SEARCH_FIELDS
from villagerdb.search.query import MATCH_ALL, MatchAny, Query
from villagerdb.search.store import IndexNotFoundError, SearchIndexStore
from villagerdb.services.index_pointer import IndexPointerCache

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 64


def build_query(text: str | None) -> Query:
    """Free-text query over name, description and tags; blank → everything.

    Queries longer than ``MAX_QUERY_LENGTH`` are ignored.
    """
    text = (text or "").strip()
    if not text or len(text) > MAX_QUERY_LENGTH:
        return MATCH_ALL
    return MatchAny(text=text, fields=TOWN_SEARCH_FIELDS)


def compute_page_properties(page_number: int, page_size: int, total_count: int) -> dict[str, int]:
    """Clamp *page_number* into ``1..page_count`` (page_count is at least 1)."""
    page_count = max(1, math.ceil(total_count / page_size))
    current_page = min(max(page_number, 1), page_count)
    return {
        "current_page": current_page,
        "page_count": page_count,
        "page_size": page_size,
        "total_count": total_count,
    }


def search_towns(
    store: SearchIndexStore,
    pointer: IndexPointerCache,
    index_name: str,
    text: str | None,
    page_number: int = 1,
    page_size: int = 20,
) -> dict[str, Any]:
    """Return one page of towns matching *text*.

    If the live generation disappears mid-request (a full reindex just
    retired it), the pointer is resolved once more and the search retried.
    If it still names a missing generation, :class:`IndexNotFoundError`
    propagates; an empty page would hide a broken index.
    """
    query = build_query(text)
    for attempt in range(2):
        generation = pointer.get(index_name)
        if generation is None:
            break
        try:
            total = store.count(generation, query)
            result: dict[str, Any] = compute_page_properties(page_number, page_size, total)
            hits = []
            if total > 0:
                hits = store.search(
                    generation, query,
                    offset=page_size * (result["current_page"] - 1),
                    size=page_size,
                )
            result["results"] = [
                {
                    "id": h.id,
                    "town_name": h.source.get("town_name"),
                    "town_tags": h.source.get("town_tags", []),
                    "town_description": h.source.get("town_description"),
                }
                for h in hits
            ]
            return result
        except IndexNotFoundError:
            if attempt:
                raise
            logger.info("Town index %s vanished during search; re-resolving", generation)

    result = compute_page_properties(page_number, page_size, 0)
    result["results"] = []
    return result
