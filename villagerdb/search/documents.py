"""
villagerdb.search.documents — Town Index Mappings & Document Shaping
=====================================================================

The single place where a town becomes a search document.  Full and delta
reindexing both call :func:`shape_document`, so they cannot disagree on
what a document looks like.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from villagerdb.search.store import FieldKind

# Declared before any document is written to a new generation.
TOWN_INDEX_FIELDS: dict[str, FieldKind] = {
    "username": FieldKind.KEYWORD,
    "town_name": FieldKind.KEYWORD,
    "town_description": FieldKind.TEXT,
    "town_tags": FieldKind.KEYWORD,
}

# Fields a free-text dream directory query is matched against.
TOWN_SEARCH_FIELDS: tuple[str, ...] = ("town_name", "town_description", "town_tags")


def document_id(username: str, town_id: str) -> str:
    """Deterministic index id for a town, e.g. ``"alice-my-town"``."""
    return f"{username}-{town_id}"


def shape_document(snapshot: Mapping[str, Any]) -> dict[str, Any]:
    """Project a town snapshot onto the indexed fields.

    *snapshot* is either a change-log payload or
    :func:`~villagerdb.services.town_service.town_snapshot` of a stored town.
    """
    return {
        "username": snapshot["username"],
        "town_name": snapshot.get("town_name"),
        "town_description": snapshot.get("town_description"),
        "town_tags": list(snapshot.get("town_tags") or []),
    }
