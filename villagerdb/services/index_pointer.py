"""
villagerdb.services.index_pointer — Live Index Generation Pointer
==================================================================

One row per logical index (``"towns"``) naming the generation readers
should query.  Kept in the database rather than process memory so the
API, the worker and a restarted process all agree on it.

Each write is a single statement or a single locked transaction, so a
concurrent reader sees the old generation name or the new one, never
anything in between.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, select

from villagerdb.database.engine import get_session
from villagerdb.database.models import IndexPointer

logger = logging.getLogger(__name__)


class IndexPointerCache:
    """Narrow get/set/swap access to ``index_pointers``."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self, key: str) -> str | None:
        with get_session(self.engine) as session:
            return session.scalar(
                select(IndexPointer.generation).where(IndexPointer.name == key)
            )

    def set(self, key: str, value: str) -> None:
        self.swap(key, value)

    def swap(self, key: str, value: str) -> str | None:
        """Point *key* at *value* and return the generation it replaced."""
        with get_session(self.engine) as session:
            row = session.get(IndexPointer, key, with_for_update=True)
            if row is None:
                session.add(IndexPointer(
                    name=key, generation=value, updated_at=datetime.now(UTC),
                ))
                previous = None
            else:
                previous = row.generation
                row.generation = value
                row.updated_at = datetime.now(UTC)

        logger.info("Index pointer %s: %s → %s", key, previous, value)
        return previous
