"""
villagerdb.services.town_service — Town Document Store
=======================================================

Every mutation follows the same pattern:
  1. Begin transaction
  2. Write the ``towns`` row (takes the row lock / unique slot)
  3. Append the matching ``town_events`` row with the post-write snapshot
  4. Commit — both rows or neither

Writing the town first means two writers racing on the same town are
ordered by the row lock, so their change events get ids in commit order.
If the event insert fails, the whole mutation fails with it; a town
without an event would never reach the search index short of a full
reindex.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import IntegrityError

from villagerdb.database.engine import get_session
from villagerdb.database.models import ChangeEventType, Town
from villagerdb.services.change_log import append_change

logger = logging.getLogger(__name__)

# Rows fetched per round trip when streaming every town.
WALK_CHUNK_SIZE = 500

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class TownExistsError(Exception):
    def __init__(self, username: str, town_id: str) -> None:
        super().__init__(f"Town {username}/{town_id} already exists")
        self.username = username
        self.town_id = town_id


class TownNotFoundError(Exception):
    def __init__(self, username: str, town_id: str) -> None:
        super().__init__(f"Town {username}/{town_id} not found")
        self.username = username
        self.town_id = town_id


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def slugify(name: str) -> str:
    """URL-friendly town id: ``"My Town 2"`` → ``"my-town-2"``."""
    return _SLUG_STRIP_RE.sub("-", name.strip().lower()).strip("-")


def normalize_tags(tags: str | Iterable[str] | None) -> list[str]:
    """Split on commas, trim, lowercase and de-duplicate (first one wins)."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        tag = tag.strip().lower()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


def town_snapshot(town: Town) -> dict[str, Any]:
    """JSON-safe copy of a town's identity and mutable fields."""
    return {
        "username": town.username,
        "town_id": town.town_id,
        "town_name": town.town_name,
        "town_address": town.town_address,
        "town_description": town.town_description,
        "town_tags": list(town.town_tags or []),
        "image": town.image,
    }


def _select_town(username: str, town_id: str):
    return select(Town).where(Town.username == username, Town.town_id == town_id)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def create_town(
    engine: Engine,
    username: str,
    town_id: str,
    town_name: str,
    town_address: str | None,
    town_description: str | None,
    town_tags: Iterable[str],
    image: str | None = None,
) -> dict[str, Any]:
    """Insert a new town and its ``create`` event.  Returns the snapshot."""
    with get_session(engine) as session:
        town = Town(
            username=username,
            town_id=town_id,
            town_name=town_name,
            town_address=town_address,
            town_description=town_description,
            town_tags=list(town_tags),
            image=image,
            created_at=datetime.now(UTC),
        )
        session.add(town)
        try:
            session.flush()
        except IntegrityError as exc:
            raise TownExistsError(username, town_id) from exc

        snapshot = town_snapshot(town)
        append_change(session, ChangeEventType.CREATE, username, town_id, snapshot)

    logger.info("Town created: %s/%s", username, town_id)
    return snapshot


def save_town(
    engine: Engine,
    username: str,
    town_id: str,
    town_name: str,
    town_address: str | None,
    town_description: str | None,
    town_tags: Iterable[str],
    image: str | None = None,
) -> dict[str, Any]:
    """Update an existing town and append its ``update`` event.

    *image* is only replaced when given.
    """
    with get_session(engine) as session:
        town = session.scalar(_select_town(username, town_id).with_for_update())
        if town is None:
            raise TownNotFoundError(username, town_id)

        town.town_name = town_name
        town.town_address = town_address
        town.town_description = town_description
        town.town_tags = list(town_tags)
        if image:
            town.image = image
        town.updated_at = datetime.now(UTC)
        session.flush()

        snapshot = town_snapshot(town)
        append_change(session, ChangeEventType.UPDATE, username, town_id, snapshot)

    logger.info("Town updated: %s/%s", username, town_id)
    return snapshot


def delete_town(engine: Engine, username: str, town_id: str) -> bool:
    """Delete a town.  Returns False (and logs no event) if it didn't exist."""
    with get_session(engine) as session:
        result = session.execute(
            delete(Town).where(Town.username == username, Town.town_id == town_id)
        )
        if not result.rowcount:
            return False
        append_change(session, ChangeEventType.DELETE, username, town_id)

    logger.info("Town deleted: %s/%s", username, town_id)
    return True


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def find_town(engine: Engine, username: str, town_id: str) -> dict[str, Any] | None:
    with get_session(engine) as session:
        town = session.scalar(_select_town(username, town_id))
        return town_snapshot(town) if town else None


def find_towns(engine: Engine, username: str) -> list[dict[str, Any]]:
    """All towns owned by *username*, oldest first."""
    with get_session(engine) as session:
        towns = session.scalars(
            select(Town).where(Town.username == username).order_by(Town.id)
        ).all()
        return [town_snapshot(t) for t in towns]


def walk_towns(engine: Engine) -> Iterator[dict[str, Any]]:
    """Lazily stream a snapshot of every town.

    Each call starts a fresh scan.  Rows are fetched in chunks of
    ``WALK_CHUNK_SIZE`` so memory stays flat regardless of table size.
    """
    with get_session(engine) as session:
        rows = session.scalars(
            select(Town).order_by(Town.id).execution_options(yield_per=WALK_CHUNK_SIZE)
        )
        for town in rows:
            yield town_snapshot(town)
