"""
villagerdb.services.change_log — Town Change Log
=================================================

Append side
    :func:`append_change` adds one ``town_events`` row to the caller's
    session.  Town writes call it inside the same transaction as the town
    row itself, so the event exists if and only if the mutation committed.

Consume side
    The delta indexer reads the oldest events with :func:`fetch_batch`
    and deletes each with :func:`delete_change` once it is in the index.
    Rows are never updated; there is one consumer at a time (see
    :mod:`villagerdb.services.job_lease`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from villagerdb.database.engine import get_session
from villagerdb.database.models import ChangeEventType, TownEvent

logger = logging.getLogger(__name__)

__all__ = [
    "ChangeEvent",
    "ChangeEventType",
    "append_change",
    "delete_change",
    "fetch_batch",
    "pending_count",
]


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Detached, immutable copy of a ``town_events`` row."""
    id: int
    event_type: str
    username: str
    town_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None

    @classmethod
    def from_row(cls, row: TownEvent) -> ChangeEvent:
        return cls(
            id=row.id,
            event_type=row.event_type,
            username=row.username,
            town_id=row.town_id,
            payload=dict(row.payload or {}),
            timestamp=row.timestamp,
        )


def append_change(
    session: Session,
    event_type: ChangeEventType,
    username: str,
    town_id: str,
    snapshot: dict[str, Any] | None = None,
) -> TownEvent:
    """Stage a change event in *session* and flush it.

    The flush makes a failing insert raise here, inside the caller's
    transaction, so the town write it accompanies is rolled back too.
    """
    event = TownEvent(
        event_type=str(event_type),
        username=username,
        town_id=town_id,
        payload=snapshot or {},
        timestamp=datetime.now(UTC),
    )
    session.add(event)
    session.flush()
    return event


def fetch_batch(engine: Engine, batch_size: int) -> list[ChangeEvent]:
    """Return up to *batch_size* of the oldest events, in insertion order."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(TownEvent).order_by(TownEvent.id).limit(batch_size)
        ).all()
        return [ChangeEvent.from_row(r) for r in rows]


def delete_change(engine: Engine, event_id: int) -> None:
    with get_session(engine) as session:
        session.execute(delete(TownEvent).where(TownEvent.id == event_id))


def pending_count(engine: Engine) -> int:
    with get_session(engine) as session:
        return session.scalar(select(func.count()).select_from(TownEvent)) or 0
