"""
villagerdb.services.job_lease — Reindex Run Leases
===================================================

Delta runs, full rebuilds and orphan sweeps of one logical index must not
overlap: two delta runs would apply and delete the same change events
twice, and a sweep could delete a generation a full rebuild is still
filling.  The scheduler's interval is not a guarantee, and admin actions
arrive through a different process, so the guard lives in the database.

A lease is a row in ``index_job_leases``.  Taking it is an INSERT (the
primary key makes that exclusive); an expired lease can be taken over
with a conditional UPDATE, so a crashed holder blocks runs for at most
its TTL.

A live holder keeps its lease with :class:`LeaseHeartbeat`, which pushes
``expires_at`` forward while the run makes progress.  If the lease was
taken over anyway (the holder stalled for longer than the TTL), the next
beat raises :class:`LeaseLostError` and the run stops.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, delete, update
from sqlalchemy.exc import IntegrityError

from villagerdb.database.engine import get_session
from villagerdb.database.models import IndexJobLease

logger = logging.getLogger(__name__)


def _normalize_dt(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def acquire_lease(engine: Engine, name: str, ttl_seconds: int) -> str | None:
    """Try to take the lease *name*.  Returns a holder token, or None if held."""
    token = uuid.uuid4().hex
    now = datetime.now(UTC)
    expires = now + timedelta(seconds=ttl_seconds)

    with get_session(engine) as session:
        try:
            session.add(IndexJobLease(
                name=name, holder=token, acquired_at=now, expires_at=expires,
            ))
            session.flush()
            return token
        except IntegrityError:
            session.rollback()

        result = session.execute(
            update(IndexJobLease)
            .where(IndexJobLease.name == name, IndexJobLease.expires_at < now)
            .values(holder=token, acquired_at=now, expires_at=expires)
        )
        if result.rowcount == 1:
            logger.warning("Took over expired lease %s", name)
            return token
    return None


def release_lease(engine: Engine, name: str, token: str) -> None:
    """Drop the lease if *token* still holds it."""
    with get_session(engine) as session:
        session.execute(
            delete(IndexJobLease).where(
                IndexJobLease.name == name, IndexJobLease.holder == token,
            )
        )


def lease_status(engine: Engine, name: str) -> dict[str, Any] | None:
    with get_session(engine) as session:
        row = session.get(IndexJobLease, name)
        if row is None:
            return None
        return {
            "holder": row.holder,
            "acquired_at": _normalize_dt(row.acquired_at).isoformat(),
            "expires_at": _normalize_dt(row.expires_at).isoformat(),
        }


class LeaseLostError(Exception):
    """The lease expired and was taken over while its holder was running."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Lease {name!r} was lost to another holder")
        self.name = name


def renew_lease(engine: Engine, name: str, token: str, ttl_seconds: int) -> bool:
    """Extend the lease to ``now + ttl_seconds``.  False if *token* lost it."""
    expires = datetime.now(UTC) + timedelta(seconds=ttl_seconds)
    with get_session(engine) as session:
        result = session.execute(
            update(IndexJobLease)
            .where(IndexJobLease.name == name, IndexJobLease.holder == token)
            .values(expires_at=expires)
        )
        return result.rowcount == 1


class LeaseHeartbeat:
    """Renew a held lease every ``ttl_seconds / 3`` of progress.

    Call :meth:`beat` from the run's loop; it only touches the database
    once the renewal interval has passed.
    """

    def __init__(
        self,
        engine: Engine,
        name: str,
        token: str,
        ttl_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self.name = name
        self.token = token
        self.ttl_seconds = ttl_seconds
        self.interval = ttl_seconds / 3
        self._clock = clock
        self._last = clock()

    def beat(self) -> None:
        now = self._clock()
        if now - self._last < self.interval:
            return
        if not renew_lease(self.engine, self.name, self.token, self.ttl_seconds):
            logger.error("Lease %s lost mid-run", self.name)
            raise LeaseLostError(self.name)
        self._last = now
