"""
villagerdb.services.indexer — Town Search Indexer
==================================================

Keeps the town search index eventually consistent with ``towns``.

Full reindex (admin-triggered)
    1. Allocate a new generation ``<index>_<epoch-ms>``.
    2. Create it with the explicit :data:`TOWN_INDEX_FIELDS` mappings.
    3. Stream every town into it through :func:`shape_document`.
    4. Swap the index pointer to it, capturing the previous generation.
    5. Delete the previous generation.

    Readers follow the pointer, and the pointer only moves after step 3
    finished, so they never see a half-built generation.  A failure in
    step 3 leaves the new generation orphaned and the pointer untouched;
    :meth:`TownIndexer.sweep_orphans` removes such leftovers.

Delta reindex (scheduled, every 5 minutes)
    1. Resolve the live generation; none yet → nothing to do.
    2. Fetch the oldest ``delta_batch_size`` change events.
    3. Apply them strictly one after another: create/update upserts the
       shaped snapshot, delete removes the document (missing is fine).
    4. Delete each event right after it landed.

    A failing event stops the batch without consuming it; the next run
    starts again from that event.  Re-applying an event that landed
    before a crash is harmless because both operations are idempotent.

All runs of one logical index hold the same lease
(:mod:`villagerdb.services.job_lease`), so none of them overlap.  Full and
delta runs renew it as they go, so a long rebuild keeps it past its TTL.

Only ``<index>_<digits>`` names count as generations of an index; a
sibling index such as ``towns_archive`` is never listed or swept as one
of ``towns``.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Engine

from villagerdb.config import VillagerConfig
from villagerdb.search.documents import TOWN_INDEX_FIELDS, document_id, shape_document
from villagerdb.search.query import MATCH_ALL
from villagerdb.search.store import IndexNotFoundError, SearchIndexStore
from villagerdb.services import change_log, town_service
from villagerdb.services.change_log import ChangeEvent, ChangeEventType
from villagerdb.services.index_pointer import IndexPointerCache
from villagerdb.services.job_lease import (
    LeaseHeartbeat,
    acquire_lease,
    lease_status,
    release_lease,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors & results
# ---------------------------------------------------------------------------
class IndexerBusyError(Exception):
    """Another reindex run holds the lease for this index."""

    def __init__(self, index_name: str) -> None:
        super().__init__(f"A reindex run for {index_name!r} is already in progress")
        self.index_name = index_name


class DeltaApplyError(Exception):
    """A change event could not be applied; it stays in the change log."""

    def __init__(self, event: ChangeEvent, applied: int) -> None:
        super().__init__(
            f"Failed to apply change event {event.id} ({event.event_type} "
            f"{event.username}/{event.town_id}) after {applied} applied"
        )
        self.event_id = event.id
        self.applied = applied


@dataclass(frozen=True, slots=True)
class FullReindexResult:
    generation: str
    previous: str | None
    documents: int


@dataclass(frozen=True, slots=True)
class DeltaReindexResult:
    status: str  # "ok" | "no_index" | "busy"
    generation: str | None = None
    applied: int = 0
    batches: int = 0


# ---------------------------------------------------------------------------
# TownIndexer
# ---------------------------------------------------------------------------
class TownIndexer:
    """Full and delta reindexing of towns into a :class:`SearchIndexStore`."""

    def __init__(self, engine: Engine, store: SearchIndexStore, config: VillagerConfig) -> None:
        self.engine = engine
        self.store = store
        self.config = config
        self.index_name = config.town_index_name
        self.pointer = IndexPointerCache(engine)

    # -------------------------------------------------------------------
    # Generations
    # -------------------------------------------------------------------
    def _generation_prefix(self) -> str:
        return f"{self.index_name}_"

    def generations(self) -> list[str]:
        """Names in the store that are generations of this index, sorted."""
        pattern = re.compile(rf"{re.escape(self.index_name)}_\d+")
        return [
            name for name in self.store.list_indexes(self._generation_prefix())
            if pattern.fullmatch(name)
        ]

    def _allocate_generation(self) -> str:
        stamp = int(time.time() * 1000)
        name = f"{self._generation_prefix()}{stamp}"
        while self.store.exists(name):
            stamp += 1
            name = f"{self._generation_prefix()}{stamp}"
        return name

    def live_generation(self) -> str | None:
        return self.pointer.get(self.index_name)

    def _retire(self, generation: str) -> None:
        try:
            self.store.delete_index(generation)
        except IndexNotFoundError:
            logger.warning("Old town index %s was already gone", generation)
        else:
            logger.info("Deleted old town index %s", generation)

    # -------------------------------------------------------------------
    # Full reindex
    # -------------------------------------------------------------------
    def _shaped_towns(self, heartbeat: LeaseHeartbeat) -> Iterator[tuple[str, dict[str, Any]]]:
        for snapshot in town_service.walk_towns(self.engine):
            heartbeat.beat()
            yield document_id(snapshot["username"], snapshot["town_id"]), shape_document(snapshot)

    def full_reindex(self) -> FullReindexResult:
        """Build a brand-new generation from every town and make it live.

        Raises
        ------
        IndexerBusyError
            If another run holds the lease.
        LeaseLostError
            If the lease expired mid-fill and another run took it over.
        """
        ttl = self.config.full_reindex_lease_ttl_seconds
        token = acquire_lease(self.engine, self.index_name, ttl)
        if token is None:
            raise IndexerBusyError(self.index_name)

        try:
            heartbeat = LeaseHeartbeat(self.engine, self.index_name, token, ttl)
            generation = self._allocate_generation()
            self.store.create_index(generation, TOWN_INDEX_FIELDS)
            try:
                documents = self.store.index_documents(
                    generation, self._shaped_towns(heartbeat),
                )
            except Exception:
                logger.error(
                    "Full reindex failed while filling %s; generation left orphaned",
                    generation,
                )
                raise

            previous = self.pointer.swap(self.index_name, generation)
            logger.info("New town index name: %s (%d documents)", generation, documents)

            if previous and previous != generation:
                self._retire(previous)
            return FullReindexResult(generation=generation, previous=previous, documents=documents)
        finally:
            release_lease(self.engine, self.index_name, token)

    # -------------------------------------------------------------------
    # Delta reindex
    # -------------------------------------------------------------------
    def apply_event(self, generation: str, event: ChangeEvent) -> None:
        """Apply one change event to *generation*."""
        event_type = ChangeEventType(event.event_type)
        doc_id = document_id(event.username, event.town_id)
        if event_type is ChangeEventType.DELETE:
            if not self.store.delete_document(generation, doc_id):
                logger.debug("Delete of %s in %s: already absent", doc_id, generation)
        else:
            self.store.index_document(generation, doc_id, shape_document(event.payload))

    def delta_reindex(self) -> DeltaReindexResult:
        """Drain the change log into the live generation.

        Returns a ``busy`` result when another run holds the lease and a
        ``no_index`` result before the first full reindex.

        Raises
        ------
        DeltaApplyError
            If an event fails; events applied before it stay consumed.
        LeaseLostError
            If the lease expired mid-run and another run took it over.
        """
        ttl = self.config.lease_ttl_seconds
        token = acquire_lease(self.engine, self.index_name, ttl)
        if token is None:
            logger.info("Delta reindex skipped: another run holds %s", self.index_name)
            return DeltaReindexResult(status="busy")

        try:
            heartbeat = LeaseHeartbeat(self.engine, self.index_name, token, ttl)
            generation = self.live_generation()
            if generation is None:
                logger.info("Delta reindex skipped: no live %s index yet", self.index_name)
                return DeltaReindexResult(status="no_index")

            applied = 0
            batches = 0
            while batches < self.config.delta_max_batches:
                events = change_log.fetch_batch(self.engine, self.config.delta_batch_size)
                if not events:
                    break
                batches += 1
                for event in events:
                    heartbeat.beat()
                    try:
                        self.apply_event(generation, event)
                    except Exception as exc:
                        raise DeltaApplyError(event, applied) from exc
                    change_log.delete_change(self.engine, event.id)
                    applied += 1
                if len(events) < self.config.delta_batch_size:
                    break

            if applied:
                logger.info("Delta reindex applied %d change(s) to %s", applied, generation)
            return DeltaReindexResult(
                status="ok", generation=generation, applied=applied, batches=batches,
            )
        finally:
            release_lease(self.engine, self.index_name, token)

    # -------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------
    def sweep_orphans(self) -> list[str]:
        """Delete generations of this index that are not live.

        Holds the lease, so a generation that a full reindex is still
        filling is never touched.  Returns the deleted names.
        """
        token = acquire_lease(self.engine, self.index_name, self.config.lease_ttl_seconds)
        if token is None:
            raise IndexerBusyError(self.index_name)

        try:
            live = self.live_generation()
            orphans = [
                name for name in self.generations() if name != live
            ]
            for name in orphans:
                self._retire(name)
            if orphans:
                logger.info("Orphan sweep removed %d generation(s): %s", len(orphans), orphans)
            return orphans
        finally:
            release_lease(self.engine, self.index_name, token)

    def status(self) -> dict[str, Any]:
        """Snapshot of the index state for the admin dashboard."""
        live = self.live_generation()
        documents = None
        if live is not None:
            try:
                documents = self.store.count(live, MATCH_ALL)
            except IndexNotFoundError:
                logger.warning("Live town index %s is missing from the store", live)
        return {
            "index_name": self.index_name,
            "live_generation": live,
            "documents": documents,
            "pending_changes": change_log.pending_count(self.engine),
            "generations": self.generations(),
            "lease": lease_status(self.engine, self.index_name),
        }
