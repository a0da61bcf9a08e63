"""
villagerdb.worker.scheduler — Periodic Background Jobs
=======================================================

Scheduled jobs that run as ``asyncio`` loops in the worker process:

- **Delta town reindex** — every ``delta_interval_seconds`` (5 minutes),
  drains the change log into the live search index.
- **Orphan sweep** — every ``orphan_sweep_interval_seconds`` (daily),
  deletes search index generations left behind by failed full reindexes.

Each tick runs through ``run_db()`` so the event loop never blocks.  A
tick that comes due while the previous one is still running is skipped;
across processes the indexer's lease does the same job.  Failures are
logged and the loop carries on; the next tick is the retry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from villagerdb.config import VillagerConfig
from villagerdb.database.engine import run_db
from villagerdb.services.indexer import TownIndexer

logger = logging.getLogger(__name__)


class PeriodicJob:
    """Run a synchronous callable every *interval_seconds*."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[..., Any],
        *args: Any,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.args = args
        self.running = False
        self.last_result: Any = None
        self._task: asyncio.Task | None = None

    async def run_once(self) -> Any:
        """Run one tick.  Returns the job's result, or None if skipped/failed."""
        if self.running:
            logger.warning("Job %s still running; skipping this tick", self.name)
            return None

        self.running = True
        try:
            self.last_result = await run_db(self.func, *self.args)
            return self.last_result
        except Exception:
            logger.exception("Job %s failed", self.name, extra={"task": self.name})
            return None
        finally:
            self.running = False

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name=f"job:{self.name}")
            logger.info("Scheduled job %s every %ss", self.name, self.interval_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


def _delta_tick(indexer: TownIndexer):
    result = indexer.delta_reindex()
    if result.status == "ok" and result.applied:
        logger.info(
            "Delta task complete: %d change(s) applied to %s",
            result.applied, result.generation,
        )
    return result


def build_jobs(indexer: TownIndexer, config: VillagerConfig) -> list[PeriodicJob]:
    """The worker's job set for *config*."""
    jobs = [
        PeriodicJob("delta_town_reindex", config.delta_interval_seconds, _delta_tick, indexer),
    ]
    if config.orphan_sweep_interval_seconds > 0:
        jobs.append(PeriodicJob(
            "town_index_orphan_sweep",
            config.orphan_sweep_interval_seconds,
            indexer.sweep_orphans,
        ))
    return jobs


async def run_forever(jobs: list[PeriodicJob]) -> None:
    """Start *jobs* and park until cancelled."""
    for job in jobs:
        job.start()
    logger.info("Cron schedules submitted.")
    try:
        await asyncio.Event().wait()
    finally:
        for job in jobs:
            await job.stop()
