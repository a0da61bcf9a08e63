"""
tests/test_scheduler.py — Periodic Worker Jobs
===============================================
"""

from __future__ import annotations

import asyncio
import dataclasses

from conftest import add_town

from villagerdb.services import change_log
from villagerdb.worker.scheduler import PeriodicJob, build_jobs


class TestPeriodicJob:
    def test_run_once_returns_result(self):
        job = PeriodicJob("add", 60, lambda a, b: a + b, 2, 3)
        assert asyncio.run(job.run_once()) == 5
        assert job.last_result == 5
        assert job.running is False

    def test_tick_skipped_while_running(self):
        calls = []
        job = PeriodicJob("noop", 60, lambda: calls.append(1))
        job.running = True

        assert asyncio.run(job.run_once()) is None
        assert calls == []

    def test_failure_is_logged_not_raised(self, caplog):
        def boom():
            raise RuntimeError("search store offline")

        job = PeriodicJob("boom", 60, boom)
        assert asyncio.run(job.run_once()) is None
        assert job.running is False
        assert "Job boom failed" in caplog.text

    def test_start_and_stop(self):
        calls = []

        async def scenario():
            job = PeriodicJob("fast", 0.01, lambda: calls.append(1))
            job.start()
            await asyncio.sleep(0.1)
            await job.stop()
            return job

        job = asyncio.run(scenario())
        assert calls
        assert job._task is None


class TestBuildJobs:
    def test_default_jobs(self, indexer, config):
        jobs = build_jobs(indexer, config)
        assert [j.name for j in jobs] == ["delta_town_reindex", "town_index_orphan_sweep"]
        assert jobs[0].interval_seconds == config.delta_interval_seconds
        assert jobs[1].interval_seconds == config.orphan_sweep_interval_seconds

    def test_sweep_disabled(self, indexer, config):
        jobs = build_jobs(indexer, dataclasses.replace(config, orphan_sweep_interval_seconds=0))
        assert [j.name for j in jobs] == ["delta_town_reindex"]

    def test_delta_tick_drains_change_log(self, db_engine, indexer, config):
        indexer.full_reindex()
        add_town(db_engine)
        delta_job = build_jobs(indexer, config)[0]

        result = asyncio.run(delta_job.run_once())

        assert result.status == "ok"
        assert result.applied == 1
        assert change_log.pending_count(db_engine) == 0
