"""
tests/test_index_pointer.py — Index Pointer Cache & Run Leases
===============================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from villagerdb.database.models import IndexJobLease
from villagerdb.services.index_pointer import IndexPointerCache
from villagerdb.services.job_lease import (
    LeaseHeartbeat,
    LeaseLostError,
    acquire_lease,
    lease_status,
    release_lease,
    renew_lease,
)


class TestIndexPointerCache:
    def test_absent_before_first_set(self, db_engine):
        assert IndexPointerCache(db_engine).get("towns") is None

    def test_set_then_get(self, db_engine):
        cache = IndexPointerCache(db_engine)
        cache.set("towns", "towns_1")
        assert cache.get("towns") == "towns_1"

    def test_swap_returns_previous(self, db_engine):
        cache = IndexPointerCache(db_engine)
        assert cache.swap("towns", "towns_1") is None
        assert cache.swap("towns", "towns_2") == "towns_1"
        assert cache.get("towns") == "towns_2"

    def test_keys_are_independent(self, db_engine):
        cache = IndexPointerCache(db_engine)
        cache.set("towns", "towns_1")
        cache.set("villagers", "villagers_7")
        assert cache.get("towns") == "towns_1"
        assert cache.get("villagers") == "villagers_7"

    def test_visible_to_a_fresh_instance(self, db_engine):
        """The pointer lives in the database, not in the object."""
        IndexPointerCache(db_engine).set("towns", "towns_3")
        assert IndexPointerCache(db_engine).get("towns") == "towns_3"


class TestJobLease:
    def test_exclusive_until_released(self, db_engine):
        token = acquire_lease(db_engine, "towns", 60)
        assert token is not None
        assert acquire_lease(db_engine, "towns", 60) is None

        release_lease(db_engine, "towns", token)
        assert acquire_lease(db_engine, "towns", 60) is not None

    def test_leases_are_per_name(self, db_engine):
        assert acquire_lease(db_engine, "towns", 60) is not None
        assert acquire_lease(db_engine, "villagers", 60) is not None

    def test_release_with_stale_token_keeps_lease(self, db_engine):
        token = acquire_lease(db_engine, "towns", 60)
        release_lease(db_engine, "towns", "not-the-holder")
        assert lease_status(db_engine, "towns")["holder"] == token

    def test_expired_lease_can_be_taken_over(self, db_engine):
        old = acquire_lease(db_engine, "towns", 60)
        with Session(db_engine) as session:
            session.execute(
                update(IndexJobLease)
                .where(IndexJobLease.name == "towns")
                .values(expires_at=datetime.now(UTC) - timedelta(seconds=1))
            )
            session.commit()

        new = acquire_lease(db_engine, "towns", 60)
        assert new is not None and new != old
        assert lease_status(db_engine, "towns")["holder"] == new

    def test_status_when_free(self, db_engine):
        assert lease_status(db_engine, "towns") is None


def _expire(engine, name: str) -> None:
    with Session(engine) as session:
        session.execute(
            update(IndexJobLease)
            .where(IndexJobLease.name == name)
            .values(expires_at=datetime.now(UTC) - timedelta(seconds=1))
        )
        session.commit()


class TestLeaseRenewal:
    def test_renew_extends_expiry(self, db_engine):
        token = acquire_lease(db_engine, "towns", 60)
        before = lease_status(db_engine, "towns")["expires_at"]

        assert renew_lease(db_engine, "towns", token, 3600) is True
        assert lease_status(db_engine, "towns")["expires_at"] > before

    def test_renewed_lease_is_not_taken_over(self, db_engine):
        token = acquire_lease(db_engine, "towns", 60)
        _expire(db_engine, "towns")
        renew_lease(db_engine, "towns", token, 60)

        assert acquire_lease(db_engine, "towns", 60) is None

    def test_renew_after_takeover_fails(self, db_engine):
        old = acquire_lease(db_engine, "towns", 60)
        _expire(db_engine, "towns")
        new = acquire_lease(db_engine, "towns", 60)

        assert renew_lease(db_engine, "towns", old, 60) is False
        assert lease_status(db_engine, "towns")["holder"] == new


class TestLeaseHeartbeat:
    def test_beat_is_a_noop_inside_the_interval(self, db_engine):
        now = [0.0]
        token = acquire_lease(db_engine, "towns", 90)
        heartbeat = LeaseHeartbeat(db_engine, "towns", token, 90, clock=lambda: now[0])
        before = lease_status(db_engine, "towns")["expires_at"]

        now[0] = 29.0
        heartbeat.beat()
        assert lease_status(db_engine, "towns")["expires_at"] == before

    def test_beat_renews_after_a_third_of_the_ttl(self, db_engine):
        now = [0.0]
        token = acquire_lease(db_engine, "towns", 90)
        heartbeat = LeaseHeartbeat(db_engine, "towns", token, 90, clock=lambda: now[0])
        _expire(db_engine, "towns")

        now[0] = 30.0
        heartbeat.beat()
        assert acquire_lease(db_engine, "towns", 60) is None

    def test_beat_raises_once_the_lease_is_lost(self, db_engine):
        now = [0.0]
        token = acquire_lease(db_engine, "towns", 90)
        heartbeat = LeaseHeartbeat(db_engine, "towns", token, 90, clock=lambda: now[0])
        _expire(db_engine, "towns")
        acquire_lease(db_engine, "towns", 60)

        now[0] = 31.0
        with pytest.raises(LeaseLostError):
            heartbeat.beat()
