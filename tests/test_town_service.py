"""
tests/test_town_service.py — Town Writes & Change Log Append
=============================================================

Every committed town mutation must leave exactly one change event behind,
and a failed event write must undo the mutation.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from conftest import add_town
from sqlalchemy import func, select

from villagerdb.database.models import Town, TownEvent
from villagerdb.services import change_log, town_service
from villagerdb.services.town_service import TownExistsError, TownNotFoundError


def _town_count(engine) -> int:
    from sqlalchemy.orm import Session

    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(Town))


class TestCreate:
    def test_create_appends_create_event_with_snapshot(self, db_engine):
        snapshot = add_town(db_engine)

        [event] = change_log.fetch_batch(db_engine, 10)
        assert event.event_type == "create"
        assert (event.username, event.town_id) == ("alice", "my-town")
        assert event.payload == snapshot
        assert event.payload["town_tags"] == ["cozy", "spring"]

    def test_duplicate_key_rejected_without_event(self, db_engine):
        add_town(db_engine)
        with pytest.raises(TownExistsError):
            add_town(db_engine, town_name="Other")

        assert change_log.pending_count(db_engine) == 1
        assert _town_count(db_engine) == 1

    def test_same_slug_for_different_owners(self, db_engine):
        add_town(db_engine, username="alice")
        add_town(db_engine, username="bob")
        assert _town_count(db_engine) == 2

    def test_event_failure_rolls_back_town(self, db_engine):
        """No event ⇒ no town: the two writes commit together or not at all."""
        with patch(
            "villagerdb.services.town_service.append_change",
            side_effect=RuntimeError("change log unavailable"),
        ):
            with pytest.raises(RuntimeError):
                add_town(db_engine)

        assert _town_count(db_engine) == 0
        assert change_log.pending_count(db_engine) == 0


class TestSave:
    def test_update_appends_full_post_write_snapshot(self, db_engine):
        add_town(db_engine, image="first.png")
        town_service.save_town(
            db_engine, "alice", "my-town", "My Town", "DA-1111-2222-3333",
            "Now with a museum", ["museum"],
        )

        events = change_log.fetch_batch(db_engine, 10)
        assert [e.event_type for e in events] == ["create", "update"]
        update = events[1].payload
        assert update["town_tags"] == ["museum"]
        assert update["town_description"] == "Now with a museum"
        # Image is kept when not re-uploaded and the snapshot says so
        assert update["image"] == "first.png"

    def test_update_replaces_image_when_given(self, db_engine):
        add_town(db_engine, image="first.png")
        snapshot = town_service.save_town(
            db_engine, "alice", "my-town", "My Town", None, "desc", [], image="second.png",
        )
        assert snapshot["image"] == "second.png"

    def test_update_missing_town(self, db_engine):
        with pytest.raises(TownNotFoundError):
            town_service.save_town(db_engine, "alice", "nope", "Nope", None, "desc", [])
        assert change_log.pending_count(db_engine) == 0

    def test_event_failure_rolls_back_update(self, db_engine):
        add_town(db_engine)
        with patch(
            "villagerdb.services.town_service.append_change",
            side_effect=RuntimeError("boom"),
        ):
            with pytest.raises(RuntimeError):
                town_service.save_town(
                    db_engine, "alice", "my-town", "Renamed", None, "changed", [],
                )

        town = town_service.find_town(db_engine, "alice", "my-town")
        assert town["town_name"] == "My Town"
        assert change_log.pending_count(db_engine) == 1


class TestDelete:
    def test_delete_appends_key_only_event(self, db_engine):
        add_town(db_engine)
        assert town_service.delete_town(db_engine, "alice", "my-town") is True

        events = change_log.fetch_batch(db_engine, 10)
        assert events[-1].event_type == "delete"
        assert events[-1].payload == {}
        assert town_service.find_town(db_engine, "alice", "my-town") is None

    def test_delete_missing_town_writes_no_event(self, db_engine):
        assert town_service.delete_town(db_engine, "alice", "ghost") is False
        assert change_log.pending_count(db_engine) == 0

    def test_event_failure_rolls_back_delete(self, db_engine):
        add_town(db_engine)
        with patch(
            "villagerdb.services.town_service.append_change",
            side_effect=RuntimeError("change log unavailable"),
        ):
            with pytest.raises(RuntimeError):
                town_service.delete_town(db_engine, "alice", "my-town")

        assert town_service.find_town(db_engine, "alice", "my-town") is not None
        assert change_log.pending_count(db_engine) == 1


class TestReads:
    def test_find_towns_by_owner(self, db_engine):
        add_town(db_engine, town_id="one")
        add_town(db_engine, town_id="two")
        add_town(db_engine, username="bob", town_id="three")
        assert [t["town_id"] for t in town_service.find_towns(db_engine, "alice")] == ["one", "two"]

    def test_walk_towns_is_lazy_and_restartable(self, db_engine):
        for i in range(3):
            add_town(db_engine, town_id=f"t{i}")

        walker = town_service.walk_towns(db_engine)
        assert next(walker)["town_id"] == "t0"
        walker.close()

        assert [t["town_id"] for t in town_service.walk_towns(db_engine)] == ["t0", "t1", "t2"]

    def test_walk_empty_store(self, db_engine):
        assert list(town_service.walk_towns(db_engine)) == []


class TestHelpers:
    def test_normalize_tags(self):
        assert town_service.normalize_tags(" Cozy, spring ,cozy,, SPRING ") == ["cozy", "spring"]
        assert town_service.normalize_tags(["A", "a", "b"]) == ["a", "b"]
        assert town_service.normalize_tags(None) == []

    def test_slugify(self):
        assert town_service.slugify("My Town 2") == "my-town-2"
        assert town_service.slugify("  Frost  ") == "frost"


class TestChangeLogOrder:
    def test_fetch_batch_is_insertion_ordered_and_bounded(self, db_engine):
        for i in range(5):
            add_town(db_engine, town_id=f"t{i}")

        batch = change_log.fetch_batch(db_engine, 3)
        assert [e.town_id for e in batch] == ["t0", "t1", "t2"]
        assert [e.id for e in batch] == sorted(e.id for e in batch)

    def test_delete_change(self, db_engine):
        add_town(db_engine)
        [event] = change_log.fetch_batch(db_engine, 1)
        change_log.delete_change(db_engine, event.id)
        assert change_log.pending_count(db_engine) == 0

    def test_events_are_rows_in_town_events(self, db_session, db_engine):
        add_town(db_engine)
        row = db_session.scalars(select(TownEvent)).one()
        assert row.event_type == "create"
