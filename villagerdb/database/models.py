"""
villagerdb.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- towns             — User-submitted dream towns (the document store)
- town_events       — Append-only change log drained by the delta indexer
- index_pointers    — Logical index name → live search index generation
- index_job_leases  — Run leases serializing reindex jobs across processes
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all VillagerDB ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ChangeEventType(enum.StrEnum):
    """Mutation kinds recorded in the change log."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# ---------------------------------------------------------------------------
# Town — one row per (owner, slug)
# ---------------------------------------------------------------------------
class Town(Base):
    __tablename__ = "towns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    town_id: Mapped[str] = mapped_column(String(64), nullable=False)  # URL slug
    town_name: Mapped[str] = mapped_column(String(64), nullable=False)
    town_address: Mapped[str | None] = mapped_column(String(32), default=None)
    town_description: Mapped[str | None] = mapped_column(Text, default=None)
    town_tags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    image: Mapped[str | None] = mapped_column(String(255), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("username", "town_id", name="uq_towns_username_town_id"),
    )

    def __repr__(self) -> str:
        return f"<Town {self.username}/{self.town_id} name={self.town_name!r}>"


# ---------------------------------------------------------------------------
# TownEvent — append-only change log
# ---------------------------------------------------------------------------
class TownEvent(Base):
    """One mutation against ``towns``, written in the same transaction.

    ``id`` is the consumption order: the delta indexer reads the lowest ids
    first and deletes each row once it has landed in the search index.
    """
    __tablename__ = "town_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    town_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_town_events_town", "username", "town_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<TownEvent id={self.id} type={self.event_type!r} "
            f"town={self.username}/{self.town_id}>"
        )


# ---------------------------------------------------------------------------
# IndexPointer — live generation per logical index
# ---------------------------------------------------------------------------
class IndexPointer(Base):
    __tablename__ = "index_pointers"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    generation: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<IndexPointer {self.name!r} → {self.generation!r}>"


# ---------------------------------------------------------------------------
# IndexJobLease — at most one reindex run per logical index
# ---------------------------------------------------------------------------
class IndexJobLease(Base):
    __tablename__ = "index_job_leases"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<IndexJobLease {self.name!r} holder={self.holder[:8]!r}>"
