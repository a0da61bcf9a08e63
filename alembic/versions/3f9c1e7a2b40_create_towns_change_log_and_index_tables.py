"""Create towns, town_events, index_pointers and index_job_leases tables

Revision ID: 3f9c1e7a2b40
Revises:
Create Date: 2026-10-19 09:12:41.208113

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f9c1e7a2b40'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the document store, change log and search index bookkeeping."""

    # --- towns ---
    op.create_table(
        "towns",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("town_id", sa.String(64), nullable=False),
        sa.Column("town_name", sa.String(64), nullable=False),
        sa.Column("town_address", sa.String(32), nullable=True),
        sa.Column("town_description", sa.Text, nullable=True),
        sa.Column("town_tags", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("image", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("username", "town_id", name="uq_towns_username_town_id"),
    )

    # --- town_events (change log) ---
    op.create_table(
        "town_events",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(16), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("town_id", sa.String(64), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_town_events_town", "town_events", ["username", "town_id"])

    # --- index_pointers ---
    op.create_table(
        "index_pointers",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("generation", sa.String(128), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # --- index_job_leases ---
    op.create_table(
        "index_job_leases",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("holder", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("index_job_leases")
    op.drop_table("index_pointers")
    op.drop_index("ix_town_events_town", table_name="town_events")
    op.drop_table("town_events")
    op.drop_table("towns")
