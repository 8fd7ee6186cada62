"""Create station, transit event, ghost station and web service tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    alembic_op.create_table(
        "station",
        sa.Column("code", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("geo", sa.String(length=64), nullable=True),
        sa.Column("min_timestamp", sa.BigInteger(), nullable=True),
        sa.Column("max_timestamp", sa.BigInteger(), nullable=True),
    )
    alembic_op.create_table(
        "station_detail",
        sa.Column("code", sa.String(length=64), primary_key=True),
        sa.Column("data", sa.Text(), nullable=False),
    )
    alembic_op.create_table(
        "traffic_event",
        sa.Column("stationcode", sa.String(length=64), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("distance", sa.Float(), nullable=False),
        sa.Column("headway", sa.Float(), nullable=False),
        sa.Column("length", sa.Float(), nullable=False),
        sa.Column("axles", sa.Integer(), nullable=False),
        sa.Column("against_traffic", sa.Boolean(), nullable=False),
        sa.Column("vehicle_class", sa.Integer(), nullable=False),
        sa.Column("speed", sa.Float(), nullable=False),
        sa.Column("direction", sa.Integer(), nullable=False),
        sa.Column("country", sa.String(length=8), nullable=True),
        sa.Column("license_plate_initials", sa.String(length=16), nullable=True),
        sa.PrimaryKeyConstraint("stationcode", "timestamp", name="pk_traffic_event"),
    )
    alembic_op.create_index(
        "ix_traffic_event_timestamp",
        "traffic_event",
        ["timestamp"],
    )
    alembic_op.create_table(
        "ghost_station",
        sa.Column("code", sa.String(length=64), primary_key=True),
        sa.Column(
            "detected_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    alembic_op.create_table(
        "webservice",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("url", sa.String(length=512), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("password", sa.String(length=255), nullable=False),
    )


def downgrade() -> None:
    alembic_op.drop_table("webservice")
    alembic_op.drop_table("ghost_station")
    alembic_op.drop_index("ix_traffic_event_timestamp", table_name="traffic_event")
    alembic_op.drop_table("traffic_event")
    alembic_op.drop_table("station_detail")
    alembic_op.drop_table("station")
