"""initial_schema

Revision ID: 199d3cfa0210
Revises:
Create Date: 2026-10-19 09:12:31.402117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '199d3cfa0210'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial tables: user, trip."""
    op.create_table(
        "user",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="rider"),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("home_location", sa.JSON(), nullable=True),
        sa.Column("work_location", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_role", "user", ["role"])
    op.create_table(
        "trip",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("passenger_id", sa.String(), nullable=False),
        sa.Column("driver_id", sa.String(), nullable=False),
        sa.Column("passenger_name", sa.String(), nullable=False),
        sa.Column("driver_name", sa.String(), nullable=False),
        sa.Column("passenger_latitude", sa.Float(), nullable=False),
        sa.Column("passenger_longitude", sa.Float(), nullable=False),
        sa.Column("driver_latitude", sa.Float(), nullable=False),
        sa.Column("driver_longitude", sa.Float(), nullable=False),
        sa.Column("pickup_location_name", sa.String(), nullable=False, server_default="Current Location"),
        sa.Column("pickup_location_address", sa.String(), nullable=False, server_default=""),
        sa.Column("pickup_latitude", sa.Float(), nullable=False),
        sa.Column("pickup_longitude", sa.Float(), nullable=False),
        sa.Column("dropoff_location_name", sa.String(), nullable=False),
        sa.Column("dropoff_latitude", sa.Float(), nullable=False),
        sa.Column("dropoff_longitude", sa.Float(), nullable=False),
        sa.Column("ride_class", sa.String(), nullable=False, server_default="red_eye"),
        sa.Column("trip_cost", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("distance_to_passenger", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("travel_time_to_passenger", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("state", sa.String(), nullable=False, server_default="requested"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trip_passenger_id", "trip", ["passenger_id"])
    op.create_index("ix_trip_driver_id", "trip", ["driver_id"])
    op.create_index("ix_trip_state", "trip", ["state"])


def downgrade() -> None:
    """Drop all initial tables."""
    op.drop_index("ix_trip_state", table_name="trip")
    op.drop_index("ix_trip_driver_id", table_name="trip")
    op.drop_index("ix_trip_passenger_id", table_name="trip")
    op.drop_table("trip")
    op.drop_index("ix_user_role", table_name="user")
    op.drop_table("user")
