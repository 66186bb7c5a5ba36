"""Enrollment schema — events, shuttle seats, registrations, saved wizards

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Changes:
  - Create users, events, registrations
  - Create pickup_locations with the 0 <= reserved_count <= capacity check
  - Create transport_bookings (one row per participant and event)
  - Create flow_snapshots for the long-lived wizard storage tier
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(255), nullable=False),
        sa.Column("last_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_telegram_id", "users", ["telegram_id"], unique=True)

    # ── events ────────────────────────────────────────────────────────────────
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("venue", sa.String(255), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=False),
        sa.Column("deadline", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # ── pickup_locations: authoritative seat counters ─────────────────────────
    op.create_table(
        "pickup_locations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("address", sa.String(500), nullable=False, server_default=""),
        sa.Column("pickup_time", sa.DateTime(), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("reserved_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.CheckConstraint("capacity >= 0", name="ck_pickup_capacity_non_negative"),
        sa.CheckConstraint(
            "reserved_count >= 0 AND reserved_count <= capacity",
            name="ck_pickup_reserved_within_capacity",
        ),
    )
    op.create_index("ix_pickup_locations_event_id", "pickup_locations", ["event_id"])

    # ── transport_bookings ────────────────────────────────────────────────────
    op.create_table(
        "transport_bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("participant_ref", sa.String(64), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("pickup_locations.id"), nullable=True),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("participant_ref", "event_id", name="uq_booking_participant_event"),
    )
    op.create_index("ix_transport_bookings_participant_ref", "transport_bookings", ["participant_ref"])

    # ── registrations ─────────────────────────────────────────────────────────
    op.create_table(
        "registrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("participant_ref", sa.String(64), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("id_number", sa.String(10), nullable=False),
        sa.Column("birth_date", sa.String(10), nullable=False),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("dharma_name", sa.String(50), nullable=True),
        sa.Column("temple_name", sa.String(100), nullable=True),
        sa.Column("special_requirements", sa.String(500), nullable=True),
        sa.Column("transport_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("pickup_locations.id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_registrations_participant_ref", "registrations", ["participant_ref"])

    # ── flow_snapshots: long-lived wizard storage tier ────────────────────────
    op.create_table(
        "flow_snapshots",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("flow_snapshots")
    op.drop_index("ix_registrations_participant_ref", table_name="registrations")
    op.drop_table("registrations")
    op.drop_index("ix_transport_bookings_participant_ref", table_name="transport_bookings")
    op.drop_table("transport_bookings")
    op.drop_index("ix_pickup_locations_event_id", table_name="pickup_locations")
    op.drop_table("pickup_locations")
    op.drop_table("events")
    op.drop_index("ix_users_telegram_id", table_name="users")
    op.drop_table("users")
