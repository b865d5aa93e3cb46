"""Initial schema: trips, driver tokens and quotes.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

TRIP_STATUSES = ("not confirmed", "pending", "confirmed", "rejected", "booked", "cancelled")
INVALIDATION_REASONS = ("replaced_by_new_token", "driver_changed", "trip_cancelled")


def upgrade() -> None:
    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("owner_email", sa.String(255), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*TRIP_STATUSES, name="tripstatus", native_enum=False, length=20),
            nullable=False,
            server_default="not confirmed",
        ),
        sa.Column("driver", sa.String(255), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("trip_date", sa.Date, nullable=True),
        sa.Column("trip_destination", sa.String(255), nullable=True),
        sa.Column("lead_passenger_name", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_trips_owner", "trips", ["owner_id"])
    op.create_index("idx_trips_status", "trips", ["status"])

    # ── driver_tokens ─────────────────────────────────────────────────
    op.create_table(
        "driver_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("driver_email", sa.String(255), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invalidated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "invalidation_reason",
            sa.Enum(
                *INVALIDATION_REASONS,
                name="invalidationreason",
                native_enum=False,
                length=32,
            ),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_driver_tokens_token", "driver_tokens", ["token"], unique=True)
    op.create_index(
        "idx_driver_tokens_trip_driver", "driver_tokens", ["trip_id", "driver_email"]
    )

    # ── quotes ────────────────────────────────────────────────────────
    op.create_table(
        "quotes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("price", sa.Float, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("trip_id", "email", name="uq_quotes_trip_email"),
    )
    op.create_index("idx_quotes_trip", "quotes", ["trip_id"])


def downgrade() -> None:
    op.drop_table("quotes")
    op.drop_table("driver_tokens")
    op.drop_table("trips")
