"""create_qr_service_tables

Revision ID: 5b2e8c1d9a47
Revises:
Create Date: 2026-10-16

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "5b2e8c1d9a47"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _jsonb_column(name: str) -> sa.Column:
    return sa.Column(name, postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb"))


def _rollup_columns() -> list:
    return [
        sa.Column("total_scans", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("flagged_scans", sa.Integer(), nullable=False, server_default="0"),
        _jsonb_column("scans_by_source"),
        _jsonb_column("scans_by_redirect_type"),
        _jsonb_column("device_counts"),
        _jsonb_column("geo_counts"),
        _jsonb_column("daily_buckets"),
        sa.Column("first_scanned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_scanned_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "properties",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("price", sa.BigInteger(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False, server_default="sale"),
        sa.Column("chain_ref", sa.Text(), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("crypto_accepted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("primary_image", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "qr_resources",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("subject_id", sa.Text(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.Text(), nullable=False, server_default="ACTIVE"),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("payload_hash", sa.Text(), nullable=False),
        sa.Column("storage_locator", sa.Text(), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("generation_reason", sa.Text(), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scan_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_scanned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subject_id"),
    )
    op.create_index("ix_qr_resources_generated_at_subject", "qr_resources", ["generated_at", "subject_id"])

    op.create_table(
        "qr_resource_versions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("subject_id", sa.Text(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="ACTIVE"),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("payload_hash", sa.Text(), nullable=False),
        sa.Column("storage_locator", sa.Text(), nullable=False),
        sa.Column("generation_reason", sa.Text(), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subject_id", "version", name="uq_qr_resource_versions_subject_version"),
    )
    op.create_index("ix_qr_resource_versions_subject_id", "qr_resource_versions", ["subject_id"])

    op.create_table(
        "scan_events",
        sa.Column("event_id", sa.Text(), nullable=False),
        sa.Column("subject_id", sa.Text(), nullable=False),
        sa.Column("resource_version", sa.Integer(), nullable=False),
        sa.Column("resource_status", sa.Text(), nullable=False),
        sa.Column("flagged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ingested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("redirect_type", sa.Text(), nullable=False),
        sa.Column("device_class", sa.Text(), nullable=False),
        sa.Column("platform", sa.Text(), nullable=False, server_default="unknown"),
        sa.Column("browser", sa.Text(), nullable=False, server_default="unknown"),
        sa.Column("geo_country", sa.Text(), nullable=False, server_default="unknown"),
        sa.Column("geo_region", sa.Text(), nullable=False, server_default="unknown"),
        sa.Column("session_id", sa.Text(), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_scan_events_subject_occurred", "scan_events", ["subject_id", "occurred_at"])

    op.create_table(
        "subject_rollups",
        sa.Column("subject_id", sa.Text(), nullable=False),
        *_rollup_columns(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("subject_id"),
    )

    op.create_table(
        "system_rollups",
        sa.Column("id", sa.Text(), nullable=False),
        *_rollup_columns(),
        _jsonb_column("subject_counts"),
        sa.Column("generation_success", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("generation_failure", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "rollup_applied_events",
        sa.Column("rollup_key", sa.Text(), nullable=False),
        sa.Column("event_id", sa.Text(), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("rollup_key", "event_id"),
    )

    op.create_table(
        "scan_ingest_failures",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("subject_id", sa.Text(), nullable=False),
        sa.Column("event_id", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        _jsonb_column("payload"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("scan_ingest_failures")
    op.drop_table("rollup_applied_events")
    op.drop_table("system_rollups")
    op.drop_table("subject_rollups")
    op.drop_index("ix_scan_events_subject_occurred", table_name="scan_events")
    op.drop_table("scan_events")
    op.drop_index("ix_qr_resource_versions_subject_id", table_name="qr_resource_versions")
    op.drop_table("qr_resource_versions")
    op.drop_index("ix_qr_resources_generated_at_subject", table_name="qr_resources")
    op.drop_table("qr_resources")
    op.drop_table("properties")
