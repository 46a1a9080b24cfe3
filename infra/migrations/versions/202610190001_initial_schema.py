"""initial sustainability schema

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_tenant_id", "events", ["tenant_id"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "sites",
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("country", sa.String(), nullable=False),
        sa.Column("timezone", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("site_id"),
        sa.UniqueConstraint("tenant_id", "name", name="uq_sites_tenant_name"),
    )
    op.create_index("ix_sites_tenant_id", "sites", ["tenant_id"])
    op.create_index("ix_sites_name", "sites", ["name"])
    op.create_index("ix_sites_country", "sites", ["country"])
    op.create_index("ix_sites_created_at", "sites", ["created_at"])

    frameworks = op.create_table(
        "frameworks",
        sa.Column("framework_code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("version", sa.String(), nullable=False),
        sa.Column("jurisdiction", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("framework_code"),
    )
    op.create_index("ix_frameworks_jurisdiction", "frameworks", ["jurisdiction"])
    op.bulk_insert(
        frameworks,
        [
            {
                "framework_code": "GMDC_SG_2024",
                "name": "GMDC Singapore 2024",
                "version": "2024",
                "jurisdiction": "SG",
                "notes": "Green Mark DC preset for Singapore.",
            },
            {
                "framework_code": "GDCR_SG_2034",
                "name": "Singapore Green DC Roadmap 2034",
                "version": "2034",
                "jurisdiction": "SG",
                "notes": "Roadmap targets at 100% IT load.",
            },
            {
                "framework_code": "CORP_DEFAULT",
                "name": "Corporate Default Baseline",
                "version": "1.0",
                "jurisdiction": "GLOBAL",
                "notes": "Slightly tighter generic corporate baseline.",
            },
            {
                "framework_code": "SLA_STRICT",
                "name": "SLA Strict Premium",
                "version": "1.0",
                "jurisdiction": "GLOBAL",
                "notes": "Strict thresholds for premium or SLA sites.",
            },
        ],
    )

    op.create_table(
        "site_frameworks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("framework_code", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("precedence", sa.Integer(), nullable=False),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["framework_code"], ["frameworks.framework_code"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "site_id",
            "framework_code",
            name="uq_site_frameworks_tenant_site_framework",
        ),
    )
    op.create_index("ix_site_frameworks_tenant_id", "site_frameworks", ["tenant_id"])
    op.create_index("ix_site_frameworks_site_id", "site_frameworks", ["site_id"])
    op.create_index("ix_site_frameworks_framework_code", "site_frameworks", ["framework_code"])
    op.create_index("ix_site_frameworks_is_active", "site_frameworks", ["is_active"])
    op.create_index("ix_site_frameworks_updated_at", "site_frameworks", ["updated_at"])
    op.create_index("ix_site_frameworks_tenant_site", "site_frameworks", ["tenant_id", "site_id"])

    op.create_table(
        "threshold_sets",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("framework_code", sa.String(), nullable=False),
        sa.Column("rules", sa.JSON(), nullable=False),
        sa.Column("pue_mode", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["framework_code"], ["frameworks.framework_code"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "site_id",
            "framework_code",
            name="uq_threshold_sets_tenant_site_framework",
        ),
    )
    op.create_index("ix_threshold_sets_tenant_id", "threshold_sets", ["tenant_id"])
    op.create_index("ix_threshold_sets_site_id", "threshold_sets", ["site_id"])
    op.create_index("ix_threshold_sets_framework_code", "threshold_sets", ["framework_code"])
    op.create_index("ix_threshold_sets_updated_at", "threshold_sets", ["updated_at"])

    op.create_table(
        "measurements",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("indicator", sa.String(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("it_load_pct", sa.Integer(), nullable=True),
        sa.Column("measured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ingested_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "site_id", "indicator", "measured_at", name="uq_measurements_reading"),
    )
    op.create_index("ix_measurements_tenant_id", "measurements", ["tenant_id"])
    op.create_index("ix_measurements_site_id", "measurements", ["site_id"])
    op.create_index("ix_measurements_indicator", "measurements", ["indicator"])
    op.create_index("ix_measurements_measured_at", "measurements", ["measured_at"])
    op.create_index(
        "ix_measurements_tenant_site_measured_at",
        "measurements",
        ["tenant_id", "site_id", "measured_at"],
    )

    op.create_table(
        "alerts",
        sa.Column("alert_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("framework_code", sa.String(), nullable=False),
        sa.Column("indicator", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("comparator", sa.String(), nullable=False),
        sa.Column("threshold_value", sa.Float(), nullable=False),
        sa.Column("observed_value", sa.Float(), nullable=False),
        sa.Column("load_band", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("raised_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cleared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ok_streak", sa.Integer(), nullable=False),
        sa.Column("last_measured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("alert_id"),
    )
    op.create_index("ix_alerts_tenant_id", "alerts", ["tenant_id"])
    op.create_index("ix_alerts_site_id", "alerts", ["site_id"])
    op.create_index("ix_alerts_framework_code", "alerts", ["framework_code"])
    op.create_index("ix_alerts_indicator", "alerts", ["indicator"])
    op.create_index("ix_alerts_severity", "alerts", ["severity"])
    op.create_index("ix_alerts_status", "alerts", ["status"])
    op.create_index("ix_alerts_raised_at", "alerts", ["raised_at"])
    op.create_index("ix_alerts_cleared_at", "alerts", ["cleared_at"])
    op.create_index(
        "ix_alerts_tenant_site_framework",
        "alerts",
        ["tenant_id", "site_id", "framework_code"],
    )
    op.create_index(
        "uq_alerts_open_key",
        "alerts",
        ["tenant_id", "site_id", "framework_code", "indicator"],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
        sqlite_where=sa.text("status = 'OPEN'"),
    )


def downgrade() -> None:
    op.drop_index("uq_alerts_open_key", table_name="alerts")
    op.drop_index("ix_alerts_tenant_site_framework", table_name="alerts")
    op.drop_index("ix_alerts_cleared_at", table_name="alerts")
    op.drop_index("ix_alerts_raised_at", table_name="alerts")
    op.drop_index("ix_alerts_status", table_name="alerts")
    op.drop_index("ix_alerts_severity", table_name="alerts")
    op.drop_index("ix_alerts_indicator", table_name="alerts")
    op.drop_index("ix_alerts_framework_code", table_name="alerts")
    op.drop_index("ix_alerts_site_id", table_name="alerts")
    op.drop_index("ix_alerts_tenant_id", table_name="alerts")
    op.drop_table("alerts")

    op.drop_index("ix_measurements_tenant_site_measured_at", table_name="measurements")
    op.drop_index("ix_measurements_measured_at", table_name="measurements")
    op.drop_index("ix_measurements_indicator", table_name="measurements")
    op.drop_index("ix_measurements_site_id", table_name="measurements")
    op.drop_index("ix_measurements_tenant_id", table_name="measurements")
    op.drop_table("measurements")

    op.drop_index("ix_threshold_sets_updated_at", table_name="threshold_sets")
    op.drop_index("ix_threshold_sets_framework_code", table_name="threshold_sets")
    op.drop_index("ix_threshold_sets_site_id", table_name="threshold_sets")
    op.drop_index("ix_threshold_sets_tenant_id", table_name="threshold_sets")
    op.drop_table("threshold_sets")

    op.drop_index("ix_site_frameworks_tenant_site", table_name="site_frameworks")
    op.drop_index("ix_site_frameworks_updated_at", table_name="site_frameworks")
    op.drop_index("ix_site_frameworks_is_active", table_name="site_frameworks")
    op.drop_index("ix_site_frameworks_framework_code", table_name="site_frameworks")
    op.drop_index("ix_site_frameworks_site_id", table_name="site_frameworks")
    op.drop_index("ix_site_frameworks_tenant_id", table_name="site_frameworks")
    op.drop_table("site_frameworks")

    op.drop_index("ix_frameworks_jurisdiction", table_name="frameworks")
    op.drop_table("frameworks")

    op.drop_index("ix_sites_created_at", table_name="sites")
    op.drop_index("ix_sites_country", table_name="sites")
    op.drop_index("ix_sites_name", table_name="sites")
    op.drop_index("ix_sites_tenant_id", table_name="sites")
    op.drop_table("sites")

    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_tenant_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_events_correlation_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_tenant_id", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
