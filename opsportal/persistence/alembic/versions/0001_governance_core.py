"""governance core

Revision ID: 0001_governance_core
Revises:
Create Date: 2026-10-12 09:30:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_governance_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenant_types",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("name", name="uq_tenant_types_name"),
    )

    op.create_table(
        "teams",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("tenant_type_id", sa.String(), sa.ForeignKey("tenant_types.id"), nullable=False),
        sa.Column("use_vendors", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_teams_slug", "teams", ["slug"], unique=True)
    op.create_index("ix_teams_tenant_type_id", "teams", ["tenant_type_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        # Store only the hashed token to avoid plaintext credentials at rest.
        sa.Column("token_hash", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])
    op.create_index("ix_user_sessions_token_hash", "user_sessions", ["token_hash"], unique=True)

    op.create_table(
        "team_roles",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("team_id", "name", name="uq_team_roles_team_name"),
    )
    op.create_index("ix_team_roles_team_id", "team_roles", ["team_id"])

    op.create_table(
        "role_permissions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("team_role_id", sa.String(), sa.ForeignKey("team_roles.id"), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        # Bitmask of CREATE=1, READ=2, UPDATE=4, DELETE=8.
        sa.Column("actions", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("team_role_id", "resource", name="uq_role_permissions_role_resource"),
    )
    op.create_index("ix_role_permissions_team_role_id", "role_permissions", ["team_role_id"])

    op.create_table(
        "team_members",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role_id", sa.String(), sa.ForeignKey("team_roles.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
    )
    op.create_index("ix_team_members_team_id", "team_members", ["team_id"])
    op.create_index("ix_team_members_user_id", "team_members", ["user_id"])
    op.create_index("ix_team_members_role_id", "team_members", ["role_id"])

    op.create_table(
        "locations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_locations_team_id", "locations", ["team_id"])

    op.create_table(
        "licenses",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("renewal_period", sa.String(), nullable=False),
        sa.Column("max_users", sa.Integer(), nullable=True),
        sa.Column("max_locations", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("features", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_licenses_team_id", "licenses", ["team_id"])

    op.create_table(
        "purchased_licenses",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("license_id", sa.String(), sa.ForeignKey("licenses.id"), nullable=False),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_renewal_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_renewal_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
    )
    op.create_index("ix_purchased_licenses_team_id", "purchased_licenses", ["team_id"])
    op.create_index("ix_purchased_licenses_license_id", "purchased_licenses", ["license_id"])
    op.create_index(
        "ix_purchased_licenses_team_license", "purchased_licenses", ["team_id", "license_id"]
    )

    op.create_table(
        "user_licenses",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "purchased_license_id",
            sa.String(),
            sa.ForeignKey("purchased_licenses.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_user_licenses_purchased_license_id", "user_licenses", ["purchased_license_id"])
    op.create_index("ix_user_licenses_user_id", "user_licenses", ["user_id"])
    op.create_index(
        "ix_user_licenses_purchased_user", "user_licenses", ["purchased_license_id", "user_id"]
    )

    op.create_table(
        "location_licenses",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "purchased_license_id",
            sa.String(),
            sa.ForeignKey("purchased_licenses.id"),
            nullable=False,
        ),
        sa.Column("location_id", sa.String(), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index(
        "ix_location_licenses_purchased_license_id", "location_licenses", ["purchased_license_id"]
    )
    op.create_index("ix_location_licenses_location_id", "location_licenses", ["location_id"])
    op.create_index(
        "ix_location_licenses_purchased_location",
        "location_licenses",
        ["purchased_license_id", "location_id"],
    )

    op.create_table(
        "team_compliance_statuses",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("icon", sa.String(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("team_id", "code", name="uq_team_compliance_statuses_code"),
    )
    op.create_index("ix_team_compliance_statuses_team_id", "team_compliance_statuses", ["team_id"])
    # At most one default per team, even when two writers race.
    op.create_index(
        "uq_team_compliance_statuses_default",
        "team_compliance_statuses",
        ["team_id"],
        unique=True,
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "compliance_alerts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("team_id", sa.String(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column(
            "status_id",
            sa.String(),
            sa.ForeignKey("team_compliance_statuses.id"),
            nullable=True,
        ),
        sa.Column("severity", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("comments", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_compliance_alerts_team_id", "compliance_alerts", ["team_id"])
    op.create_index("ix_compliance_alerts_status_id", "compliance_alerts", ["status_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("team_id", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("error_code", sa.String(), nullable=True),
    )
    op.create_index("ix_audit_events_team_occurred", "audit_events", ["team_id", "occurred_at"])
    op.create_index("ix_audit_events_type_occurred", "audit_events", ["event_type", "occurred_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_type_occurred", table_name="audit_events")
    op.drop_index("ix_audit_events_team_occurred", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("ix_compliance_alerts_status_id", table_name="compliance_alerts")
    op.drop_index("ix_compliance_alerts_team_id", table_name="compliance_alerts")
    op.drop_table("compliance_alerts")

    op.drop_index("uq_team_compliance_statuses_default", table_name="team_compliance_statuses")
    op.drop_index("ix_team_compliance_statuses_team_id", table_name="team_compliance_statuses")
    op.drop_table("team_compliance_statuses")

    op.drop_index("ix_location_licenses_purchased_location", table_name="location_licenses")
    op.drop_index("ix_location_licenses_location_id", table_name="location_licenses")
    op.drop_index("ix_location_licenses_purchased_license_id", table_name="location_licenses")
    op.drop_table("location_licenses")

    op.drop_index("ix_user_licenses_purchased_user", table_name="user_licenses")
    op.drop_index("ix_user_licenses_user_id", table_name="user_licenses")
    op.drop_index("ix_user_licenses_purchased_license_id", table_name="user_licenses")
    op.drop_table("user_licenses")

    op.drop_index("ix_purchased_licenses_team_license", table_name="purchased_licenses")
    op.drop_index("ix_purchased_licenses_license_id", table_name="purchased_licenses")
    op.drop_index("ix_purchased_licenses_team_id", table_name="purchased_licenses")
    op.drop_table("purchased_licenses")

    op.drop_index("ix_licenses_team_id", table_name="licenses")
    op.drop_table("licenses")

    op.drop_index("ix_locations_team_id", table_name="locations")
    op.drop_table("locations")

    op.drop_index("ix_team_members_role_id", table_name="team_members")
    op.drop_index("ix_team_members_user_id", table_name="team_members")
    op.drop_index("ix_team_members_team_id", table_name="team_members")
    op.drop_table("team_members")

    op.drop_index("ix_role_permissions_team_role_id", table_name="role_permissions")
    op.drop_table("role_permissions")

    op.drop_index("ix_team_roles_team_id", table_name="team_roles")
    op.drop_table("team_roles")

    op.drop_index("ix_user_sessions_token_hash", table_name="user_sessions")
    op.drop_index("ix_user_sessions_user_id", table_name="user_sessions")
    op.drop_table("user_sessions")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    op.drop_index("ix_teams_tenant_type_id", table_name="teams")
    op.drop_index("ix_teams_slug", table_name="teams")
    op.drop_table("teams")

    op.drop_table("tenant_types")
