"""initial membership schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    if "membership_plans" not in existing_tables:
        op.create_table(
            "membership_plans",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(64), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("currency", sa.String(8), nullable=False, server_default="brl"),
            sa.Column("min_experience_years", sa.Integer(), nullable=True),
            sa.Column("max_experience_years", sa.Integer(), nullable=True),
            sa.Column("requires_payment", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("billing_period", sa.String(16), nullable=False, server_default="yearly"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("is_available_for_registration", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("features", sa.JSON(), nullable=True),
            sa.Column("rules", sa.Text(), nullable=True),
            sa.Column("billing_product_id", sa.String(128), nullable=True),
            sa.Column("billing_price_id", sa.String(128), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("name", name="uq_membership_plans_name"),
        )
        op.create_index(
            "idx_membership_plans_registration",
            "membership_plans",
            ["is_active", "is_available_for_registration"],
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("username", sa.String(64), nullable=False),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("full_name", sa.String(255), nullable=False, server_default=""),
            sa.Column("phone", sa.String(32), nullable=True),
            sa.Column("state", sa.String(8), nullable=True),
            sa.Column("city", sa.String(128), nullable=True),
            sa.Column("area", sa.String(128), nullable=True),
            sa.Column("role", sa.String(16), nullable=False, server_default="member"),
            sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("plan_name", sa.String(64), nullable=True),
            sa.Column("current_plan_id", sa.Integer(), nullable=True),
            sa.Column("subscription_status", sa.String(32), nullable=True),
            sa.Column("billing_customer_id", sa.String(128), nullable=True),
            sa.Column("last_login_at", sa.DateTime(timezone=False), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["current_plan_id"], ["membership_plans.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("email", name="uq_users_email"),
            sa.UniqueConstraint("username", name="uq_users_username"),
        )
        op.create_index("idx_users_role", "users", ["role"])
        op.create_index("idx_users_state_city", "users", ["state", "city"])

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )
        op.create_index("idx_audit_events_action", "audit_events", ["action"])

    if "member_applications" not in existing_tables:
        op.create_table(
            "member_applications",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("plan_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
            sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("experience_years", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_student", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("student_proof", sa.String(512), nullable=True),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("billing_customer_id", sa.String(128), nullable=True),
            sa.Column("billing_subscription_id", sa.String(128), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=False), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["plan_id"], ["membership_plans.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_member_applications_status", "member_applications", ["status"])
        op.create_index("idx_member_applications_user", "member_applications", ["user_id"])
        op.create_index("idx_member_applications_subscription", "member_applications", ["billing_subscription_id"])

    if "application_documents" not in existing_tables:
        op.create_table(
            "application_documents",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("type", sa.String(16), nullable=False),
            sa.Column("file_path", sa.String(512), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("mime_type", sa.String(128), nullable=True),
            sa.Column("uploaded_by_user_id", sa.Integer(), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.ForeignKeyConstraint(["application_id"], ["member_applications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["uploaded_by_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_application_documents_application", "application_documents", ["application_id"])
        op.create_index("idx_application_documents_type", "application_documents", ["type"])

    if "application_appeals" not in existing_tables:
        op.create_table(
            "application_appeals",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(16), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("admin_response", sa.Text(), nullable=True),
            sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.ForeignKeyConstraint(["application_id"], ["member_applications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_application_appeals_application", "application_appeals", ["application_id"])
        op.create_index("idx_application_appeals_status", "application_appeals", ["status"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(64), nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("related_entity_type", sa.String(64), nullable=True),
            sa.Column("related_entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("read_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        )
        op.create_index("idx_notifications_user_read", "notifications", ["user_id", "is_read"])


def downgrade() -> None:
    op.drop_index("idx_notifications_user_read", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("idx_application_appeals_status", table_name="application_appeals")
    op.drop_index("idx_application_appeals_application", table_name="application_appeals")
    op.drop_table("application_appeals")

    op.drop_index("idx_application_documents_type", table_name="application_documents")
    op.drop_index("idx_application_documents_application", table_name="application_documents")
    op.drop_table("application_documents")

    op.drop_index("idx_member_applications_subscription", table_name="member_applications")
    op.drop_index("idx_member_applications_user", table_name="member_applications")
    op.drop_index("idx_member_applications_status", table_name="member_applications")
    op.drop_table("member_applications")

    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("idx_users_state_city", table_name="users")
    op.drop_index("idx_users_role", table_name="users")
    op.drop_table("users")

    op.drop_index("idx_membership_plans_registration", table_name="membership_plans")
    op.drop_table("membership_plans")
