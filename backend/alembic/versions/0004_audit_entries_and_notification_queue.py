"""append-only audit entries and notification outbox

Revision ID: 0004_audit_entries_and_notification_queue
Revises: 0003_payments_waivers_appeals_clearances
Create Date: 2026-10-19 10:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0004_audit_entries_and_notification_queue"
down_revision = "0003_payments_waivers_appeals_clearances"
branch_labels = None
depends_on = None

notification_status = postgresql.ENUM(
    "queued", "dispatched", "failed", name="notification_status", create_type=False
)

AUDIT_INDEXES = ("id", "entity_kind", "entity_id", "action", "performed_by_subject_id", "organization_id", "created_at")


def upgrade() -> None:
    notification_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_kind", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("before_snapshot", sa.JSON(), nullable=True),
        sa.Column("after_snapshot", sa.JSON(), nullable=True),
        sa.Column("performed_by_subject_id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=True),
        sa.Column("access_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    for column in AUDIT_INDEXES:
        op.create_index(f"ix_audit_entries_{column}", "audit_entries", [column], unique=False)

    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_entries_append_only()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_entries is append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_entries_no_update_or_delete
        BEFORE UPDATE OR DELETE ON audit_entries
        FOR EACH ROW EXECUTE FUNCTION audit_entries_append_only()
        """
    )
    op.execute("REVOKE UPDATE, DELETE, TRUNCATE ON audit_entries FROM PUBLIC")

    op.create_table(
        "notification_queue",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), nullable=True),
        sa.Column("recipient_ref", sa.String(length=255), nullable=False),
        sa.Column("notification_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", notification_status, nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.String(length=255), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    for column in ("id", "organization_id", "notification_type", "status"):
        op.create_index(f"ix_notification_queue_{column}", "notification_queue", [column], unique=False)


def downgrade() -> None:
    for column in ("status", "notification_type", "organization_id", "id"):
        op.drop_index(f"ix_notification_queue_{column}", table_name="notification_queue")
    op.drop_table("notification_queue")

    op.execute("DROP TRIGGER IF EXISTS audit_entries_no_update_or_delete ON audit_entries")
    op.execute("DROP FUNCTION IF EXISTS audit_entries_append_only()")
    for column in reversed(AUDIT_INDEXES):
        op.drop_index(f"ix_audit_entries_{column}", table_name="audit_entries")
    op.drop_table("audit_entries")

    notification_status.drop(op.get_bind(), checkfirst=True)
