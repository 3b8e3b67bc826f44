"""organizations, invites and students

Revision ID: 0001_organizations_and_students
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_organizations_and_students"
down_revision = None
branch_labels = None
depends_on = None

organization_tier = postgresql.ENUM("basic", "plus", "premium", name="organization_tier", create_type=False)
organization_status = postgresql.ENUM(
    "active", "suspended", "inactive", name="organization_status", create_type=False
)
student_status = postgresql.ENUM("active", "inactive", name="student_status", create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    organization_tier.create(bind, checkfirst=True)
    organization_status.create(bind, checkfirst=True)
    student_status.create(bind, checkfirst=True)

    op.create_table(
        "organization_invites",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("organization_name", sa.String(length=255), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=False),
        sa.Column("assigned_tier", organization_tier, nullable=False),
        sa.Column("created_by_subject_id", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_organization_invites_id", "organization_invites", ["id"], unique=False)
    op.create_index("ix_organization_invites_token", "organization_invites", ["token"], unique=True)

    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=False),
        sa.Column("tier", organization_tier, nullable=False, server_default="basic"),
        sa.Column("status", organization_status, nullable=False, server_default="active"),
        sa.Column("student_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "invite_id",
            sa.Integer(),
            sa.ForeignKey("organization_invites.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("invite_id", name="uq_organizations_invite_id"),
        sa.CheckConstraint("student_count >= 0", name="ck_organizations_student_count_non_negative"),
    )
    op.create_index("ix_organizations_id", "organizations", ["id"], unique=False)
    op.create_index("ix_organizations_status", "organizations", ["status"], unique=False)

    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Integer(),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("subject_id", sa.Integer(), nullable=True),
        sa.Column("student_number", sa.String(length=50), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("status", student_status, nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("organization_id", "student_number", name="uq_student_number"),
    )
    op.create_index("ix_students_id", "students", ["id"], unique=False)
    op.create_index("ix_students_organization_id", "students", ["organization_id"], unique=False)
    op.create_index("ix_students_subject_id", "students", ["subject_id"], unique=False)
    op.create_index("ix_students_status", "students", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_students_status", table_name="students")
    op.drop_index("ix_students_subject_id", table_name="students")
    op.drop_index("ix_students_organization_id", table_name="students")
    op.drop_index("ix_students_id", table_name="students")
    op.drop_table("students")

    op.drop_index("ix_organizations_status", table_name="organizations")
    op.drop_index("ix_organizations_id", table_name="organizations")
    op.drop_table("organizations")

    op.drop_index("ix_organization_invites_token", table_name="organization_invites")
    op.drop_index("ix_organization_invites_id", table_name="organization_invites")
    op.drop_table("organization_invites")

    bind = op.get_bind()
    student_status.drop(bind, checkfirst=True)
    organization_status.drop(bind, checkfirst=True)
    organization_tier.drop(bind, checkfirst=True)
