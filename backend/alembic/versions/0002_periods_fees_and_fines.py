"""clearance periods, fee types, fee assignments and fines

Revision ID: 0002_periods_fees_and_fines
Revises: 0001_organizations_and_students
Create Date: 2026-10-19 09:20:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0002_periods_fees_and_fines"
down_revision = "0001_organizations_and_students"
branch_labels = None
depends_on = None

obligation_status = postgresql.ENUM(
    "pending", "partially_paid", "paid", "waived", "appealed", name="obligation_status", create_type=False
)


def _tenant_column() -> sa.Column:
    return sa.Column(
        "organization_id",
        sa.Integer(),
        sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def _obligation_columns() -> list[sa.Column]:
    return [
        _tenant_column(),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "period_id",
            sa.Integer(),
            sa.ForeignKey("clearance_periods.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", obligation_status, nullable=False, server_default="pending"),
    ]


def _index_obligation_table(table: str) -> None:
    op.create_index(f"ix_{table}_id", table, ["id"], unique=False)
    op.create_index(f"ix_{table}_organization_id", table, ["organization_id"], unique=False)
    op.create_index(f"ix_{table}_student_id", table, ["student_id"], unique=False)
    op.create_index(f"ix_{table}_period_id", table, ["period_id"], unique=False)
    op.create_index(f"ix_{table}_status", table, ["status"], unique=False)


def _drop_obligation_indexes(table: str) -> None:
    for column in ("status", "period_id", "student_id", "organization_id", "id"):
        op.drop_index(f"ix_{table}_{column}", table_name=table)


def upgrade() -> None:
    obligation_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "clearance_periods",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("starts_on", sa.Date(), nullable=False),
        sa.Column("ends_on", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("ends_on >= starts_on", name="ck_clearance_periods_date_order"),
    )
    op.create_index("ix_clearance_periods_id", "clearance_periods", ["id"], unique=False)
    op.create_index("ix_clearance_periods_organization_id", "clearance_periods", ["organization_id"], unique=False)

    op.create_table(
        "fee_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column(
            "period_id",
            sa.Integer(),
            sa.ForeignKey("clearance_periods.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("required_for_clearance", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_fee_types_amount_positive"),
    )
    op.create_index("ix_fee_types_id", "fee_types", ["id"], unique=False)
    op.create_index("ix_fee_types_organization_id", "fee_types", ["organization_id"], unique=False)
    op.create_index("ix_fee_types_period_id", "fee_types", ["period_id"], unique=False)

    op.create_table(
        "fee_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        *_obligation_columns(),
        sa.Column("fee_type_id", sa.Integer(), sa.ForeignKey("fee_types.id", ondelete="RESTRICT"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("student_id", "fee_type_id", name="uq_fee_assignment_student_fee_type"),
        sa.CheckConstraint("amount > 0", name="ck_fee_assignments_amount_positive"),
    )
    _index_obligation_table("fee_assignments")
    op.create_index("ix_fee_assignments_fee_type_id", "fee_assignments", ["fee_type_id"], unique=False)

    op.create_table(
        "fines",
        sa.Column("id", sa.Integer(), primary_key=True),
        *_obligation_columns(),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("issued_by_subject_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_fines_amount_positive"),
    )
    _index_obligation_table("fines")


def downgrade() -> None:
    _drop_obligation_indexes("fines")
    op.drop_table("fines")

    op.drop_index("ix_fee_assignments_fee_type_id", table_name="fee_assignments")
    _drop_obligation_indexes("fee_assignments")
    op.drop_table("fee_assignments")

    op.drop_index("ix_fee_types_period_id", table_name="fee_types")
    op.drop_index("ix_fee_types_organization_id", table_name="fee_types")
    op.drop_index("ix_fee_types_id", table_name="fee_types")
    op.drop_table("fee_types")

    op.drop_index("ix_clearance_periods_organization_id", table_name="clearance_periods")
    op.drop_index("ix_clearance_periods_id", table_name="clearance_periods")
    op.drop_table("clearance_periods")

    obligation_status.drop(op.get_bind(), checkfirst=True)
