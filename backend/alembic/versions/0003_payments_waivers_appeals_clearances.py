"""payments, allocations, appeals, waivers and clearances

Revision ID: 0003_payments_waivers_appeals_clearances
Revises: 0002_periods_fees_and_fines
Create Date: 2026-10-19 09:40:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0003_payments_waivers_appeals_clearances"
down_revision = "0002_periods_fees_and_fines"
branch_labels = None
depends_on = None

EXACTLY_ONE_OBLIGATION = "(fee_assignment_id IS NULL) <> (fine_id IS NULL)"

payment_method = postgresql.ENUM(
    "cash", "gcash", "maya", "bank_transfer", name="payment_method", create_type=False
)
payment_status = postgresql.ENUM("pending", "verified", "rejected", name="payment_status", create_type=False)
waiver_status = postgresql.ENUM("pending", "approved", "rejected", name="waiver_status", create_type=False)
appeal_status = postgresql.ENUM("pending", "approved", "rejected", name="appeal_status", create_type=False)
clearance_status = postgresql.ENUM(
    "pending", "cleared", "not_cleared", "overridden", name="clearance_status", create_type=False
)

ENUMS = (payment_method, payment_status, waiver_status, appeal_status, clearance_status)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def _tenant_column() -> sa.Column:
    return sa.Column(
        "organization_id",
        sa.Integer(),
        sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
    )


def _student_column() -> sa.Column:
    return sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="RESTRICT"), nullable=False)


def _obligation_reference_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "fee_assignment_id",
            sa.Integer(),
            sa.ForeignKey("fee_assignments.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("fine_id", sa.Integer(), sa.ForeignKey("fines.id", ondelete="RESTRICT"), nullable=True),
    ]


def _decision_columns() -> list[sa.Column]:
    return [
        sa.Column("decided_by_subject_id", sa.Integer(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _create_indexes(table: str, columns: tuple[str, ...]) -> None:
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column], unique=False)


def _drop_indexes(table: str, columns: tuple[str, ...]) -> None:
    for column in reversed(columns):
        op.drop_index(f"ix_{table}_{column}", table_name=table)


PAYMENT_INDEXES = ("id", "organization_id", "student_id", "status")
ALLOCATION_INDEXES = ("id", "payment_id", "fee_assignment_id", "fine_id", "voided_at")
APPEAL_INDEXES = ("id", "organization_id", "student_id", "fee_assignment_id", "fine_id", "status")
WAIVER_INDEXES = ("id", "organization_id", "fee_assignment_id", "fine_id", "status", "origin_appeal_id")
CLEARANCE_INDEXES = ("id", "organization_id", "student_id", "period_id", "status")


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        _student_column(),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("method", payment_method, nullable=False),
        sa.Column("status", payment_status, nullable=False, server_default="pending"),
        sa.Column("proof_path", sa.String(length=255), nullable=True),
        sa.Column("recorded_by_subject_id", sa.Integer(), nullable=False),
        sa.Column("verified_by_subject_id", sa.Integer(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )
    _create_indexes("payments", PAYMENT_INDEXES)

    op.create_table(
        "payment_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False),
        *_obligation_reference_columns(),
        sa.Column("amount_allocated", sa.Numeric(10, 2), nullable=False),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(EXACTLY_ONE_OBLIGATION, name="ck_payment_allocations_one_obligation"),
        sa.CheckConstraint("amount_allocated > 0", name="ck_payment_allocations_amount_positive"),
    )
    _create_indexes("payment_allocations", ALLOCATION_INDEXES)

    op.create_table(
        "appeals",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        _student_column(),
        *_obligation_reference_columns(),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", appeal_status, nullable=False, server_default="pending"),
        sa.Column("filed_by_subject_id", sa.Integer(), nullable=False),
        *_decision_columns(),
        sa.Column("decision_note", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(EXACTLY_ONE_OBLIGATION, name="ck_appeals_one_obligation"),
    )
    _create_indexes("appeals", APPEAL_INDEXES)

    op.create_table(
        "waivers",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        *_obligation_reference_columns(),
        sa.Column("status", waiver_status, nullable=False, server_default="pending"),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("requested_by_subject_id", sa.Integer(), nullable=False),
        *_decision_columns(),
        sa.Column("rejection_reason", sa.String(length=255), nullable=True),
        sa.Column("origin_appeal_id", sa.Integer(), sa.ForeignKey("appeals.id", ondelete="RESTRICT"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(EXACTLY_ONE_OBLIGATION, name="ck_waivers_one_obligation"),
    )
    _create_indexes("waivers", WAIVER_INDEXES)

    op.create_table(
        "clearances",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        _student_column(),
        sa.Column(
            "period_id",
            sa.Integer(),
            sa.ForeignKey("clearance_periods.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", clearance_status, nullable=False, server_default="pending"),
        sa.Column("override_reason", sa.String(length=255), nullable=True),
        sa.Column("overridden_by_subject_id", sa.Integer(), nullable=True),
        sa.Column("overridden_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("student_id", "organization_id", "period_id", name="uq_clearance_student_period"),
    )
    _create_indexes("clearances", CLEARANCE_INDEXES)


def downgrade() -> None:
    _drop_indexes("clearances", CLEARANCE_INDEXES)
    op.drop_table("clearances")
    _drop_indexes("waivers", WAIVER_INDEXES)
    op.drop_table("waivers")
    _drop_indexes("appeals", APPEAL_INDEXES)
    op.drop_table("appeals")
    _drop_indexes("payment_allocations", ALLOCATION_INDEXES)
    op.drop_table("payment_allocations")
    _drop_indexes("payments", PAYMENT_INDEXES)
    op.drop_table("payments")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
