from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clearledger.domain.ledger_enums import (
    AppealStatus,
    ClearanceStatus,
    NotificationStatus,
    PaymentMethod,
    PaymentStatus,
    WaiverStatus,
)
from clearledger.domain.obligation_status import ObligationStatus
from clearledger.domain.organization_enums import OrganizationStatus, OrganizationTier, StudentStatus
from clearledger.infrastructure.db.session import Base

EXACTLY_ONE_OBLIGATION = "(fee_assignment_id IS NULL) <> (fine_id IS NULL)"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class TenantScopedMixin:
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True
    )


class ObligationMixin(TenantScopedMixin):
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("clearance_periods.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[ObligationStatus] = mapped_column(
        Enum(ObligationStatus, name="obligation_status"),
        nullable=False,
        default=ObligationStatus.pending,
        index=True,
    )


class ObligationReferenceMixin:
    fee_assignment_id: Mapped[int | None] = mapped_column(
        ForeignKey("fee_assignments.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    fine_id: Mapped[int | None] = mapped_column(ForeignKey("fines.id", ondelete="RESTRICT"), nullable=True, index=True)


class OrganizationInvite(TimestampMixin, Base):
    __tablename__ = "organization_invites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    organization_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_tier: Mapped[OrganizationTier] = mapped_column(
        Enum(OrganizationTier, name="organization_tier"), nullable=False
    )
    created_by_subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Organization(TimestampMixin, Base):
    __tablename__ = "organizations"
    __table_args__ = (CheckConstraint("student_count >= 0", name="ck_organizations_student_count_non_negative"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str] = mapped_column(String(255), nullable=False)
    tier: Mapped[OrganizationTier] = mapped_column(
        Enum(OrganizationTier, name="organization_tier"), nullable=False, default=OrganizationTier.basic
    )
    status: Mapped[OrganizationStatus] = mapped_column(
        Enum(OrganizationStatus, name="organization_status"),
        nullable=False,
        default=OrganizationStatus.active,
        index=True,
    )
    student_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invite_id: Mapped[int | None] = mapped_column(
        ForeignKey("organization_invites.id", ondelete="RESTRICT"), nullable=True, unique=True
    )

    invite: Mapped[OrganizationInvite | None] = relationship("OrganizationInvite")
    students: Mapped[list["Student"]] = relationship("Student", back_populates="organization")


class Student(TenantScopedMixin, TimestampMixin, Base):
    __tablename__ = "students"
    __table_args__ = (UniqueConstraint("organization_id", "student_number", name="uq_student_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    subject_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    student_number: Mapped[str] = mapped_column(String(50), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[StudentStatus] = mapped_column(
        Enum(StudentStatus, name="student_status"), nullable=False, default=StudentStatus.active, index=True
    )

    organization: Mapped[Organization] = relationship("Organization", back_populates="students")


class ClearancePeriod(TenantScopedMixin, TimestampMixin, Base):
    __tablename__ = "clearance_periods"
    __table_args__ = (CheckConstraint("ends_on >= starts_on", name="ck_clearance_periods_date_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    starts_on: Mapped[date] = mapped_column(Date, nullable=False)
    ends_on: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class FeeType(TenantScopedMixin, TimestampMixin, Base):
    __tablename__ = "fee_types"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_fee_types_amount_positive"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("clearance_periods.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    required_for_clearance: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    period: Mapped[ClearancePeriod] = relationship("ClearancePeriod")


class FeeAssignment(ObligationMixin, TimestampMixin, Base):
    __tablename__ = "fee_assignments"
    __table_args__ = (
        UniqueConstraint("student_id", "fee_type_id", name="uq_fee_assignment_student_fee_type"),
        CheckConstraint("amount > 0", name="ck_fee_assignments_amount_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    fee_type_id: Mapped[int] = mapped_column(
        ForeignKey("fee_types.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    student: Mapped[Student] = relationship("Student")
    fee_type: Mapped[FeeType] = relationship("FeeType")


class Fine(ObligationMixin, TimestampMixin, Base):
    __tablename__ = "fines"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_fines_amount_positive"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    issued_by_subject_id: Mapped[int] = mapped_column(Integer, nullable=False)

    student: Mapped[Student] = relationship("Student")


class Payment(TenantScopedMixin, TimestampMixin, Base):
    __tablename__ = "payments"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payments_amount_positive"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"), nullable=False, default=PaymentStatus.pending, index=True
    )
    proof_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recorded_by_subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    verified_by_subject_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    student: Mapped[Student] = relationship("Student")
    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        "PaymentAllocation", back_populates="payment", order_by="PaymentAllocation.id"
    )


class PaymentAllocation(ObligationReferenceMixin, TimestampMixin, Base):
    __tablename__ = "payment_allocations"
    __table_args__ = (
        CheckConstraint(EXACTLY_ONE_OBLIGATION, name="ck_payment_allocations_one_obligation"),
        CheckConstraint("amount_allocated > 0", name="ck_payment_allocations_amount_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount_allocated: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    payment: Mapped[Payment] = relationship("Payment", back_populates="allocations")


class Appeal(ObligationReferenceMixin, TenantScopedMixin, TimestampMixin, Base):
    __tablename__ = "appeals"
    __table_args__ = (CheckConstraint(EXACTLY_ONE_OBLIGATION, name="ck_appeals_one_obligation"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[AppealStatus] = mapped_column(
        Enum(AppealStatus, name="appeal_status"), nullable=False, default=AppealStatus.pending, index=True
    )
    filed_by_subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    decided_by_subject_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_note: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Waiver(ObligationReferenceMixin, TenantScopedMixin, TimestampMixin, Base):
    __tablename__ = "waivers"
    __table_args__ = (CheckConstraint(EXACTLY_ONE_OBLIGATION, name="ck_waivers_one_obligation"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    status: Mapped[WaiverStatus] = mapped_column(
        Enum(WaiverStatus, name="waiver_status"), nullable=False, default=WaiverStatus.pending, index=True
    )
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    requested_by_subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    decided_by_subject_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    origin_appeal_id: Mapped[int | None] = mapped_column(
        ForeignKey("appeals.id", ondelete="RESTRICT"), nullable=True, index=True
    )


class Clearance(TenantScopedMixin, TimestampMixin, Base):
    __tablename__ = "clearances"
    __table_args__ = (
        UniqueConstraint("student_id", "organization_id", "period_id", name="uq_clearance_student_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("clearance_periods.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[ClearanceStatus] = mapped_column(
        Enum(ClearanceStatus, name="clearance_status"), nullable=False, default=ClearanceStatus.pending, index=True
    )
    override_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    overridden_by_subject_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overridden_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditEntry(Base):
    __tablename__ = "audit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    entity_kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    performed_by_subject_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    organization_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    access_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


class NotificationQueueItem(TimestampMixin, Base):
    __tablename__ = "notification_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    organization_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    recipient_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, name="notification_status"),
        nullable=False,
        default=NotificationStatus.queued,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


@event.listens_for(AuditEntry, "before_update")
def _refuse_audit_update(_mapper, _connection, target: AuditEntry) -> None:
    raise PermissionError(f"audit entry {target.id} is append-only")


@event.listens_for(AuditEntry, "before_delete")
def _refuse_audit_delete(_mapper, _connection, target: AuditEntry) -> None:
    raise PermissionError(f"audit entry {target.id} is append-only")
