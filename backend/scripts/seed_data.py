from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from clearledger.application.services.clearance_service import refresh_clearance
from clearledger.domain.ledger_enums import PaymentMethod, PaymentStatus
from clearledger.domain.obligation_status import ObligationStatus, next_obligation_status
from clearledger.domain.organization_enums import OrganizationStatus, OrganizationTier, StudentStatus
from clearledger.infrastructure.db.models import (
    ClearancePeriod,
    FeeAssignment,
    FeeType,
    Fine,
    Organization,
    Payment,
    PaymentAllocation,
    Student,
)
from clearledger.infrastructure.db.session import SYSTEM_RLS_ROLE, SessionLocal, apply_rls_settings

SEED_SUBJECT_ID = 0
PERIOD_STARTS_ON = date(2026, 8, 1)
PERIOD_ENDS_ON = date(2026, 12, 18)


def create_organization_if_missing(db: Session, name: str, contact_email: str, tier: OrganizationTier) -> Organization:
    organization = db.execute(select(Organization).where(Organization.name == name)).scalar_one_or_none()
    if organization is not None:
        return organization

    organization = Organization(
        name=name,
        contact_email=contact_email,
        tier=tier,
        status=OrganizationStatus.active,
        student_count=0,
    )
    db.add(organization)
    db.flush()
    return organization


def create_period_if_missing(db: Session, *, organization_id: int, name: str) -> ClearancePeriod:
    period = db.execute(
        select(ClearancePeriod).where(ClearancePeriod.organization_id == organization_id, ClearancePeriod.name == name)
    ).scalar_one_or_none()
    if period is not None:
        return period

    period = ClearancePeriod(
        organization_id=organization_id,
        name=name,
        starts_on=PERIOD_STARTS_ON,
        ends_on=PERIOD_ENDS_ON,
        is_active=True,
    )
    db.add(period)
    db.flush()
    return period


def create_student_if_missing(
    db: Session,
    *,
    organization_id: int,
    student_number: str,
    first_name: str,
    last_name: str,
    subject_id: int,
) -> Student:
    student = db.execute(
        select(Student).where(Student.organization_id == organization_id, Student.student_number == student_number)
    ).scalar_one_or_none()
    if student is not None:
        return student

    student = Student(
        organization_id=organization_id,
        student_number=student_number,
        first_name=first_name,
        last_name=last_name,
        subject_id=subject_id,
        status=StudentStatus.active,
    )
    db.add(student)
    db.flush()
    return student


def create_fee_type_if_missing(
    db: Session,
    *,
    organization_id: int,
    period_id: int,
    name: str,
    amount: Decimal,
    required_for_clearance: bool = True,
) -> FeeType:
    fee_type = db.execute(
        select(FeeType).where(
            FeeType.organization_id == organization_id,
            FeeType.period_id == period_id,
            FeeType.name == name,
        )
    ).scalar_one_or_none()
    if fee_type is not None:
        return fee_type

    fee_type = FeeType(
        organization_id=organization_id,
        period_id=period_id,
        name=name,
        amount=amount,
        required_for_clearance=required_for_clearance,
    )
    db.add(fee_type)
    db.flush()
    return fee_type


def assign_fee_if_missing(db: Session, *, student: Student, fee_type: FeeType) -> FeeAssignment:
    assignment = db.execute(
        select(FeeAssignment).where(
            FeeAssignment.student_id == student.id,
            FeeAssignment.fee_type_id == fee_type.id,
        )
    ).scalar_one_or_none()
    if assignment is not None:
        return assignment

    assignment = FeeAssignment(
        organization_id=student.organization_id,
        student_id=student.id,
        period_id=fee_type.period_id,
        fee_type_id=fee_type.id,
        amount=fee_type.amount,
        status=ObligationStatus.pending,
    )
    db.add(assignment)
    db.flush()
    return assignment


def issue_fine_if_missing(db: Session, *, student: Student, period_id: int, reason: str, amount: Decimal) -> Fine:
    fine = db.execute(
        select(Fine).where(Fine.student_id == student.id, Fine.period_id == period_id, Fine.reason == reason)
    ).scalar_one_or_none()
    if fine is not None:
        return fine

    fine = Fine(
        organization_id=student.organization_id,
        student_id=student.id,
        period_id=period_id,
        reason=reason,
        amount=amount,
        status=ObligationStatus.pending,
        issued_by_subject_id=SEED_SUBJECT_ID,
    )
    db.add(fine)
    db.flush()
    return fine


def record_verified_payment_if_missing(db: Session, *, assignment: FeeAssignment, amount: Decimal) -> Payment:
    existing = db.execute(
        select(Payment)
        .join(PaymentAllocation, PaymentAllocation.payment_id == Payment.id)
        .where(PaymentAllocation.fee_assignment_id == assignment.id, Payment.amount == amount)
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    payment = Payment(
        organization_id=assignment.organization_id,
        student_id=assignment.student_id,
        amount=amount,
        method=PaymentMethod.cash,
        status=PaymentStatus.verified,
        recorded_by_subject_id=SEED_SUBJECT_ID,
        verified_by_subject_id=SEED_SUBJECT_ID,
        verified_at=datetime.now(timezone.utc),
    )
    db.add(payment)
    db.flush()
    db.add(PaymentAllocation(payment_id=payment.id, fee_assignment_id=assignment.id, amount_allocated=amount))
    db.flush()

    verified_total = db.execute(
        select(func.coalesce(func.sum(PaymentAllocation.amount_allocated), 0))
        .join(Payment, Payment.id == PaymentAllocation.payment_id)
        .where(
            PaymentAllocation.fee_assignment_id == assignment.id,
            PaymentAllocation.voided_at.is_(None),
            Payment.status == PaymentStatus.verified,
        )
    ).scalar_one()
    assignment.status = next_obligation_status(assignment.status, assignment.amount, Decimal(verified_total))
    return payment


def sync_student_count(db: Session, organization: Organization) -> None:
    organization.student_count = db.execute(
        select(func.count(Student.id)).where(
            Student.organization_id == organization.id,
            Student.status == StudentStatus.active,
        )
    ).scalar_one()


def main() -> None:
    db = SessionLocal()
    try:
        apply_rls_settings(db, subject_id=SEED_SUBJECT_ID, organization_id=None, role=SYSTEM_RLS_ROLE)

        robotics = create_organization_if_missing(
            db, "North Robotics Club", "board@northrobotics.example.com", OrganizationTier.premium
        )
        debate = create_organization_if_missing(
            db, "South Debate Society", "officers@southdebate.example.com", OrganizationTier.basic
        )
        robotics_period = create_period_if_missing(db, organization_id=robotics.id, name="AY 2026 S1")
        debate_period = create_period_if_missing(db, organization_id=debate.id, name="AY 2026 S1")

        alice, bob, carol = (
            create_student_if_missing(
                db,
                organization_id=organization.id,
                student_number=student_number,
                first_name=first_name,
                last_name=last_name,
                subject_id=subject_id,
            )
            for organization, student_number, first_name, last_name, subject_id in (
                (robotics, "N-001", "Alice", "Santos", 501),
                (robotics, "N-002", "Bob", "Reyes", 502),
                (debate, "S-001", "Carol", "Cruz", 601),
            )
        )

        membership = create_fee_type_if_missing(
            db,
            organization_id=robotics.id,
            period_id=robotics_period.id,
            name="Membership fee",
            amount=Decimal("200.00"),
        )
        create_fee_type_if_missing(
            db,
            organization_id=robotics.id,
            period_id=robotics_period.id,
            name="Club shirt",
            amount=Decimal("15.00"),
            required_for_clearance=False,
        )
        debate_dues = create_fee_type_if_missing(
            db, organization_id=debate.id, period_id=debate_period.id, name="Tournament dues", amount=Decimal("150.00")
        )

        alice_membership = assign_fee_if_missing(db, student=alice, fee_type=membership)
        bob_membership = assign_fee_if_missing(db, student=bob, fee_type=membership)
        carol_dues = assign_fee_if_missing(db, student=carol, fee_type=debate_dues)
        issue_fine_if_missing(
            db, student=bob, period_id=robotics_period.id, reason="Missed general assembly", amount=Decimal("50.00")
        )

        record_verified_payment_if_missing(db, assignment=alice_membership, amount=Decimal("200.00"))
        record_verified_payment_if_missing(db, assignment=bob_membership, amount=Decimal("100.00"))
        record_verified_payment_if_missing(db, assignment=carol_dues, amount=Decimal("150.00"))

        for organization in (robotics, debate):
            sync_student_count(db, organization)
        db.flush()
        for student, period in (
            (alice, robotics_period),
            (bob, robotics_period),
            (carol, debate_period),
        ):
            refresh_clearance(db, student_id=student.id, organization_id=student.organization_id, period_id=period.id)

        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    main()
