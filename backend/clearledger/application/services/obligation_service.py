from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from clearledger.application.errors import ConflictError, NotFoundError, ValidationError
from clearledger.application.services.audit_service import record_audit_entry
from clearledger.application.services.clearance_service import (
    invalidate_clearance_cache,
    open_clearance_records,
    refresh_clearance,
)
from clearledger.application.services.ledger_service import remaining_balance
from clearledger.application.services.notification_service import enqueue_notification
from clearledger.application.services.student_service import get_student_in_organization, list_active_student_ids
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.ledger_enums import ObligationKind
from clearledger.domain.obligation_status import ObligationStatus
from clearledger.domain.organization_enums import StudentStatus
from clearledger.infrastructure.db.models import ClearancePeriod, FeeAssignment, FeeType, Fine
from clearledger.infrastructure.db.session import atomic
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def get_clearance_period(db: Session, *, period_id: int, organization_id: int) -> ClearancePeriod:
    period = db.execute(
        select(ClearancePeriod).where(
            ClearancePeriod.id == period_id,
            ClearancePeriod.organization_id == organization_id,
        )
    ).scalar_one_or_none()
    if period is None:
        raise NotFoundError("Clearance period not found")
    return period


def list_clearance_periods(db: Session, *, organization_id: int) -> list[ClearancePeriod]:
    return list(
        db.execute(
            select(ClearancePeriod)
            .where(ClearancePeriod.organization_id == organization_id)
            .order_by(ClearancePeriod.starts_on.desc(), ClearancePeriod.id.desc())
        )
        .scalars()
        .all()
    )


def get_fee_type(db: Session, *, fee_type_id: int, organization_id: int) -> FeeType:
    fee_type = db.execute(
        select(FeeType).where(FeeType.id == fee_type_id, FeeType.organization_id == organization_id)
    ).scalar_one_or_none()
    if fee_type is None:
        raise NotFoundError("Fee type not found")
    return fee_type


def list_fee_types(db: Session, *, organization_id: int, period_id: int | None = None) -> list[FeeType]:
    query = select(FeeType).where(FeeType.organization_id == organization_id).order_by(FeeType.id)
    if period_id is not None:
        query = query.where(FeeType.period_id == period_id)
    return list(db.execute(query).scalars().all())


def create_clearance_period(
    db: Session,
    *,
    organization_id: int,
    name: str,
    starts_on: date,
    ends_on: date,
    performed_by: int,
) -> ClearancePeriod:
    """Create a period and open a ``pending`` clearance row for every active student."""
    if ends_on < starts_on:
        raise ValidationError("A clearance period cannot end before it starts")
    with atomic(db):
        period = ClearancePeriod(
            organization_id=organization_id,
            name=name,
            starts_on=starts_on,
            ends_on=ends_on,
            is_active=True,
        )
        db.add(period)
        db.flush()
        opened = open_clearance_records(
            db,
            organization_id=organization_id,
            period_id=period.id,
            student_ids=list_active_student_ids(db, organization_id=organization_id),
        )
        record_audit_entry(
            db,
            entity_kind=ResourceKind.clearance_period,
            entity_id=period.id,
            action=AuditAction.clearance_period_created,
            performed_by=performed_by,
            organization_id=organization_id,
            after={
                "name": name,
                "starts_on": starts_on.isoformat(),
                "ends_on": ends_on.isoformat(),
                "clearances_opened": opened,
            },
        )
    logger.info(
        "clearance_period_created",
        organization_id=organization_id,
        period_id=period.id,
        clearances_opened=opened,
    )
    return period


def create_fee_type(
    db: Session,
    *,
    organization_id: int,
    period_id: int,
    name: str,
    amount: Decimal,
    required_for_clearance: bool,
    performed_by: int,
) -> FeeType:
    amount = _money(amount)
    if amount <= 0:
        raise ValidationError("Fee amount must be greater than zero")
    with atomic(db):
        get_clearance_period(db, period_id=period_id, organization_id=organization_id)
        fee_type = FeeType(
            organization_id=organization_id,
            period_id=period_id,
            name=name,
            amount=amount,
            required_for_clearance=required_for_clearance,
        )
        db.add(fee_type)
        db.flush()
        record_audit_entry(
            db,
            entity_kind=ResourceKind.fee_type,
            entity_id=fee_type.id,
            action=AuditAction.fee_type_created,
            performed_by=performed_by,
            organization_id=organization_id,
            after={
                "name": name,
                "amount": str(amount),
                "period_id": period_id,
                "required_for_clearance": required_for_clearance,
            },
        )
    logger.info("fee_type_created", organization_id=organization_id, fee_type_id=fee_type.id)
    return fee_type


def assign_fee(
    db: Session,
    *,
    organization_id: int,
    student_id: int,
    fee_type_id: int,
    performed_by: int,
    amount: Decimal | None = None,
) -> FeeAssignment:
    with atomic(db):
        student = get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
        if student.status != StudentStatus.active:
            raise ValidationError("Fees can only be assigned to enrolled students")
        fee_type = get_fee_type(db, fee_type_id=fee_type_id, organization_id=organization_id)
        existing = db.execute(
            select(FeeAssignment.id).where(
                FeeAssignment.student_id == student_id,
                FeeAssignment.fee_type_id == fee_type_id,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise ConflictError("Fee type is already assigned to this student")

        assignment = FeeAssignment(
            organization_id=organization_id,
            student_id=student_id,
            fee_type_id=fee_type.id,
            period_id=fee_type.period_id,
            amount=_money(amount if amount is not None else fee_type.amount),
            status=ObligationStatus.pending,
        )
        db.add(assignment)
        db.flush()
        refresh_clearance(db, student_id=student_id, organization_id=organization_id, period_id=fee_type.period_id)
        record_audit_entry(
            db,
            entity_kind=ResourceKind.fee_assignment,
            entity_id=assignment.id,
            action=AuditAction.fee_assigned,
            performed_by=performed_by,
            organization_id=organization_id,
            after={
                "student_id": student_id,
                "fee_type_id": fee_type.id,
                "amount": str(_money(assignment.amount)),
                "status": assignment.status.value,
            },
        )
        enqueue_notification(
            db,
            organization_id=organization_id,
            recipient_ref=f"student:{student_id}",
            notification_type="fee_assigned",
            payload={"fee_assignment_id": assignment.id, "amount": str(_money(assignment.amount))},
        )
    invalidate_clearance_cache({(organization_id, student_id, fee_type.period_id)})
    logger.info("fee_assigned", organization_id=organization_id, fee_assignment_id=assignment.id)
    return assignment


def issue_fine(
    db: Session,
    *,
    organization_id: int,
    student_id: int,
    period_id: int,
    reason: str,
    amount: Decimal,
    issued_by: int,
) -> Fine:
    amount = _money(amount)
    if amount <= 0:
        raise ValidationError("Fine amount must be greater than zero")
    if not reason or not reason.strip():
        raise ValidationError("A fine reason is required")
    with atomic(db):
        get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
        get_clearance_period(db, period_id=period_id, organization_id=organization_id)
        fine = Fine(
            organization_id=organization_id,
            student_id=student_id,
            period_id=period_id,
            reason=reason.strip(),
            amount=amount,
            status=ObligationStatus.pending,
            issued_by_subject_id=issued_by,
        )
        db.add(fine)
        db.flush()
        refresh_clearance(db, student_id=student_id, organization_id=organization_id, period_id=period_id)
        record_audit_entry(
            db,
            entity_kind=ResourceKind.fine,
            entity_id=fine.id,
            action=AuditAction.fine_issued,
            performed_by=issued_by,
            organization_id=organization_id,
            after={"student_id": student_id, "amount": str(amount), "reason": fine.reason},
        )
        enqueue_notification(
            db,
            organization_id=organization_id,
            recipient_ref=f"student:{student_id}",
            notification_type="fine_issued",
            payload={"fine_id": fine.id, "amount": str(amount)},
        )
    invalidate_clearance_cache({(organization_id, student_id, period_id)})
    logger.info("fine_issued", organization_id=organization_id, fine_id=fine.id, student_id=student_id)
    return fine


def list_student_obligations(
    db: Session, *, organization_id: int, student_id: int, period_id: int | None = None
) -> list[dict]:
    get_student_in_organization(db, student_id=student_id, organization_id=organization_id)

    fee_query = (
        select(FeeAssignment, FeeType.name)
        .join(FeeType, FeeType.id == FeeAssignment.fee_type_id)
        .where(FeeAssignment.organization_id == organization_id, FeeAssignment.student_id == student_id)
        .order_by(FeeAssignment.id)
    )
    fine_query = (
        select(Fine)
        .where(Fine.organization_id == organization_id, Fine.student_id == student_id)
        .order_by(Fine.id)
    )
    if period_id is not None:
        fee_query = fee_query.where(FeeAssignment.period_id == period_id)
        fine_query = fine_query.where(Fine.period_id == period_id)

    obligations = []
    for assignment, fee_type_name in db.execute(fee_query).all():
        obligations.append(
            serialize_obligation(db, ObligationKind.fee, assignment, description=fee_type_name)
        )
    for fine in db.execute(fine_query).scalars().all():
        obligations.append(serialize_obligation(db, ObligationKind.fine, fine, description=fine.reason))
    return obligations


def serialize_obligation(
    db: Session, kind: ObligationKind, obligation: FeeAssignment | Fine, *, description: str
) -> dict:
    return {
        "kind": kind,
        "id": obligation.id,
        "organization_id": obligation.organization_id,
        "student_id": obligation.student_id,
        "period_id": obligation.period_id,
        "amount": _money(obligation.amount),
        "status": obligation.status,
        "description": description,
        "remaining_balance": remaining_balance(db, kind=kind, obligation=obligation),
        "created_at": obligation.created_at,
    }
