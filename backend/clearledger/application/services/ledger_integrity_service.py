"""Read-only integrity checks over one organization's ledger.

Counters and statuses are maintained transactionally, so a finding here
means a defect. The checks only report; nothing is repaired.
"""

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from clearledger.domain.ledger_enums import ObligationKind, PaymentStatus
from clearledger.domain.obligation_status import DERIVED_STATUSES, derive_obligation_status
from clearledger.domain.organization_enums import StudentStatus
from clearledger.infrastructure.alerting import report_consistency_violation
from clearledger.infrastructure.db.models import FeeAssignment, Fine, Organization, Payment, PaymentAllocation, Student
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _verified_totals_subquery(kind: ObligationKind):
    column = PaymentAllocation.fee_assignment_id if kind == ObligationKind.fee else PaymentAllocation.fine_id
    return (
        select(column.label("obligation_id"), func.sum(PaymentAllocation.amount_allocated).label("verified_total"))
        .join(Payment, Payment.id == PaymentAllocation.payment_id)
        .where(
            column.is_not(None),
            PaymentAllocation.voided_at.is_(None),
            Payment.status == PaymentStatus.verified,
        )
        .group_by(column)
        .subquery()
    )


def _check_payment_over_allocated(db: Session, *, organization_id: int) -> list[dict]:
    allocated = func.coalesce(func.sum(PaymentAllocation.amount_allocated), 0)
    rows = db.execute(
        select(Payment.id, Payment.amount, allocated.label("allocated_total"))
        .join(PaymentAllocation, PaymentAllocation.payment_id == Payment.id)
        .where(
            Payment.organization_id == organization_id,
            PaymentAllocation.voided_at.is_(None),
        )
        .group_by(Payment.id, Payment.amount)
        .having(allocated > Payment.amount)
        .order_by(Payment.id)
    ).all()
    return [
        {
            "check_code": "payment_over_allocated",
            "severity": "high",
            "entity_type": "payment",
            "entity_id": row.id,
            "message": "Live allocations exceed the payment amount",
            "details_json": {
                "payment_amount": str(_money(row.amount)),
                "allocated_total": str(_money(row.allocated_total)),
            },
        }
        for row in rows
    ]


def _obligation_rows(db: Session, kind: ObligationKind, *, organization_id: int):
    model = FeeAssignment if kind == ObligationKind.fee else Fine
    totals = _verified_totals_subquery(kind)
    return db.execute(
        select(model.id, model.amount, model.status, func.coalesce(totals.c.verified_total, 0).label("verified_total"))
        .outerjoin(totals, totals.c.obligation_id == model.id)
        .where(model.organization_id == organization_id)
        .order_by(model.id)
    ).all()


def _check_obligations(db: Session, *, organization_id: int) -> list[dict]:
    findings: list[dict] = []
    for kind in ObligationKind:
        entity_type = "fee_assignment" if kind == ObligationKind.fee else "fine"
        for row in _obligation_rows(db, kind, organization_id=organization_id):
            amount = _money(row.amount)
            total = _money(row.verified_total)
            if total > amount:
                findings.append(
                    {
                        "check_code": "obligation_over_settled",
                        "severity": "high",
                        "entity_type": entity_type,
                        "entity_id": row.id,
                        "message": "Verified allocations exceed the obligation amount",
                        "details_json": {"amount": str(amount), "verified_total": str(total)},
                    }
                )
            if row.status in DERIVED_STATUSES:
                expected = derive_obligation_status(amount, total)
                if expected != row.status:
                    findings.append(
                        {
                            "check_code": "obligation_status_drift",
                            "severity": "medium",
                            "entity_type": entity_type,
                            "entity_id": row.id,
                            "message": "Stored status differs from the status verified payments support",
                            "details_json": {
                                "status": row.status.value,
                                "expected_status": expected.value,
                                "verified_total": str(total),
                            },
                        }
                    )
    return findings


def _check_student_count(db: Session, *, organization_id: int) -> list[dict]:
    stored = db.execute(
        select(Organization.student_count).where(Organization.id == organization_id)
    ).scalar_one_or_none()
    if stored is None:
        return []
    actual = db.execute(
        select(func.count(Student.id)).where(
            Student.organization_id == organization_id,
            Student.status == StudentStatus.active,
        )
    ).scalar_one()
    if stored == actual:
        return []
    return [
        {
            "check_code": "student_count_drift",
            "severity": "high",
            "entity_type": "organization",
            "entity_id": organization_id,
            "message": "Organization student count differs from active enrollments",
            "details_json": {"student_count": stored, "active_students": actual},
        }
    ]


def run_ledger_integrity_checks(db: Session, *, organization_id: int) -> list[dict]:
    findings: list[dict] = []
    findings.extend(_check_payment_over_allocated(db, organization_id=organization_id))
    findings.extend(_check_obligations(db, organization_id=organization_id))
    findings.extend(_check_student_count(db, organization_id=organization_id))

    for finding in findings:
        if finding["severity"] == "high":
            report_consistency_violation(
                "ledger_integrity_violation",
                organization_id=organization_id,
                check_code=finding["check_code"],
                entity_type=finding["entity_type"],
                entity_id=finding["entity_id"],
            )
    logger.info(
        "ledger_integrity_checks_completed",
        organization_id=organization_id,
        finding_count=len(findings),
    )
    return findings


def list_organization_ids(db: Session) -> list[int]:
    return list(db.execute(select(Organization.id).order_by(Organization.id)).scalars().all())
