"""Payments, allocations and derived obligation status.

Every write path here runs as one transaction. Payment and obligation rows
are locked before any balance is read, so the over-allocation check cannot
race a concurrent allocation against the same obligation. Obligation status
is recomputed inside the same transaction as the allocation change that
triggered it, and the affected clearance rows are refreshed with it.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, cast, func, select
from sqlalchemy.orm import Session, selectinload

from clearledger.application.errors import (
    AllocationMismatchError,
    AlreadyDecidedError,
    ConsistencyError,
    NotFoundError,
    OverAllocationError,
    ValidationError,
)
from clearledger.application.services.audit_service import record_audit_entry
from clearledger.application.services.clearance_service import invalidate_clearance_cache, refresh_clearance
from clearledger.application.services.notification_service import enqueue_notification
from clearledger.application.services.receipt_storage_service import receipt_extension, receipt_path
from clearledger.application.services.student_service import get_student_in_organization
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.ledger_enums import ObligationKind, PaymentMethod, PaymentStatus
from clearledger.domain.obligation_status import ObligationStatus, derive_obligation_status, next_obligation_status
from clearledger.infrastructure.alerting import report_consistency_violation
from clearledger.infrastructure.db.models import FeeAssignment, Fine, Payment, PaymentAllocation
from clearledger.infrastructure.db.session import atomic
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")

Obligation = FeeAssignment | Fine
ClearanceScope = tuple[int, int, int]


@dataclass(frozen=True)
class AllocationTarget:
    kind: ObligationKind
    obligation_id: int
    amount: Decimal


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def _obligation_model(kind: ObligationKind) -> type[FeeAssignment] | type[Fine]:
    return FeeAssignment if kind == ObligationKind.fee else Fine


def _allocation_column(kind: ObligationKind):
    return PaymentAllocation.fee_assignment_id if kind == ObligationKind.fee else PaymentAllocation.fine_id


def obligation_key(kind: ObligationKind, obligation_id: int) -> str:
    return f"{kind.value}:{obligation_id}"


def allocation_kind(allocation: PaymentAllocation) -> tuple[ObligationKind, int]:
    if allocation.fee_assignment_id is not None:
        return ObligationKind.fee, allocation.fee_assignment_id
    return ObligationKind.fine, allocation.fine_id


def clearance_scope(obligation: Obligation) -> ClearanceScope:
    return obligation.organization_id, obligation.student_id, obligation.period_id


def get_obligation(db: Session, *, kind: ObligationKind, obligation_id: int, organization_id: int) -> Obligation:
    model = _obligation_model(kind)
    obligation = db.execute(
        select(model).where(model.id == obligation_id, model.organization_id == organization_id)
    ).scalar_one_or_none()
    if obligation is None:
        raise NotFoundError("Obligation not found")
    return obligation


def lock_obligation(db: Session, *, kind: ObligationKind, obligation_id: int, organization_id: int) -> Obligation:
    model = _obligation_model(kind)
    obligation = db.execute(
        select(model).where(model.id == obligation_id, model.organization_id == organization_id).with_for_update()
    ).scalar_one_or_none()
    if obligation is None:
        raise NotFoundError("Obligation not found")
    return obligation


def _lock_obligations(
    db: Session, keys: Iterable[tuple[ObligationKind, int]], *, organization_id: int
) -> dict[tuple[ObligationKind, int], Obligation]:
    # Fixed lock order keeps two multi-obligation transactions from deadlocking.
    ordered = sorted(set(keys), key=lambda key: (key[0].value, key[1]))
    return {
        (kind, obligation_id): lock_obligation(
            db, kind=kind, obligation_id=obligation_id, organization_id=organization_id
        )
        for kind, obligation_id in ordered
    }


def _lock_payment(db: Session, *, payment_id: int, organization_id: int) -> Payment:
    payment = db.execute(
        select(Payment)
        .where(Payment.id == payment_id, Payment.organization_id == organization_id)
        .with_for_update()
    ).scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def get_payment(db: Session, *, payment_id: int, organization_id: int) -> Payment:
    payment = db.execute(
        select(Payment)
        .options(selectinload(Payment.allocations))
        .where(Payment.id == payment_id, Payment.organization_id == organization_id)
    ).scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


PAYMENT_SEARCH_COLUMNS = [cast(Payment.method, String), cast(Payment.status, String)]


def build_student_payments_query(*, student_id: int, organization_id: int):
    return (
        select(Payment)
        .options(selectinload(Payment.allocations))
        .where(Payment.student_id == student_id, Payment.organization_id == organization_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )


def _active_allocations(db: Session, payment_id: int) -> list[PaymentAllocation]:
    return list(
        db.execute(
            select(PaymentAllocation)
            .where(PaymentAllocation.payment_id == payment_id, PaymentAllocation.voided_at.is_(None))
            .order_by(PaymentAllocation.id)
        )
        .scalars()
        .all()
    )


def verified_total(db: Session, *, kind: ObligationKind, obligation_id: int) -> Decimal:
    """Sum of live allocations to one obligation from verified payments."""
    total = db.execute(
        select(func.coalesce(func.sum(PaymentAllocation.amount_allocated), 0))
        .join(Payment, Payment.id == PaymentAllocation.payment_id)
        .where(
            _allocation_column(kind) == obligation_id,
            PaymentAllocation.voided_at.is_(None),
            Payment.status == PaymentStatus.verified,
        )
    ).scalar_one()
    return _money(total)


def remaining_balance(db: Session, *, kind: ObligationKind, obligation: Obligation) -> Decimal:
    return _money(obligation.amount) - verified_total(db, kind=kind, obligation_id=obligation.id)


def committed_total(db: Session, *, kind: ObligationKind, obligation_id: int) -> Decimal:
    """Sum of live allocations to one obligation from payments that are not rejected."""
    total = db.execute(
        select(func.coalesce(func.sum(PaymentAllocation.amount_allocated), 0))
        .join(Payment, Payment.id == PaymentAllocation.payment_id)
        .where(
            _allocation_column(kind) == obligation_id,
            PaymentAllocation.voided_at.is_(None),
            Payment.status != PaymentStatus.rejected,
        )
    ).scalar_one()
    return _money(total)


def unallocated_balance(db: Session, *, kind: ObligationKind, obligation: Obligation) -> Decimal:
    """What new allocations may still claim. Pending payments hold their share until rejected."""
    return _money(obligation.amount) - committed_total(db, kind=kind, obligation_id=obligation.id)


def _recompute(db: Session, kind: ObligationKind, obligation: Obligation) -> tuple[ObligationStatus, ObligationStatus]:
    previous = obligation.status
    total = verified_total(db, kind=kind, obligation_id=obligation.id)
    obligation.status = next_obligation_status(previous, _money(obligation.amount), total)
    db.flush()
    if obligation.status != previous:
        logger.info(
            "obligation_status_recomputed",
            obligation=obligation_key(kind, obligation.id),
            previous_status=previous.value,
            status=obligation.status.value,
            verified_total=str(total),
        )
    refresh_clearance(
        db,
        student_id=obligation.student_id,
        organization_id=obligation.organization_id,
        period_id=obligation.period_id,
    )
    return previous, obligation.status


def release_obligation_override(db: Session, *, kind: ObligationKind, obligation: Obligation) -> ObligationStatus:
    """Drop a waived or appealed status and fall back to what verified payments say."""
    previous = obligation.status
    total = verified_total(db, kind=kind, obligation_id=obligation.id)
    obligation.status = derive_obligation_status(_money(obligation.amount), total)
    db.flush()
    logger.info(
        "obligation_override_released",
        obligation=obligation_key(kind, obligation.id),
        previous_status=previous.value,
        status=obligation.status.value,
        verified_total=str(total),
    )
    refresh_clearance(
        db,
        student_id=obligation.student_id,
        organization_id=obligation.organization_id,
        period_id=obligation.period_id,
    )
    return obligation.status


def recompute_obligation_status(
    db: Session, *, kind: ObligationKind, obligation_id: int, organization_id: int
) -> ObligationStatus:
    """Re-derive one obligation's status in the caller's transaction.

    Safe to call any number of times. Waived and appealed obligations keep
    their status. The caller commits and invalidates the clearance cache.
    """
    obligation = lock_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
    _, status = _recompute(db, kind, obligation)
    return status


def _recompute_all(
    db: Session, obligations: dict[tuple[ObligationKind, int], Obligation]
) -> tuple[dict[str, str], set[ClearanceScope]]:
    statuses: dict[str, str] = {}
    scopes: set[ClearanceScope] = set()
    for (kind, obligation_id), obligation in obligations.items():
        _, status = _recompute(db, kind, obligation)
        statuses[obligation_key(kind, obligation_id)] = status.value
        scopes.add(clearance_scope(obligation))
    return statuses, scopes


def _payment_snapshot(payment: Payment, allocations: list[PaymentAllocation]) -> dict:
    return {
        "status": payment.status.value,
        "amount": str(_money(payment.amount)),
        "allocated": str(sum((_money(item.amount_allocated) for item in allocations), Decimal("0.00"))),
        "allocation_count": len(allocations),
    }


def serialize_allocation(allocation: PaymentAllocation) -> dict:
    return {
        "id": allocation.id,
        "fee_assignment_id": allocation.fee_assignment_id,
        "fine_id": allocation.fine_id,
        "amount_allocated": allocation.amount_allocated,
        "voided_at": allocation.voided_at,
    }


def serialize_payment_response(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "organization_id": payment.organization_id,
        "student_id": payment.student_id,
        "amount": payment.amount,
        "method": payment.method,
        "status": payment.status,
        "proof_path": payment.proof_path,
        "recorded_by_subject_id": payment.recorded_by_subject_id,
        "verified_by_subject_id": payment.verified_by_subject_id,
        "verified_at": payment.verified_at,
        "rejection_reason": payment.rejection_reason,
        "created_at": payment.created_at,
        "allocations": [serialize_allocation(item) for item in payment.allocations],
    }


def record_payment(
    db: Session,
    *,
    organization_id: int,
    student_id: int,
    amount: Decimal,
    method: PaymentMethod,
    recorded_by: int,
    proof_ref: str | None = None,
) -> Payment:
    amount = _money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    if method.requires_proof and not proof_ref:
        raise ValidationError(f"A receipt is required for {method.value} payments")
    if not method.requires_proof and proof_ref:
        raise ValidationError("Cash payments do not take a receipt")
    extension = receipt_extension(proof_ref) if proof_ref else None

    with atomic(db):
        get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
        payment = Payment(
            organization_id=organization_id,
            student_id=student_id,
            amount=amount,
            method=method,
            status=PaymentStatus.pending,
            recorded_by_subject_id=recorded_by,
        )
        db.add(payment)
        db.flush()
        if extension is not None:
            payment.proof_path = receipt_path(
                organization_id=organization_id, payment_id=payment.id, extension=extension
            )
            db.flush()
        record_audit_entry(
            db,
            entity_kind=ResourceKind.payment,
            entity_id=payment.id,
            action=AuditAction.payment_recorded,
            performed_by=recorded_by,
            organization_id=organization_id,
            after=_payment_snapshot(payment, []),
        )
    logger.info(
        "payment_recorded",
        payment_id=payment.id,
        organization_id=organization_id,
        student_id=student_id,
        amount=str(amount),
        method=method.value,
    )
    return payment


def allocate(
    db: Session,
    *,
    payment_id: int,
    organization_id: int,
    targets: list[AllocationTarget],
    performed_by: int,
    full_allocation: bool = True,
) -> list[PaymentAllocation]:
    """Split a payment across obligations, all targets or none."""
    if not targets:
        raise ValidationError("At least one allocation target is required")
    requested: dict[tuple[ObligationKind, int], Decimal] = defaultdict(lambda: Decimal("0.00"))
    for target in targets:
        amount = _money(target.amount)
        if amount <= 0:
            raise ValidationError("Allocation amounts must be greater than zero")
        requested[(target.kind, target.obligation_id)] += amount

    with atomic(db):
        payment = _lock_payment(db, payment_id=payment_id, organization_id=organization_id)
        if payment.status == PaymentStatus.rejected:
            raise AlreadyDecidedError("Payment has already been rejected")
        obligations = _lock_obligations(db, requested.keys(), organization_id=organization_id)

        for obligation in obligations.values():
            if obligation.student_id != payment.student_id:
                raise ValidationError("Obligation belongs to a different student")

        for (kind, obligation_id), amount in requested.items():
            remaining = unallocated_balance(db, kind=kind, obligation=obligations[(kind, obligation_id)])
            if amount > remaining:
                logger.warning(
                    "allocation_rejected_over_allocation",
                    payment_id=payment_id,
                    obligation=obligation_key(kind, obligation_id),
                    requested=str(amount),
                    remaining=str(remaining),
                )
                raise OverAllocationError(
                    f"Allocation of {amount} exceeds the remaining balance of {remaining} "
                    f"for {kind.value} {obligation_id}"
                )

        existing = _active_allocations(db, payment.id)
        already_allocated = sum((_money(item.amount_allocated) for item in existing), Decimal("0.00"))
        total = already_allocated + sum(requested.values(), Decimal("0.00"))
        payment_amount = _money(payment.amount)
        if total > payment_amount or (full_allocation and total != payment_amount):
            logger.warning(
                "allocation_rejected_mismatch",
                payment_id=payment_id,
                payment_amount=str(payment_amount),
                allocated_total=str(total),
            )
            raise AllocationMismatchError(
                f"Allocations total {total} but the payment amount is {payment_amount}"
            )

        before = _payment_snapshot(payment, existing)
        created = []
        for (kind, obligation_id), amount in requested.items():
            allocation = PaymentAllocation(payment_id=payment.id, amount_allocated=amount)
            if kind == ObligationKind.fee:
                allocation.fee_assignment_id = obligation_id
            else:
                allocation.fine_id = obligation_id
            db.add(allocation)
            created.append(allocation)
        db.flush()

        statuses, scopes = _recompute_all(db, obligations)
        after = _payment_snapshot(payment, existing + created)
        after["obligation_statuses"] = statuses
        record_audit_entry(
            db,
            entity_kind=ResourceKind.payment,
            entity_id=payment.id,
            action=AuditAction.payment_allocated,
            performed_by=performed_by,
            organization_id=organization_id,
            before=before,
            after=after,
        )
    db.expire(payment, ["allocations"])
    invalidate_clearance_cache(scopes)
    logger.info(
        "payment_allocated",
        payment_id=payment_id,
        organization_id=organization_id,
        allocation_count=len(created),
        allocated_total=str(total),
    )
    return created


def verify_payment(db: Session, *, payment_id: int, organization_id: int, verifier_subject_id: int) -> Payment:
    with atomic(db):
        payment = _lock_payment(db, payment_id=payment_id, organization_id=organization_id)
        if payment.status != PaymentStatus.pending:
            logger.warning("payment_verification_rejected", payment_id=payment_id, status=payment.status.value)
            raise AlreadyDecidedError(f"Payment is already {payment.status.value}")
        allocations = _active_allocations(db, payment.id)
        obligations = _lock_obligations(
            db, (allocation_kind(item) for item in allocations), organization_id=organization_id
        )
        before = _payment_snapshot(payment, allocations)

        payment.status = PaymentStatus.verified
        payment.verified_by_subject_id = verifier_subject_id
        payment.verified_at = datetime.now(timezone.utc)
        db.flush()

        for (kind, obligation_id), obligation in obligations.items():
            total = verified_total(db, kind=kind, obligation_id=obligation_id)
            if total > _money(obligation.amount):
                report_consistency_violation(
                    "obligation_over_settled_on_verify",
                    payment_id=payment_id,
                    organization_id=organization_id,
                    obligation=obligation_key(kind, obligation_id),
                    verified_total=total,
                    obligation_amount=obligation.amount,
                )
                raise ConsistencyError("Verifying this payment would over-settle an obligation")

        statuses, scopes = _recompute_all(db, obligations)
        after = _payment_snapshot(payment, allocations)
        after["obligation_statuses"] = statuses
        record_audit_entry(
            db,
            entity_kind=ResourceKind.payment,
            entity_id=payment.id,
            action=AuditAction.payment_verified,
            performed_by=verifier_subject_id,
            organization_id=organization_id,
            before=before,
            after=after,
        )
        enqueue_notification(
            db,
            organization_id=organization_id,
            recipient_ref=f"student:{payment.student_id}",
            notification_type="payment_verified",
            payload={"payment_id": payment.id, "amount": str(_money(payment.amount))},
        )
    invalidate_clearance_cache(scopes)
    logger.info(
        "payment_verification_completed",
        payment_id=payment_id,
        organization_id=organization_id,
        obligation_count=len(obligations),
    )
    return payment


def reject_payment(
    db: Session, *, payment_id: int, organization_id: int, performed_by: int, reason: str
) -> Payment:
    """Reject or reverse a payment. Replaying on a rejected payment changes nothing."""
    scopes: set[ClearanceScope] = set()
    replayed = False
    with atomic(db):
        payment = _lock_payment(db, payment_id=payment_id, organization_id=organization_id)
        if payment.status == PaymentStatus.rejected:
            replayed = True
        else:
            if not reason or not reason.strip():
                raise ValidationError("A rejection reason is required")
            allocations = _active_allocations(db, payment.id)
            obligations = _lock_obligations(
                db, (allocation_kind(item) for item in allocations), organization_id=organization_id
            )
            before = _payment_snapshot(payment, allocations)
            voided_at = datetime.now(timezone.utc)
            for allocation in allocations:
                allocation.voided_at = voided_at
            payment.status = PaymentStatus.rejected
            payment.rejection_reason = reason.strip()
            db.flush()

            statuses, scopes = _recompute_all(db, obligations)
            after = _payment_snapshot(payment, [])
            after["voided_allocation_count"] = len(allocations)
            after["obligation_statuses"] = statuses
            record_audit_entry(
                db,
                entity_kind=ResourceKind.payment,
                entity_id=payment.id,
                action=AuditAction.payment_rejected,
                performed_by=performed_by,
                organization_id=organization_id,
                before=before,
                after=after,
            )
            enqueue_notification(
                db,
                organization_id=organization_id,
                recipient_ref=f"student:{payment.student_id}",
                notification_type="payment_rejected",
                payload={"payment_id": payment.id, "reason": payment.rejection_reason},
            )
    if replayed:
        logger.info("payment_rejection_replayed", payment_id=payment_id, organization_id=organization_id)
        return payment
    db.expire(payment, ["allocations"])
    invalidate_clearance_cache(scopes)
    logger.info("payment_rejected", payment_id=payment_id, organization_id=organization_id)
    return payment
