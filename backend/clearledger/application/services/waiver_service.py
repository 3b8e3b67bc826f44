"""Waiver and appeal workflows.

These are the only paths that set or release the sticky ``waived`` and
``appealed`` obligation statuses.
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from clearledger.application.errors import AlreadyDecidedError, ConflictError, NotFoundError, ValidationError
from clearledger.application.services.audit_service import record_audit_entry
from clearledger.application.services.clearance_service import invalidate_clearance_cache, refresh_clearance
from clearledger.application.services.ledger_service import (
    Obligation,
    clearance_scope,
    lock_obligation,
    release_obligation_override,
)
from clearledger.application.services.notification_service import enqueue_notification
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.ledger_enums import AppealStatus, ObligationKind, WaiverStatus
from clearledger.domain.obligation_status import APPEALABLE_STATUSES, ObligationStatus
from clearledger.infrastructure.db.models import Appeal, Waiver
from clearledger.infrastructure.db.session import atomic
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _require_reason(reason: str | None, message: str) -> str:
    if reason is None or not reason.strip():
        raise ValidationError(message)
    return reason.strip()


def _obligation_reference(kind: ObligationKind, obligation_id: int) -> dict:
    if kind == ObligationKind.fee:
        return {"fee_assignment_id": obligation_id, "fine_id": None}
    return {"fee_assignment_id": None, "fine_id": obligation_id}


def referenced_obligation(record: Waiver | Appeal) -> tuple[ObligationKind, int]:
    if record.fee_assignment_id is not None:
        return ObligationKind.fee, record.fee_assignment_id
    return ObligationKind.fine, record.fine_id


def _waiver_snapshot(waiver: Waiver, obligation: Obligation) -> dict:
    return {"status": waiver.status.value, "obligation_status": obligation.status.value}


def _appeal_snapshot(appeal: Appeal, obligation: Obligation) -> dict:
    return {"status": appeal.status.value, "obligation_status": obligation.status.value}


def _mark_waived(db: Session, obligation: Obligation) -> None:
    obligation.status = ObligationStatus.waived
    db.flush()
    refresh_clearance(
        db,
        student_id=obligation.student_id,
        organization_id=obligation.organization_id,
        period_id=obligation.period_id,
    )


def _lock_waiver(db: Session, *, waiver_id: int, organization_id: int) -> Waiver:
    waiver = db.execute(
        select(Waiver).where(Waiver.id == waiver_id, Waiver.organization_id == organization_id).with_for_update()
    ).scalar_one_or_none()
    if waiver is None:
        raise NotFoundError("Waiver not found")
    return waiver


def _lock_appeal(db: Session, *, appeal_id: int, organization_id: int) -> Appeal:
    appeal = db.execute(
        select(Appeal).where(Appeal.id == appeal_id, Appeal.organization_id == organization_id).with_for_update()
    ).scalar_one_or_none()
    if appeal is None:
        raise NotFoundError("Appeal not found")
    return appeal


def get_waiver(db: Session, *, waiver_id: int, organization_id: int) -> Waiver:
    waiver = db.execute(
        select(Waiver).where(Waiver.id == waiver_id, Waiver.organization_id == organization_id)
    ).scalar_one_or_none()
    if waiver is None:
        raise NotFoundError("Waiver not found")
    return waiver


def get_appeal(db: Session, *, appeal_id: int, organization_id: int) -> Appeal:
    appeal = db.execute(
        select(Appeal).where(Appeal.id == appeal_id, Appeal.organization_id == organization_id)
    ).scalar_one_or_none()
    if appeal is None:
        raise NotFoundError("Appeal not found")
    return appeal


def grant_waiver(
    db: Session,
    *,
    kind: ObligationKind,
    obligation_id: int,
    organization_id: int,
    reason: str,
    approver_subject_id: int,
    origin_appeal_id: int | None = None,
) -> Waiver:
    """Waive an obligation outright. The waiver and the status change commit together."""
    reason = _require_reason(reason, "A waiver reason is required")
    with atomic(db):
        obligation = lock_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
        if obligation.status == ObligationStatus.waived:
            raise AlreadyDecidedError("Obligation is already waived")
        if obligation.status == ObligationStatus.appealed:
            raise ValidationError("Obligation has a pending appeal; decide the appeal instead")
        before = {"obligation_status": obligation.status.value}
        waiver = Waiver(
            organization_id=organization_id,
            status=WaiverStatus.approved,
            reason=reason,
            requested_by_subject_id=approver_subject_id,
            decided_by_subject_id=approver_subject_id,
            decided_at=datetime.now(timezone.utc),
            origin_appeal_id=origin_appeal_id,
            **_obligation_reference(kind, obligation_id),
        )
        db.add(waiver)
        db.flush()
        _mark_waived(db, obligation)
        record_audit_entry(
            db,
            entity_kind=ResourceKind.waiver,
            entity_id=waiver.id,
            action=AuditAction.waiver_granted,
            performed_by=approver_subject_id,
            organization_id=organization_id,
            before=before,
            after=_waiver_snapshot(waiver, obligation),
        )
    invalidate_clearance_cache({clearance_scope(obligation)})
    logger.info("waiver_granted", waiver_id=waiver.id, organization_id=organization_id, kind=kind.value)
    return waiver


def request_waiver(
    db: Session,
    *,
    kind: ObligationKind,
    obligation_id: int,
    organization_id: int,
    reason: str,
    requested_by: int,
) -> Waiver:
    reason = _require_reason(reason, "A waiver reason is required")
    with atomic(db):
        obligation = lock_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
        if obligation.status.is_settled:
            raise ValidationError(f"Obligation is already {obligation.status.value}")
        waiver = Waiver(
            organization_id=organization_id,
            status=WaiverStatus.pending,
            reason=reason,
            requested_by_subject_id=requested_by,
            **_obligation_reference(kind, obligation_id),
        )
        db.add(waiver)
        db.flush()
        record_audit_entry(
            db,
            entity_kind=ResourceKind.waiver,
            entity_id=waiver.id,
            action=AuditAction.waiver_requested,
            performed_by=requested_by,
            organization_id=organization_id,
            after=_waiver_snapshot(waiver, obligation),
        )
    logger.info("waiver_requested", waiver_id=waiver.id, organization_id=organization_id)
    return waiver


def approve_waiver(db: Session, *, waiver_id: int, organization_id: int, approver_subject_id: int) -> Waiver:
    with atomic(db):
        waiver = _lock_waiver(db, waiver_id=waiver_id, organization_id=organization_id)
        if waiver.status != WaiverStatus.pending:
            raise AlreadyDecidedError(f"Waiver is already {waiver.status.value}")
        kind, obligation_id = referenced_obligation(waiver)
        obligation = lock_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
        if obligation.status == ObligationStatus.waived:
            raise AlreadyDecidedError("Obligation is already waived")
        if obligation.status == ObligationStatus.appealed:
            raise ValidationError("Obligation has a pending appeal; decide the appeal instead")
        before = _waiver_snapshot(waiver, obligation)
        waiver.status = WaiverStatus.approved
        waiver.decided_by_subject_id = approver_subject_id
        waiver.decided_at = datetime.now(timezone.utc)
        _mark_waived(db, obligation)
        record_audit_entry(
            db,
            entity_kind=ResourceKind.waiver,
            entity_id=waiver.id,
            action=AuditAction.waiver_granted,
            performed_by=approver_subject_id,
            organization_id=organization_id,
            before=before,
            after=_waiver_snapshot(waiver, obligation),
        )
    invalidate_clearance_cache({clearance_scope(obligation)})
    logger.info("waiver_approved", waiver_id=waiver_id, organization_id=organization_id)
    return waiver


def reject_waiver(
    db: Session, *, waiver_id: int, organization_id: int, performed_by: int, reason: str
) -> Waiver:
    """Reject a pending waiver or revoke an approved one.

    Revoking restores the status verified payments support, which is the
    only way a ``waived`` obligation becomes payable again.
    """
    reason = _require_reason(reason, "A rejection reason is required")
    with atomic(db):
        waiver = _lock_waiver(db, waiver_id=waiver_id, organization_id=organization_id)
        if waiver.status == WaiverStatus.rejected:
            raise AlreadyDecidedError("Waiver is already rejected")
        kind, obligation_id = referenced_obligation(waiver)
        obligation = lock_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
        before = _waiver_snapshot(waiver, obligation)
        revoked = waiver.status == WaiverStatus.approved
        waiver.status = WaiverStatus.rejected
        waiver.rejection_reason = reason
        waiver.decided_by_subject_id = performed_by
        waiver.decided_at = datetime.now(timezone.utc)
        db.flush()
        if revoked and obligation.status == ObligationStatus.waived:
            release_obligation_override(db, kind=kind, obligation=obligation)
        record_audit_entry(
            db,
            entity_kind=ResourceKind.waiver,
            entity_id=waiver.id,
            action=AuditAction.waiver_rejected,
            performed_by=performed_by,
            organization_id=organization_id,
            before=before,
            after=_waiver_snapshot(waiver, obligation),
        )
    invalidate_clearance_cache({clearance_scope(obligation)})
    logger.info(
        "waiver_rejected",
        waiver_id=waiver_id,
        organization_id=organization_id,
        revoked=revoked,
        obligation_status=obligation.status.value,
    )
    return waiver


def file_appeal(
    db: Session,
    *,
    kind: ObligationKind,
    obligation_id: int,
    organization_id: int,
    reason: str,
    filed_by: int,
) -> Appeal:
    reason = _require_reason(reason, "An appeal reason is required")
    with atomic(db):
        obligation = lock_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
        if obligation.status == ObligationStatus.appealed:
            raise ConflictError("Obligation already has a pending appeal")
        if obligation.status not in APPEALABLE_STATUSES:
            raise ValidationError(f"A {obligation.status.value} obligation cannot be appealed")
        before = {"obligation_status": obligation.status.value}
        appeal = Appeal(
            organization_id=organization_id,
            student_id=obligation.student_id,
            reason=reason,
            status=AppealStatus.pending,
            filed_by_subject_id=filed_by,
            **_obligation_reference(kind, obligation_id),
        )
        db.add(appeal)
        obligation.status = ObligationStatus.appealed
        db.flush()
        refresh_clearance(
            db,
            student_id=obligation.student_id,
            organization_id=organization_id,
            period_id=obligation.period_id,
        )
        record_audit_entry(
            db,
            entity_kind=ResourceKind.appeal,
            entity_id=appeal.id,
            action=AuditAction.appeal_filed,
            performed_by=filed_by,
            organization_id=organization_id,
            before=before,
            after=_appeal_snapshot(appeal, obligation),
        )
        enqueue_notification(
            db,
            organization_id=organization_id,
            recipient_ref=f"organization:{organization_id}",
            notification_type="appeal_filed",
            payload={"appeal_id": appeal.id, "student_id": obligation.student_id},
        )
    invalidate_clearance_cache({clearance_scope(obligation)})
    logger.info("appeal_filed", appeal_id=appeal.id, organization_id=organization_id, kind=kind.value)
    return appeal


def approve_appeal(
    db: Session, *, appeal_id: int, organization_id: int, decided_by: int, note: str | None = None
) -> Appeal:
    """Approve an appeal by waiving its obligation; the waiver records the appeal it came from."""
    with atomic(db):
        appeal = _lock_appeal(db, appeal_id=appeal_id, organization_id=organization_id)
        if appeal.status != AppealStatus.pending:
            raise AlreadyDecidedError(f"Appeal is already {appeal.status.value}")
        kind, obligation_id = referenced_obligation(appeal)
        obligation = lock_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
        before = _appeal_snapshot(appeal, obligation)
        appeal.status = AppealStatus.approved
        appeal.decided_by_subject_id = decided_by
        appeal.decided_at = datetime.now(timezone.utc)
        appeal.decision_note = note
        waiver = Waiver(
            organization_id=organization_id,
            status=WaiverStatus.approved,
            reason=f"Appeal {appeal.id} approved",
            requested_by_subject_id=appeal.filed_by_subject_id,
            decided_by_subject_id=decided_by,
            decided_at=appeal.decided_at,
            origin_appeal_id=appeal.id,
            **_obligation_reference(kind, obligation_id),
        )
        db.add(waiver)
        db.flush()
        _mark_waived(db, obligation)
        after = _appeal_snapshot(appeal, obligation)
        after["waiver_id"] = waiver.id
        record_audit_entry(
            db,
            entity_kind=ResourceKind.appeal,
            entity_id=appeal.id,
            action=AuditAction.appeal_approved,
            performed_by=decided_by,
            organization_id=organization_id,
            before=before,
            after=after,
        )
        enqueue_notification(
            db,
            organization_id=organization_id,
            recipient_ref=f"student:{appeal.student_id}",
            notification_type="appeal_approved",
            payload={"appeal_id": appeal.id, "waiver_id": waiver.id},
        )
    invalidate_clearance_cache({clearance_scope(obligation)})
    logger.info("appeal_approved", appeal_id=appeal_id, organization_id=organization_id, waiver_id=waiver.id)
    return appeal


def reject_appeal(
    db: Session, *, appeal_id: int, organization_id: int, decided_by: int, note: str | None = None
) -> Appeal:
    with atomic(db):
        appeal = _lock_appeal(db, appeal_id=appeal_id, organization_id=organization_id)
        if appeal.status != AppealStatus.pending:
            raise AlreadyDecidedError(f"Appeal is already {appeal.status.value}")
        kind, obligation_id = referenced_obligation(appeal)
        obligation = lock_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
        before = _appeal_snapshot(appeal, obligation)
        appeal.status = AppealStatus.rejected
        appeal.decided_by_subject_id = decided_by
        appeal.decided_at = datetime.now(timezone.utc)
        appeal.decision_note = note
        db.flush()
        if obligation.status == ObligationStatus.appealed:
            release_obligation_override(db, kind=kind, obligation=obligation)
        record_audit_entry(
            db,
            entity_kind=ResourceKind.appeal,
            entity_id=appeal.id,
            action=AuditAction.appeal_rejected,
            performed_by=decided_by,
            organization_id=organization_id,
            before=before,
            after=_appeal_snapshot(appeal, obligation),
        )
        enqueue_notification(
            db,
            organization_id=organization_id,
            recipient_ref=f"student:{appeal.student_id}",
            notification_type="appeal_rejected",
            payload={"appeal_id": appeal.id},
        )
    invalidate_clearance_cache({clearance_scope(obligation)})
    logger.info(
        "appeal_rejected",
        appeal_id=appeal_id,
        organization_id=organization_id,
        obligation_status=obligation.status.value,
    )
    return appeal
