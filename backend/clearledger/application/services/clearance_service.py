"""Per-period clearance derived from obligation state.

Blocking items are computed from the ledger on demand and cached in Redis
under a per-scope generation. Every commit that changes an obligation in
scope bumps the generation, so a result computed before that commit can
only land under a key nobody reads any more. The stored clearance row only
records the last computed status, plus the sticky officer override.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from clearledger.application.errors import NotFoundError, ValidationError
from clearledger.application.services.audit_service import record_audit_entry
from clearledger.config import settings
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.ledger_enums import ClearanceStatus
from clearledger.domain.obligation_status import SETTLED_STATUSES
from clearledger.infrastructure.cache.cache_service import bump_counters, get_json, read_counter, set_json
from clearledger.infrastructure.db.models import Clearance, ClearancePeriod, FeeAssignment, FeeType, Fine
from clearledger.infrastructure.db.session import atomic
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)


def clearance_cache_key(*, organization_id: int, student_id: int, period_id: int, generation: int = 0) -> str:
    return f"clearance_blocking:{organization_id}:{student_id}:{period_id}:{generation}"


def clearance_generation_key(*, organization_id: int, student_id: int, period_id: int) -> str:
    return f"clearance_generation:{organization_id}:{student_id}:{period_id}"


def invalidate_clearance_cache(scopes: set[tuple[int, int, int]]) -> None:
    """Retire cached blocking items for ``(organization_id, student_id, period_id)`` scopes."""
    bump_counters(
        *(
            clearance_generation_key(organization_id=organization_id, student_id=student_id, period_id=period_id)
            for organization_id, student_id, period_id in sorted(scopes)
        )
    )


def _serialize_blocking_fine(fine: Fine) -> dict:
    return {
        "id": fine.id,
        "reason": fine.reason,
        "amount": str(Decimal(fine.amount).quantize(Decimal("0.01"))),
        "status": fine.status.value,
    }


def _serialize_blocking_fee(assignment: FeeAssignment, fee_type_name: str) -> dict:
    return {
        "id": assignment.id,
        "fee_type_id": assignment.fee_type_id,
        "name": fee_type_name,
        "amount": str(Decimal(assignment.amount).quantize(Decimal("0.01"))),
        "status": assignment.status.value,
    }


def compute_blocking_items(
    db: Session,
    *,
    student_id: int,
    organization_id: int,
    period_id: int,
    use_cache: bool = True,
) -> dict[str, list[dict]]:
    scope = {"organization_id": organization_id, "student_id": student_id, "period_id": period_id}
    # Read before the ledger queries: a commit landing in between bumps it past this key.
    generation = read_counter(clearance_generation_key(**scope)) if use_cache else None
    cache_key = clearance_cache_key(**scope, generation=generation or 0)
    if generation is not None:
        cached = get_json(cache_key)
        if cached is not None:
            return {"fines": list(cached.get("fines", [])), "fees": list(cached.get("fees", []))}

    fines = (
        db.execute(
            select(Fine)
            .where(
                Fine.organization_id == organization_id,
                Fine.student_id == student_id,
                Fine.period_id == period_id,
                Fine.status.not_in(SETTLED_STATUSES),
            )
            .order_by(Fine.id)
        )
        .scalars()
        .all()
    )
    fee_rows = db.execute(
        select(FeeAssignment, FeeType.name)
        .join(FeeType, FeeType.id == FeeAssignment.fee_type_id)
        .where(
            FeeAssignment.organization_id == organization_id,
            FeeAssignment.student_id == student_id,
            FeeAssignment.period_id == period_id,
            FeeAssignment.status.not_in(SETTLED_STATUSES),
            FeeType.required_for_clearance.is_(True),
        )
        .order_by(FeeAssignment.id)
    ).all()

    blocking = {
        "fines": [_serialize_blocking_fine(fine) for fine in fines],
        "fees": [_serialize_blocking_fee(assignment, name) for assignment, name in fee_rows],
    }
    if generation is not None:
        set_json(cache_key, blocking, settings.clearance_cache_ttl_seconds)
    return blocking


def get_clearance(db: Session, *, student_id: int, organization_id: int, period_id: int) -> Clearance | None:
    return db.execute(
        select(Clearance).where(
            Clearance.student_id == student_id,
            Clearance.organization_id == organization_id,
            Clearance.period_id == period_id,
        )
    ).scalar_one_or_none()


def _status_from_blocking(blocking: dict[str, list[dict]]) -> ClearanceStatus:
    if blocking["fines"] or blocking["fees"]:
        return ClearanceStatus.not_cleared
    return ClearanceStatus.cleared


def compute_clearance_status(
    db: Session,
    *,
    student_id: int,
    organization_id: int,
    period_id: int,
    use_cache: bool = True,
) -> ClearanceStatus:
    stored = get_clearance(db, student_id=student_id, organization_id=organization_id, period_id=period_id)
    if stored is not None and stored.status == ClearanceStatus.overridden:
        return ClearanceStatus.overridden
    blocking = compute_blocking_items(
        db,
        student_id=student_id,
        organization_id=organization_id,
        period_id=period_id,
        use_cache=use_cache,
    )
    return _status_from_blocking(blocking)


def refresh_clearance(db: Session, *, student_id: int, organization_id: int, period_id: int) -> Clearance:
    """Recompute and store clearance inside the caller's transaction. Overrides are left alone."""
    clearance = db.execute(
        select(Clearance)
        .where(
            Clearance.student_id == student_id,
            Clearance.organization_id == organization_id,
            Clearance.period_id == period_id,
        )
        .with_for_update()
    ).scalar_one_or_none()
    if clearance is None:
        clearance = Clearance(
            organization_id=organization_id,
            student_id=student_id,
            period_id=period_id,
            status=ClearanceStatus.pending,
        )
        db.add(clearance)
    if clearance.status == ClearanceStatus.overridden:
        return clearance
    blocking = compute_blocking_items(
        db,
        student_id=student_id,
        organization_id=organization_id,
        period_id=period_id,
        use_cache=False,
    )
    clearance.status = _status_from_blocking(blocking)
    db.flush()
    return clearance


def open_clearance_records(db: Session, *, organization_id: int, period_id: int, student_ids: list[int]) -> int:
    """Create ``pending`` clearance rows for students that have none yet in this period."""
    existing = set(
        db.execute(
            select(Clearance.student_id).where(
                Clearance.organization_id == organization_id,
                Clearance.period_id == period_id,
            )
        )
        .scalars()
        .all()
    )
    created = 0
    for student_id in student_ids:
        if student_id in existing:
            continue
        db.add(
            Clearance(
                organization_id=organization_id,
                student_id=student_id,
                period_id=period_id,
                status=ClearanceStatus.pending,
            )
        )
        created += 1
    db.flush()
    return created


def _get_period(db: Session, *, organization_id: int, period_id: int) -> ClearancePeriod:
    period = db.execute(
        select(ClearancePeriod).where(
            ClearancePeriod.id == period_id,
            ClearancePeriod.organization_id == organization_id,
        )
    ).scalar_one_or_none()
    if period is None:
        raise NotFoundError("Clearance period not found")
    return period


def _clearance_snapshot(clearance: Clearance) -> dict:
    return {"status": clearance.status.value, "override_reason": clearance.override_reason}


def override_clearance(
    db: Session,
    *,
    student_id: int,
    organization_id: int,
    period_id: int,
    reason: str,
    performed_by: int,
) -> Clearance:
    if not reason or not reason.strip():
        raise ValidationError("An override reason is required")
    with atomic(db):
        _get_period(db, organization_id=organization_id, period_id=period_id)
        clearance = refresh_clearance(
            db, student_id=student_id, organization_id=organization_id, period_id=period_id
        )
        before = _clearance_snapshot(clearance)
        clearance.status = ClearanceStatus.overridden
        clearance.override_reason = reason.strip()
        clearance.overridden_by_subject_id = performed_by
        clearance.overridden_at = datetime.now(timezone.utc)
        db.flush()
        record_audit_entry(
            db,
            entity_kind=ResourceKind.clearance,
            entity_id=clearance.id,
            action=AuditAction.clearance_overridden,
            performed_by=performed_by,
            organization_id=organization_id,
            before=before,
            after=_clearance_snapshot(clearance),
        )
    invalidate_clearance_cache({(organization_id, student_id, period_id)})
    logger.info(
        "clearance_overridden",
        organization_id=organization_id,
        student_id=student_id,
        period_id=period_id,
        clearance_id=clearance.id,
    )
    return clearance


def clear_clearance_override(
    db: Session,
    *,
    student_id: int,
    organization_id: int,
    period_id: int,
    performed_by: int,
) -> Clearance:
    with atomic(db):
        clearance = db.execute(
            select(Clearance)
            .where(
                Clearance.student_id == student_id,
                Clearance.organization_id == organization_id,
                Clearance.period_id == period_id,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if clearance is None or clearance.status != ClearanceStatus.overridden:
            raise ValidationError("Clearance is not overridden")
        before = _clearance_snapshot(clearance)
        clearance.status = ClearanceStatus.pending
        clearance.override_reason = None
        clearance.overridden_by_subject_id = None
        clearance.overridden_at = None
        db.flush()
        clearance = refresh_clearance(
            db, student_id=student_id, organization_id=organization_id, period_id=period_id
        )
        record_audit_entry(
            db,
            entity_kind=ResourceKind.clearance,
            entity_id=clearance.id,
            action=AuditAction.clearance_override_cleared,
            performed_by=performed_by,
            organization_id=organization_id,
            before=before,
            after=_clearance_snapshot(clearance),
        )
    invalidate_clearance_cache({(organization_id, student_id, period_id)})
    logger.info(
        "clearance_override_cleared",
        organization_id=organization_id,
        student_id=student_id,
        period_id=period_id,
        status=clearance.status.value,
    )
    return clearance


def serialize_clearance_response(
    clearance: Clearance | None,
    *,
    student_id: int,
    organization_id: int,
    period_id: int,
    status: ClearanceStatus,
    blocking: dict[str, list[dict]],
) -> dict:
    return {
        "student_id": student_id,
        "organization_id": organization_id,
        "period_id": period_id,
        "status": status,
        "override_reason": clearance.override_reason if clearance is not None else None,
        "blocking_items": blocking,
    }
