from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clearledger.application.services.clearance_service import (
    clear_clearance_override,
    compute_blocking_items,
    compute_clearance_status,
    get_clearance,
    override_clearance,
    serialize_clearance_response,
)
from clearledger.application.services.obligation_service import get_clearance_period
from clearledger.application.services.policy_service import authorize
from clearledger.application.services.student_service import get_student_in_organization
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.policy import Operation, Principal
from clearledger.infrastructure.db.session import get_db
from clearledger.interfaces.api.v1.dependencies.auth import get_current_principal, require_tenant_id
from clearledger.interfaces.api.v1.schemas.clearance import ClearanceOverride, ClearanceResponse

router = APIRouter(prefix="/students/{student_id}/clearances", tags=["clearances"])


def _clearance_view(db: Session, *, student_id: int, organization_id: int, period_id: int) -> dict:
    blocking = compute_blocking_items(
        db, student_id=student_id, organization_id=organization_id, period_id=period_id
    )
    return serialize_clearance_response(
        get_clearance(db, student_id=student_id, organization_id=organization_id, period_id=period_id),
        student_id=student_id,
        organization_id=organization_id,
        period_id=period_id,
        status=compute_clearance_status(
            db, student_id=student_id, organization_id=organization_id, period_id=period_id
        ),
        blocking=blocking,
    )


@router.get(
    "/{period_id}",
    response_model=ClearanceResponse,
    summary="Get clearance",
    description="Clearance status for one period with the fines and required fees still blocking it.",
)
def get_clearance_detail(
    student_id: int,
    period_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    student = get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
    authorize(
        db,
        principal,
        ResourceKind.clearance,
        Operation.read,
        tenant_id=organization_id,
        owner_subject_id=student.subject_id,
    )
    get_clearance_period(db, period_id=period_id, organization_id=organization_id)
    return _clearance_view(db, student_id=student_id, organization_id=organization_id, period_id=period_id)


@router.put("/{period_id}/override", response_model=ClearanceResponse, summary="Override clearance")
def override_clearance_endpoint(
    student_id: int,
    period_id: int,
    payload: ClearanceOverride,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.clearance, Operation.update, tenant_id=organization_id)
    get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
    override_clearance(
        db,
        student_id=student_id,
        organization_id=organization_id,
        period_id=period_id,
        reason=payload.reason,
        performed_by=principal.subject_id,
    )
    return _clearance_view(db, student_id=student_id, organization_id=organization_id, period_id=period_id)


@router.delete("/{period_id}/override", response_model=ClearanceResponse, summary="Clear clearance override")
def clear_clearance_override_endpoint(
    student_id: int,
    period_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.clearance, Operation.update, tenant_id=organization_id)
    clear_clearance_override(
        db,
        student_id=student_id,
        organization_id=organization_id,
        period_id=period_id,
        performed_by=principal.subject_id,
    )
    return _clearance_view(db, student_id=student_id, organization_id=organization_id, period_id=period_id)
