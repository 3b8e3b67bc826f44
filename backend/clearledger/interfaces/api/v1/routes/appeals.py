from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from clearledger.application.services.ledger_service import get_obligation
from clearledger.application.services.policy_service import authorize
from clearledger.application.services.student_service import get_student
from clearledger.application.services.waiver_service import approve_appeal, file_appeal, get_appeal, reject_appeal
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.policy import Operation, Principal
from clearledger.infrastructure.db.session import get_db
from clearledger.interfaces.api.v1.dependencies.auth import get_current_principal, require_tenant_id
from clearledger.interfaces.api.v1.schemas.waiver import AppealCreate, AppealDecision, AppealResponse

router = APIRouter(prefix="/appeals", tags=["appeals"])


@router.post(
    "",
    response_model=AppealResponse,
    status_code=status.HTTP_201_CREATED,
    summary="File appeal",
    description="Students appeal their own fees and fines. The obligation stays `appealed` until decided.",
)
def file_appeal_endpoint(
    payload: AppealCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    obligation = get_obligation(
        db, kind=payload.kind, obligation_id=payload.obligation_id, organization_id=organization_id
    )
    authorize(
        db,
        principal,
        ResourceKind.appeal,
        Operation.create,
        tenant_id=organization_id,
        owner_subject_id=get_student(db, obligation.student_id).subject_id,
    )
    return file_appeal(
        db,
        kind=payload.kind,
        obligation_id=payload.obligation_id,
        organization_id=organization_id,
        reason=payload.reason,
        filed_by=principal.subject_id,
    )


@router.get("/{appeal_id}", response_model=AppealResponse, summary="Get appeal")
def get_appeal_detail(
    appeal_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    appeal = get_appeal(db, appeal_id=appeal_id, organization_id=organization_id)
    authorize(
        db,
        principal,
        ResourceKind.appeal,
        Operation.read,
        tenant_id=organization_id,
        owner_subject_id=get_student(db, appeal.student_id).subject_id,
        entity_id=appeal.id,
    )
    return appeal


@router.post(
    "/{appeal_id}/approve",
    response_model=AppealResponse,
    summary="Approve appeal",
    description="Waives the appealed obligation; the waiver records the appeal it came from.",
)
def approve_appeal_endpoint(
    appeal_id: int,
    payload: AppealDecision,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.appeal, Operation.update, tenant_id=organization_id, entity_id=appeal_id)
    return approve_appeal(
        db, appeal_id=appeal_id, organization_id=organization_id, decided_by=principal.subject_id, note=payload.note
    )


@router.post("/{appeal_id}/reject", response_model=AppealResponse, summary="Reject appeal")
def reject_appeal_endpoint(
    appeal_id: int,
    payload: AppealDecision,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.appeal, Operation.update, tenant_id=organization_id, entity_id=appeal_id)
    return reject_appeal(
        db, appeal_id=appeal_id, organization_id=organization_id, decided_by=principal.subject_id, note=payload.note
    )
