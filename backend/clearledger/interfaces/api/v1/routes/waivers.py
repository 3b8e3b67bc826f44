from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from clearledger.application.services.ledger_service import get_obligation
from clearledger.application.services.policy_service import authorize
from clearledger.application.services.student_service import get_student
from clearledger.application.services.waiver_service import (
    approve_waiver,
    get_waiver,
    grant_waiver,
    referenced_obligation,
    reject_waiver,
    request_waiver,
)
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.policy import Operation, Principal
from clearledger.infrastructure.db.session import get_db
from clearledger.interfaces.api.v1.dependencies.auth import get_current_principal, require_tenant_id
from clearledger.interfaces.api.v1.schemas.waiver import (
    DecisionReject,
    WaiverGrant,
    WaiverRequestCreate,
    WaiverResponse,
)

router = APIRouter(prefix="/waivers", tags=["waivers"])


@router.post(
    "",
    response_model=WaiverResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Grant waiver",
    description="Approve a waiver directly. The obligation becomes `waived` in the same transaction.",
)
def grant_waiver_endpoint(
    payload: WaiverGrant,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.waiver, Operation.update, tenant_id=organization_id)
    return grant_waiver(
        db,
        kind=payload.kind,
        obligation_id=payload.obligation_id,
        organization_id=organization_id,
        reason=payload.reason,
        approver_subject_id=principal.subject_id,
    )


@router.post(
    "/requests",
    response_model=WaiverResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request waiver",
    description="Open a pending waiver for an organization admin to decide.",
)
def request_waiver_endpoint(
    payload: WaiverRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.waiver, Operation.create, tenant_id=organization_id)
    return request_waiver(
        db,
        kind=payload.kind,
        obligation_id=payload.obligation_id,
        organization_id=organization_id,
        reason=payload.reason,
        requested_by=principal.subject_id,
    )


@router.get("/{waiver_id}", response_model=WaiverResponse, summary="Get waiver")
def get_waiver_detail(
    waiver_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    waiver = get_waiver(db, waiver_id=waiver_id, organization_id=organization_id)
    kind, obligation_id = referenced_obligation(waiver)
    obligation = get_obligation(db, kind=kind, obligation_id=obligation_id, organization_id=organization_id)
    authorize(
        db,
        principal,
        ResourceKind.waiver,
        Operation.read,
        tenant_id=organization_id,
        owner_subject_id=get_student(db, obligation.student_id).subject_id,
        entity_id=waiver.id,
    )
    return waiver


@router.post("/{waiver_id}/approve", response_model=WaiverResponse, summary="Approve waiver")
def approve_waiver_endpoint(
    waiver_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.waiver, Operation.update, tenant_id=organization_id, entity_id=waiver_id)
    return approve_waiver(
        db, waiver_id=waiver_id, organization_id=organization_id, approver_subject_id=principal.subject_id
    )


@router.post(
    "/{waiver_id}/reject",
    response_model=WaiverResponse,
    summary="Reject or revoke waiver",
    description="Revoking an approved waiver restores the obligation status supported by verified payments.",
)
def reject_waiver_endpoint(
    waiver_id: int,
    payload: DecisionReject,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.waiver, Operation.update, tenant_id=organization_id, entity_id=waiver_id)
    return reject_waiver(
        db,
        waiver_id=waiver_id,
        organization_id=organization_id,
        performed_by=principal.subject_id,
        reason=payload.reason,
    )
