from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from clearledger.application.services.obligation_service import (
    assign_fee,
    create_clearance_period,
    create_fee_type,
    issue_fine,
    list_clearance_periods,
    list_fee_types,
    list_student_obligations,
    serialize_obligation,
)
from clearledger.application.services.policy_service import authorize
from clearledger.application.services.student_service import get_student_in_organization
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.ledger_enums import ObligationKind
from clearledger.domain.policy import Operation, Principal
from clearledger.infrastructure.db.session import get_db
from clearledger.interfaces.api.v1.dependencies.auth import get_current_principal, require_tenant_id
from clearledger.interfaces.api.v1.schemas.catalog import (
    ClearancePeriodCreate,
    ClearancePeriodResponse,
    FeeAssignmentCreate,
    FeeTypeCreate,
    FeeTypeResponse,
    FineCreate,
    ObligationResponse,
)

router = APIRouter(tags=["catalog"])


@router.post(
    "/clearance-periods",
    response_model=ClearancePeriodResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create clearance period",
    description="Creates the period and opens a pending clearance record for every active student.",
)
def create_clearance_period_endpoint(
    payload: ClearancePeriodCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.clearance_period, Operation.create, tenant_id=organization_id)
    return create_clearance_period(
        db,
        organization_id=organization_id,
        name=payload.name,
        starts_on=payload.starts_on,
        ends_on=payload.ends_on,
        performed_by=principal.subject_id,
    )


@router.get("/clearance-periods", response_model=list[ClearancePeriodResponse], summary="List clearance periods")
def list_clearance_periods_endpoint(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.clearance_period, Operation.read, tenant_id=organization_id)
    return list_clearance_periods(db, organization_id=organization_id)


@router.post(
    "/fee-types",
    response_model=FeeTypeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create fee type",
)
def create_fee_type_endpoint(
    payload: FeeTypeCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.fee_type, Operation.create, tenant_id=organization_id)
    return create_fee_type(
        db,
        organization_id=organization_id,
        period_id=payload.period_id,
        name=payload.name,
        amount=payload.amount,
        required_for_clearance=payload.required_for_clearance,
        performed_by=principal.subject_id,
    )


@router.get("/fee-types", response_model=list[FeeTypeResponse], summary="List fee types")
def list_fee_types_endpoint(
    period_id: int | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.fee_type, Operation.read, tenant_id=organization_id)
    return list_fee_types(db, organization_id=organization_id, period_id=period_id)


@router.post(
    "/fee-assignments",
    response_model=ObligationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Assign fee to student",
)
def assign_fee_endpoint(
    payload: FeeAssignmentCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.fee_assignment, Operation.create, tenant_id=organization_id)
    assignment = assign_fee(
        db,
        organization_id=organization_id,
        student_id=payload.student_id,
        fee_type_id=payload.fee_type_id,
        amount=payload.amount,
        performed_by=principal.subject_id,
    )
    return serialize_obligation(db, ObligationKind.fee, assignment, description=assignment.fee_type.name)


@router.post(
    "/fines",
    response_model=ObligationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue fine",
)
def issue_fine_endpoint(
    payload: FineCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.fine, Operation.create, tenant_id=organization_id)
    fine = issue_fine(
        db,
        organization_id=organization_id,
        student_id=payload.student_id,
        period_id=payload.period_id,
        reason=payload.reason,
        amount=payload.amount,
        issued_by=principal.subject_id,
    )
    return serialize_obligation(db, ObligationKind.fine, fine, description=fine.reason)


@router.get(
    "/students/{student_id}/obligations",
    response_model=list[ObligationResponse],
    summary="List student obligations",
    description="Fees and fines of one student with their remaining balances. Students may read their own.",
)
def list_student_obligations_endpoint(
    student_id: int,
    period_id: int | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    student = get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
    for kind in (ResourceKind.fee_assignment, ResourceKind.fine):
        authorize(
            db,
            principal,
            kind,
            Operation.read,
            tenant_id=organization_id,
            owner_subject_id=student.subject_id,
        )
    return list_student_obligations(db, organization_id=organization_id, student_id=student_id, period_id=period_id)
