from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from clearledger.application.errors import ExternalDependencyError
from clearledger.application.services.policy_service import authorize
from clearledger.application.services.tenant_service import (
    change_organization_status,
    change_organization_tier,
    create_invite,
    create_organization_from_invite,
    get_organization,
    get_organization_financial_summary,
    serialize_organization,
)
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.policy import Operation, Principal
from clearledger.infrastructure.db.session import get_db
from clearledger.infrastructure.logging import get_logger
from clearledger.infrastructure.tasks.ledger_integrity_tasks import enqueue_ledger_integrity_task
from clearledger.interfaces.api.v1.dependencies.auth import get_current_principal, require_verified
from clearledger.interfaces.api.v1.schemas.organization import (
    IntegrityCheckTaskResponse,
    InviteCreate,
    InviteResponse,
    OrganizationFinancialSummaryResponse,
    OrganizationOnboard,
    OrganizationResponse,
    OrganizationStatusUpdate,
    OrganizationTierUpdate,
)

router = APIRouter(prefix="/organizations", tags=["organizations"])
logger = get_logger(__name__)


@router.post(
    "/invites",
    response_model=InviteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create onboarding invite",
    description="Platform admins issue a single-use invite that creates one organization at the assigned tier.",
)
def create_invite_endpoint(
    payload: InviteCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    authorize(db, principal, ResourceKind.organization_invite, Operation.create)
    return create_invite(
        db,
        organization_name=payload.organization_name,
        contact_email=payload.contact_email,
        assigned_tier=payload.assigned_tier,
        created_by=principal.subject_id,
    )


@router.post(
    "/onboard",
    response_model=OrganizationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create organization from invite",
    description="Consumes the invite token exactly once. Replays return 409.",
)
def onboard_organization(
    payload: OrganizationOnboard,
    principal: Principal = Depends(require_verified),
    db: Session = Depends(get_db),
):
    organization = create_organization_from_invite(
        db, invite_token=payload.invite_token, performed_by=principal.subject_id
    )
    return serialize_organization(organization)


@router.get("/{organization_id}", response_model=OrganizationResponse, summary="Get organization")
def get_organization_detail(
    organization_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    authorize(db, principal, ResourceKind.organization, Operation.read, tenant_id=organization_id)
    return serialize_organization(get_organization(db, organization_id))


@router.patch("/{organization_id}/tier", response_model=OrganizationResponse, summary="Change subscription tier")
def update_organization_tier(
    organization_id: int,
    payload: OrganizationTierUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    authorize(db, principal, ResourceKind.organization, Operation.update, tenant_id=organization_id)
    organization = change_organization_tier(
        db, organization_id=organization_id, tier=payload.tier, performed_by=principal.subject_id
    )
    return serialize_organization(organization)


@router.patch("/{organization_id}/status", response_model=OrganizationResponse, summary="Change lifecycle status")
def update_organization_status(
    organization_id: int,
    payload: OrganizationStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    authorize(db, principal, ResourceKind.organization, Operation.update, tenant_id=organization_id)
    organization = change_organization_status(
        db, organization_id=organization_id, status=payload.status, performed_by=principal.subject_id
    )
    return serialize_organization(organization)


@router.get(
    "/{organization_id}/financial-summary",
    response_model=OrganizationFinancialSummaryResponse,
    summary="Organization financial summary",
    description="Available to organization admins and managers on the plus tier and above.",
)
def get_financial_summary(
    organization_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    authorize(db, principal, ResourceKind.organization_report, Operation.read, tenant_id=organization_id)
    return get_organization_financial_summary(db, organization_id=organization_id)


@router.post(
    "/{organization_id}/integrity-checks",
    response_model=IntegrityCheckTaskResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue ledger integrity checks",
    description="Platform admins queue a read-only consistency sweep over one organization's ledger.",
    responses={503: {"description": "Task enqueue failed"}},
)
def enqueue_integrity_checks(
    organization_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    authorize(db, principal, ResourceKind.organization, Operation.update, tenant_id=organization_id)
    get_organization(db, organization_id)
    try:
        task_id = enqueue_ledger_integrity_task(organization_id=organization_id)
    except Exception as exc:
        logger.error("ledger_integrity_enqueue_failed", organization_id=organization_id, error=str(exc))
        raise ExternalDependencyError("Failed to enqueue integrity checks") from exc
    logger.info("ledger_integrity_enqueued", organization_id=organization_id, task_id=task_id)
    return {
        "task_id": task_id,
        "organization_id": organization_id,
        "status": "queued",
        "message": "Ledger integrity checks queued",
    }
