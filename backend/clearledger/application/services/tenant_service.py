import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clearledger.application.errors import AlreadyConsumedError, NotFoundError, ValidationError
from clearledger.application.services.audit_service import record_audit_entry
from clearledger.config import settings
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.ledger_enums import PaymentStatus
from clearledger.domain.obligation_status import ObligationStatus
from clearledger.domain.organization_enums import OrganizationStatus, OrganizationTier
from clearledger.infrastructure.db.models import FeeAssignment, Fine, Organization, OrganizationInvite, Payment
from clearledger.infrastructure.db.session import atomic
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def serialize_organization(organization: Organization) -> dict:
    return {
        "id": organization.id,
        "name": organization.name,
        "contact_email": organization.contact_email,
        "tier": organization.tier,
        "status": organization.status,
        "student_count": organization.student_count,
        "created_at": organization.created_at,
        "updated_at": organization.updated_at,
    }


def _organization_snapshot(organization: Organization) -> dict:
    return {
        "name": organization.name,
        "tier": organization.tier.value,
        "status": organization.status.value,
        "student_count": organization.student_count,
    }


def get_organization(db: Session, organization_id: int) -> Organization:
    organization = db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")
    return organization


def get_organization_tier(db: Session, organization_id: int) -> OrganizationTier | None:
    return db.execute(select(Organization.tier).where(Organization.id == organization_id)).scalar_one_or_none()


def create_invite(
    db: Session,
    *,
    organization_name: str,
    contact_email: str,
    assigned_tier: OrganizationTier,
    created_by: int,
) -> OrganizationInvite:
    with atomic(db):
        invite = OrganizationInvite(
            token=secrets.token_urlsafe(32),
            organization_name=organization_name,
            contact_email=contact_email,
            assigned_tier=assigned_tier,
            created_by_subject_id=created_by,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.invite_ttl_hours),
        )
        db.add(invite)
        db.flush()
        record_audit_entry(
            db,
            entity_kind=ResourceKind.organization_invite,
            entity_id=invite.id,
            action=AuditAction.invite_created,
            performed_by=created_by,
            after={"organization_name": organization_name, "assigned_tier": assigned_tier.value},
        )
    logger.info("organization_invite_created", invite_id=invite.id, assigned_tier=assigned_tier.value)
    return invite


def create_organization_from_invite(db: Session, *, invite_token: str, performed_by: int) -> Organization:
    """Consume an onboarding invite exactly once and create its organization."""
    try:
        with atomic(db):
            invite = db.execute(
                select(OrganizationInvite).where(OrganizationInvite.token == invite_token).with_for_update()
            ).scalar_one_or_none()
            if invite is None:
                raise NotFoundError("Invite not found")
            if invite.consumed_at is not None:
                logger.warning("organization_invite_replayed", invite_id=invite.id)
                raise AlreadyConsumedError("Invite has already been consumed")
            if _as_utc(invite.expires_at) <= datetime.now(timezone.utc):
                logger.warning("organization_invite_expired", invite_id=invite.id)
                raise ValidationError("Invite has expired")

            organization = Organization(
                name=invite.organization_name,
                contact_email=invite.contact_email,
                tier=invite.assigned_tier,
                status=OrganizationStatus.active,
                student_count=0,
                invite_id=invite.id,
            )
            db.add(organization)
            invite.consumed_at = datetime.now(timezone.utc)
            db.flush()
            record_audit_entry(
                db,
                entity_kind=ResourceKind.organization,
                entity_id=organization.id,
                action=AuditAction.organization_created,
                performed_by=performed_by,
                organization_id=organization.id,
                after=_organization_snapshot(organization),
            )
    except IntegrityError as exc:
        # A concurrent consumer inserted the organization for this invite first.
        raise AlreadyConsumedError("Invite has already been consumed") from exc
    logger.info("organization_created_from_invite", organization_id=organization.id, invite_id=invite.id)
    return organization


def change_organization_tier(
    db: Session, *, organization_id: int, tier: OrganizationTier, performed_by: int
) -> Organization:
    with atomic(db):
        organization = db.execute(
            select(Organization).where(Organization.id == organization_id).with_for_update()
        ).scalar_one_or_none()
        if organization is None:
            raise NotFoundError("Organization not found")
        before = _organization_snapshot(organization)
        organization.tier = tier
        db.flush()
        record_audit_entry(
            db,
            entity_kind=ResourceKind.organization,
            entity_id=organization.id,
            action=AuditAction.organization_tier_changed,
            performed_by=performed_by,
            organization_id=organization.id,
            before=before,
            after=_organization_snapshot(organization),
        )
    logger.info("organization_tier_changed", organization_id=organization_id, tier=tier.value)
    return organization


def change_organization_status(
    db: Session, *, organization_id: int, status: OrganizationStatus, performed_by: int
) -> Organization:
    """Move an organization through its lifecycle. Organizations are never deleted."""
    with atomic(db):
        organization = db.execute(
            select(Organization).where(Organization.id == organization_id).with_for_update()
        ).scalar_one_or_none()
        if organization is None:
            raise NotFoundError("Organization not found")
        before = _organization_snapshot(organization)
        organization.status = status
        db.flush()
        record_audit_entry(
            db,
            entity_kind=ResourceKind.organization,
            entity_id=organization.id,
            action=AuditAction.organization_status_changed,
            performed_by=performed_by,
            organization_id=organization.id,
            before=before,
            after=_organization_snapshot(organization),
        )
    logger.info("organization_status_changed", organization_id=organization_id, status=status.value)
    return organization


def _sum_amount(db: Session, column, *conditions) -> Decimal:
    total = db.execute(select(func.coalesce(func.sum(column), 0)).where(*conditions)).scalar_one()
    return Decimal(str(total)).quantize(Decimal("0.01"))


def get_organization_financial_summary(db: Session, *, organization_id: int) -> dict:
    organization = get_organization(db, organization_id)
    fee_total = _sum_amount(db, FeeAssignment.amount, FeeAssignment.organization_id == organization_id)
    fine_total = _sum_amount(db, Fine.amount, Fine.organization_id == organization_id)
    waived_total = _sum_amount(
        db,
        FeeAssignment.amount,
        FeeAssignment.organization_id == organization_id,
        FeeAssignment.status == ObligationStatus.waived,
    ) + _sum_amount(
        db,
        Fine.amount,
        Fine.organization_id == organization_id,
        Fine.status == ObligationStatus.waived,
    )
    verified_total = _sum_amount(
        db,
        Payment.amount,
        Payment.organization_id == organization_id,
        Payment.status == PaymentStatus.verified,
    )
    pending_total = _sum_amount(
        db,
        Payment.amount,
        Payment.organization_id == organization_id,
        Payment.status == PaymentStatus.pending,
    )
    summary = {
        "organization_id": organization_id,
        "total_obligation_amount": fee_total + fine_total,
        "total_fee_amount": fee_total,
        "total_fine_amount": fine_total,
        "total_waived_amount": waived_total,
        "total_verified_payment_amount": verified_total,
        "total_pending_payment_amount": pending_total,
        "total_outstanding_amount": max(fee_total + fine_total - waived_total - verified_total, Decimal("0.00")),
        "student_count": organization.student_count,
    }
    logger.info(
        "organization_financial_summary_computed",
        organization_id=organization_id,
        total_obligation_amount=str(summary["total_obligation_amount"]),
        total_verified_payment_amount=str(verified_total),
        student_count=organization.student_count,
    )
    return summary
