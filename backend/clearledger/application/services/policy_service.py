from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session

from clearledger.application.errors import AuditWriteError, AuthorizationError
from clearledger.application.services.audit_service import record_audit_entry
from clearledger.application.services.tenant_service import get_organization_tier
from clearledger.domain.access_policies import RESOURCE_POLICIES
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.organization_enums import OrganizationTier
from clearledger.domain.policy import Decision, Operation, Principal, ResourceDescriptor, evaluate
from clearledger.infrastructure.alerting import report_consistency_violation
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def build_descriptor(
    db: Session,
    kind: str,
    *,
    tenant_id: int | None = None,
    owner_subject_id: int | None = None,
    entity_id: int | None = None,
    required_tier: OrganizationTier | None = None,
) -> ResourceDescriptor:
    tenant_tier = get_organization_tier(db, tenant_id) if tenant_id is not None else None
    return ResourceDescriptor(
        kind=kind,
        tenant_id=tenant_id,
        owner_subject_id=owner_subject_id,
        required_tier=required_tier,
        tenant_tier=tenant_tier,
        entity_id=entity_id,
    )


def _enforce(principal: Principal, descriptor: ResourceDescriptor, operation: Operation, decision: Decision) -> None:
    if decision.allowed:
        return
    logger.warning(
        "authorization_denied",
        subject_id=principal.subject_id,
        role=principal.role.value,
        resource_kind=descriptor.kind,
        resource_tenant_id=descriptor.tenant_id,
        entity_id=descriptor.entity_id,
        operation=operation.value,
        reason=decision.reason.value,
    )
    raise AuthorizationError(decision.reason)


def authorize(
    db: Session,
    principal: Principal,
    kind: str,
    operation: Operation,
    *,
    tenant_id: int | None = None,
    owner_subject_id: int | None = None,
    entity_id: int | None = None,
) -> Decision:
    """Evaluate access against the resource policy table and raise on denial."""
    descriptor = build_descriptor(
        db, kind, tenant_id=tenant_id, owner_subject_id=owner_subject_id, entity_id=entity_id
    )
    decision = evaluate(principal, descriptor, operation, policies=RESOURCE_POLICIES)
    _enforce(principal, descriptor, operation, decision)
    return decision


def privileged_read(
    db: Session,
    *,
    principal: Principal,
    descriptor: ResourceDescriptor,
    access_reason: str | None,
    loader: Callable[[], T],
) -> T:
    """Cross-tenant read of PII by a platform admin.

    The access is audited and committed before any data is loaded. When the
    audit entry cannot be written nothing is returned.
    """
    decision = evaluate(
        principal,
        descriptor,
        Operation.privileged_read,
        policies=RESOURCE_POLICIES,
        access_reason=access_reason,
    )
    _enforce(principal, descriptor, Operation.privileged_read, decision)

    try:
        record_audit_entry(
            db,
            entity_kind=descriptor.kind,
            entity_id=descriptor.entity_id,
            action=AuditAction.privileged_read,
            performed_by=principal.subject_id,
            organization_id=descriptor.tenant_id,
            access_reason=access_reason.strip(),
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        report_consistency_violation(
            "privileged_read_audit_failed",
            subject_id=principal.subject_id,
            resource_kind=descriptor.kind,
            entity_id=descriptor.entity_id,
        )
        raise AuditWriteError("Privileged access could not be audited") from exc

    logger.info(
        "privileged_read_granted",
        subject_id=principal.subject_id,
        resource_kind=descriptor.kind,
        entity_id=descriptor.entity_id,
        organization_id=descriptor.tenant_id,
    )
    return loader()
