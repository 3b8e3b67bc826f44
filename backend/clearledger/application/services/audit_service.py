"""Append-only audit trail.

This module only appends and reads. Entries are written in the caller's
transaction, so a rolled-back mutation leaves no entry behind and a failed
audit write takes the mutation down with it.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from clearledger.domain.audit_actions import AuditAction
from clearledger.infrastructure.db.models import AuditEntry
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)


def record_audit_entry(
    db: Session,
    *,
    entity_kind: str,
    entity_id: int | None,
    action: AuditAction,
    performed_by: int,
    organization_id: int | None = None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    access_reason: str | None = None,
) -> AuditEntry:
    entry = AuditEntry(
        entity_kind=entity_kind,
        entity_id=entity_id,
        action=action.value,
        before_snapshot=before,
        after_snapshot=after,
        performed_by_subject_id=performed_by,
        organization_id=organization_id,
        access_reason=access_reason,
    )
    db.add(entry)
    db.flush()
    logger.info(
        "audit_entry_recorded",
        audit_entry_id=entry.id,
        entity_kind=entity_kind,
        entity_id=entity_id,
        action=action.value,
        performed_by=performed_by,
        organization_id=organization_id,
    )
    return entry


def build_audit_entries_query(
    *,
    organization_id: int | None = None,
    entity_kind: str | None = None,
    entity_id: int | None = None,
    action: str | None = None,
):
    query = select(AuditEntry).order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
    if organization_id is not None:
        query = query.where(AuditEntry.organization_id == organization_id)
    if entity_kind is not None:
        query = query.where(AuditEntry.entity_kind == entity_kind)
    if entity_id is not None:
        query = query.where(AuditEntry.entity_id == entity_id)
    if action is not None:
        query = query.where(AuditEntry.action == action)
    return query


def serialize_audit_entry(entry: AuditEntry) -> dict:
    return {
        "id": entry.id,
        "entity_kind": entry.entity_kind,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "before_snapshot": entry.before_snapshot,
        "after_snapshot": entry.after_snapshot,
        "performed_by_subject_id": entry.performed_by_subject_id,
        "organization_id": entry.organization_id,
        "access_reason": entry.access_reason,
        "created_at": entry.created_at,
    }
