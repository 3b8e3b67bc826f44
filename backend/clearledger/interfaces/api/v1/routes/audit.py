from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from clearledger.application.services.audit_service import build_audit_entries_query, serialize_audit_entry
from clearledger.application.services.pagination_service import paginate_scalars
from clearledger.application.services.policy_service import authorize
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.policy import Operation, Principal
from clearledger.infrastructure.db.session import get_db
from clearledger.interfaces.api.v1.dependencies.auth import get_current_principal
from clearledger.interfaces.api.v1.dependencies.pagination import get_pagination_params
from clearledger.interfaces.api.v1.schemas.audit import AuditEntryListResponse
from clearledger.interfaces.api.v1.schemas.pagination import PaginationParams

router = APIRouter(tags=["audit"])


@router.get(
    "/audit-entries",
    response_model=AuditEntryListResponse,
    summary="List audit entries",
    description=(
        "Platform admins read across organizations and may filter by `organization_id`. Organization admins on "
        "the premium tier read their own organization's trail."
    ),
)
def list_audit_entries(
    organization_id: int | None = Query(default=None),
    entity_kind: str | None = Query(default=None),
    entity_id: int | None = Query(default=None),
    action: str | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    scope_id = principal.tenant_id if principal.tenant_id is not None else organization_id
    authorize(db, principal, ResourceKind.audit_entry, Operation.read, tenant_id=scope_id)
    items, meta = paginate_scalars(
        db,
        build_audit_entries_query(
            organization_id=scope_id,
            entity_kind=entity_kind,
            entity_id=entity_id,
            action=action,
        ),
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return {"items": [serialize_audit_entry(item) for item in items], "pagination": meta}
