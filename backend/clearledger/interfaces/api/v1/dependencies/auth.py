from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from clearledger.application.errors import AuthorizationError
from clearledger.application.services.claims_service import resolve_principal
from clearledger.domain.policy import DenyReason, Principal
from clearledger.domain.roles import PrincipalRole
from clearledger.infrastructure.db.session import apply_rls_settings, get_db
from clearledger.infrastructure.logging import bind_principal_context

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    principal = resolve_principal(credentials.credentials if credentials is not None else None)
    apply_rls_settings(
        db,
        subject_id=principal.subject_id,
        organization_id=principal.tenant_id,
        role=principal.role.value,
    )
    bind_principal_context(
        subject_id=principal.subject_id,
        organization_id=principal.tenant_id,
        role=principal.role.value,
    )
    return principal


def require_verified(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.verified or principal.role == PrincipalRole.none:
        raise AuthorizationError(DenyReason.not_authenticated)
    return principal


def require_tenant_id(principal: Principal) -> int:
    """Organization scope of a tenant-bound request, taken from the token and never from the client."""
    if not principal.verified or principal.role == PrincipalRole.none:
        raise AuthorizationError(DenyReason.not_authenticated)
    if principal.tenant_id is None:
        raise AuthorizationError(DenyReason.tenant_mismatch)
    return principal.tenant_id
