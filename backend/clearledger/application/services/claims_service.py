from datetime import datetime, timedelta, timezone
from typing import Any, cast

from jose import JWTError, jwt

from clearledger.application.errors import AuthorizationError
from clearledger.config import settings
from clearledger.domain.policy import DenyReason, Principal
from clearledger.domain.roles import OFFICER_ROLES, PrincipalRole
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)


def create_access_token(
    subject_id: int,
    role: PrincipalRole,
    *,
    tenant_id: int | None = None,
    verified: bool = True,
    expires_minutes: int | None = None,
) -> str:
    """Issue a token shaped like the identity provider's. Used by local tooling and tests."""
    lifetime = expires_minutes if expires_minutes is not None else settings.jwt_access_token_expire_minutes
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=lifetime)
    payload: dict[str, Any] = {
        "sub": str(subject_id),
        "role": role.value,
        "verified": verified,
        "exp": expires_at,
    }
    if tenant_id is not None:
        payload["tenant_id"] = tenant_id
    return cast(str, jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm))


def _decode_claims(token: str) -> dict[str, Any] | None:
    try:
        return cast(dict[str, Any], jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]))
    except JWTError:
        return None


def principal_from_claims(claims: dict[str, Any]) -> Principal | None:
    try:
        subject_id = int(claims["sub"])
        role = PrincipalRole(claims.get("role", PrincipalRole.none.value))
        raw_tenant_id = claims.get("tenant_id")
        tenant_id = int(raw_tenant_id) if raw_tenant_id is not None else None
    except (KeyError, TypeError, ValueError):
        return None
    verified = claims.get("verified")
    if not isinstance(verified, bool):
        return None
    if role == PrincipalRole.platform_admin:
        tenant_id = None
    elif role in OFFICER_ROLES and tenant_id is None:
        return None
    return Principal(subject_id=subject_id, role=role, tenant_id=tenant_id, verified=verified)


def resolve_principal(token: str | None) -> Principal:
    """Resolve the request principal from a bearer token, fresh on every call."""
    if not token:
        raise AuthorizationError(DenyReason.not_authenticated)
    claims = _decode_claims(token)
    if claims is None:
        logger.warning("claims_rejected_invalid_token")
        raise AuthorizationError(DenyReason.not_authenticated)
    principal = principal_from_claims(claims)
    if principal is None:
        logger.warning("claims_rejected_malformed", claim_keys=sorted(claims))
        raise AuthorizationError(DenyReason.not_authenticated)
    return principal
