import pytest

from clearledger.application.errors import AuthorizationError
from clearledger.application.services.claims_service import (
    create_access_token,
    principal_from_claims,
    resolve_principal,
)
from clearledger.domain.policy import DenyReason
from clearledger.domain.roles import PrincipalRole


def test_resolve_principal_reads_tenant_and_role():
    """
    Validate tokens resolve into principals.

    1. Issue a token for an org manager of tenant 10.
    2. Call resolve_principal with the token.
    3. Read subject, role and tenant.
    4. Validate they match the issued claims.
    """
    principal = resolve_principal(create_access_token(42, PrincipalRole.org_manager, tenant_id=10))
    assert principal.subject_id == 42
    assert principal.role == PrincipalRole.org_manager
    assert principal.tenant_id == 10
    assert principal.verified is True


def test_resolve_principal_rejects_missing_or_invalid_token():
    """
    Validate broken tokens are not authenticated.

    1. Prepare a missing token and a tampered token.
    2. Call resolve_principal with each.
    3. Catch the AuthorizationError.
    4. Validate the reason is NOT_AUTHENTICATED both times.
    """
    tampered = create_access_token(42, PrincipalRole.org_admin, tenant_id=10) + "x"
    for token in (None, tampered):
        with pytest.raises(AuthorizationError) as exc:
            resolve_principal(token)
        assert exc.value.reason == DenyReason.not_authenticated


def test_expired_token_is_not_authenticated():
    """
    Validate expired tokens are rejected.

    1. Issue a token that expired one minute ago.
    2. Call resolve_principal with it.
    3. Catch the AuthorizationError.
    4. Validate the reason is NOT_AUTHENTICATED.
    """
    token = create_access_token(42, PrincipalRole.student, tenant_id=10, expires_minutes=-1)
    with pytest.raises(AuthorizationError) as exc:
        resolve_principal(token)
    assert exc.value.reason == DenyReason.not_authenticated


def test_principal_from_claims_normalizes_platform_and_officer_tenants():
    """
    Validate tenant claims are normalized per role.

    1. Build claims for a platform admin that carries a tenant id.
    2. Build claims for an officer without a tenant id.
    3. Call principal_from_claims on both.
    4. Validate the admin loses its tenant and the officer is refused.
    """
    admin = principal_from_claims({"sub": "1", "role": "platform_admin", "tenant_id": 9, "verified": True})
    officer = principal_from_claims({"sub": "2", "role": "org_staff", "verified": True})
    assert admin.tenant_id is None
    assert officer is None


def test_principal_from_claims_requires_boolean_verified_flag():
    """
    Validate the verified claim must be a real boolean.

    1. Build claims with verified given as a string.
    2. Build claims with no verified claim.
    3. Call principal_from_claims on both.
    4. Validate neither resolves to a principal.
    """
    assert principal_from_claims({"sub": "3", "role": "student", "tenant_id": 1, "verified": "true"}) is None
    assert principal_from_claims({"sub": "3", "role": "student", "tenant_id": 1}) is None
