"""Declarative access rules and their interpreter.

Each resource kind owns a :class:`ResourcePolicy`, a list of rule objects that
read like the row-level-security policies they mirror. :func:`evaluate` is the
single interpreter for all of them. It never touches storage: everything it
needs (principal claims, resource tenant, owner and the tenant's tier) arrives
in its arguments, so it is safe to call from any number of requests at once.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from clearledger.domain.organization_enums import OrganizationTier
from clearledger.domain.roles import PrincipalRole


class Operation(str, Enum):
    read = "read"
    create = "create"
    update = "update"
    delete = "delete"
    privileged_read = "privileged_read"


class DenyReason(str, Enum):
    not_authenticated = "NOT_AUTHENTICATED"
    tenant_mismatch = "TENANT_MISMATCH"
    role_insufficient = "ROLE_INSUFFICIENT"
    tier_insufficient = "TIER_INSUFFICIENT"
    pii_restricted = "PII_RESTRICTED"
    reason_required = "REASON_REQUIRED"


@dataclass(frozen=True)
class Principal:
    subject_id: int
    role: PrincipalRole
    tenant_id: int | None = None
    verified: bool = False


@dataclass(frozen=True)
class ResourceDescriptor:
    kind: str
    tenant_id: int | None = None
    owner_subject_id: int | None = None
    required_tier: OrganizationTier | None = None
    tenant_tier: OrganizationTier | None = None
    entity_id: int | None = None


@dataclass(frozen=True)
class TenantScoped:
    operations: frozenset[Operation]


@dataclass(frozen=True)
class RoleGated:
    operations: frozenset[Operation]
    allowed_roles: frozenset[PrincipalRole]


@dataclass(frozen=True)
class TierGated:
    operations: frozenset[Operation]
    minimum_tier: OrganizationTier
    allowed_roles: frozenset[PrincipalRole] | None = None


@dataclass(frozen=True)
class SelfAccess:
    operations: frozenset[Operation]


@dataclass(frozen=True)
class PlatformCrossTenant:
    operations: frozenset[Operation]


@dataclass(frozen=True)
class PrivilegedAudited:
    operations: frozenset[Operation] = frozenset({Operation.privileged_read})


PolicyRule = Union[TenantScoped, RoleGated, TierGated, SelfAccess, PlatformCrossTenant, PrivilegedAudited]


@dataclass(frozen=True)
class ResourcePolicy:
    rules: tuple[PolicyRule, ...] = field(default_factory=tuple)
    contains_subject_pii: bool = False


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None
    requires_audit: bool = False

    @classmethod
    def allow(cls, *, requires_audit: bool = False) -> "Decision":
        return cls(allowed=True, requires_audit=requires_audit)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)


# Most specific first: used when no rule grants and several failed differently.
_DENY_PRIORITY = (DenyReason.tenant_mismatch, DenyReason.tier_insufficient, DenyReason.role_insufficient)


def _tenant_matches(principal: Principal, resource: ResourceDescriptor) -> bool:
    return principal.tenant_id is not None and principal.tenant_id == resource.tenant_id


def _check_rule(rule: PolicyRule, principal: Principal, resource: ResourceDescriptor) -> DenyReason | None:
    """Return ``None`` when ``rule`` grants access, else why it did not."""
    if isinstance(rule, TenantScoped):
        return None if _tenant_matches(principal, resource) else DenyReason.tenant_mismatch

    if isinstance(rule, RoleGated):
        if not _tenant_matches(principal, resource):
            return DenyReason.tenant_mismatch
        return None if principal.role in rule.allowed_roles else DenyReason.role_insufficient

    if isinstance(rule, TierGated):
        if not _tenant_matches(principal, resource):
            return DenyReason.tenant_mismatch
        if rule.allowed_roles is not None and principal.role not in rule.allowed_roles:
            return DenyReason.role_insufficient
        required = rule.minimum_tier
        if resource.required_tier is not None and resource.required_tier.rank > required.rank:
            required = resource.required_tier
        if resource.tenant_tier is None or not resource.tenant_tier.includes(required):
            return DenyReason.tier_insufficient
        return None

    if isinstance(rule, SelfAccess):
        if principal.role != PrincipalRole.student:
            return DenyReason.role_insufficient
        if resource.owner_subject_id is None or principal.subject_id != resource.owner_subject_id:
            return DenyReason.role_insufficient
        return None

    if isinstance(rule, PlatformCrossTenant):
        return None if principal.role == PrincipalRole.platform_admin else DenyReason.role_insufficient

    # PrivilegedAudited rules only open the privileged_read path handled in evaluate().
    return DenyReason.role_insufficient


def _evaluate_privileged_read(
    principal: Principal, policy: ResourcePolicy | None, access_reason: str | None
) -> Decision:
    if principal.role != PrincipalRole.platform_admin:
        return Decision.deny(DenyReason.role_insufficient)
    if access_reason is None or not access_reason.strip():
        return Decision.deny(DenyReason.reason_required)
    if policy is None or not any(isinstance(rule, PrivilegedAudited) for rule in policy.rules):
        return Decision.deny(DenyReason.role_insufficient)
    return Decision.allow(requires_audit=True)


def evaluate(
    principal: Principal | None,
    resource: ResourceDescriptor,
    operation: Operation,
    *,
    policies: dict[str, ResourcePolicy],
    access_reason: str | None = None,
) -> Decision:
    if principal is None or not principal.verified or principal.role == PrincipalRole.none:
        return Decision.deny(DenyReason.not_authenticated)

    if (
        principal.tenant_id is not None
        and resource.tenant_id is not None
        and principal.tenant_id != resource.tenant_id
    ):
        return Decision.deny(DenyReason.tenant_mismatch)

    policy = policies.get(resource.kind)

    if operation == Operation.privileged_read:
        return _evaluate_privileged_read(principal, policy, access_reason)

    if policy is not None and policy.contains_subject_pii and principal.role == PrincipalRole.platform_admin:
        return Decision.deny(DenyReason.pii_restricted)

    failures: set[DenyReason] = set()
    for rule in policy.rules if policy is not None else ():
        if operation not in rule.operations:
            continue
        failure = _check_rule(rule, principal, resource)
        if failure is None:
            return Decision.allow()
        failures.add(failure)

    for reason in _DENY_PRIORITY:
        if reason in failures:
            return Decision.deny(reason)
    return Decision.deny(DenyReason.role_insufficient)
