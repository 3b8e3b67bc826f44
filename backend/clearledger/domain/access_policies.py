"""Access rules per resource kind.

Resource kinds without an entry (for example ``notification``) get no access
at all, the same way a table with row-level security enabled and no policy
returns nothing.
"""

from clearledger.domain.organization_enums import OrganizationTier
from clearledger.domain.policy import (
    Operation,
    PlatformCrossTenant,
    PrivilegedAudited,
    ResourcePolicy,
    RoleGated,
    SelfAccess,
    TenantScoped,
    TierGated,
)
from clearledger.domain.roles import MANAGING_ROLES, OFFICER_ROLES, PrincipalRole

READ = frozenset({Operation.read})
WRITE = frozenset({Operation.create, Operation.update})
CREATE = frozenset({Operation.create})
UPDATE = frozenset({Operation.update})

ORG_ADMIN_ONLY = frozenset({PrincipalRole.org_admin})


class ResourceKind:
    organization = "organization"
    organization_invite = "organization_invite"
    organization_report = "organization_report"
    audit_entry = "audit_entry"
    student = "student"
    clearance_period = "clearance_period"
    fee_type = "fee_type"
    fee_assignment = "fee_assignment"
    fine = "fine"
    payment = "payment"
    waiver = "waiver"
    appeal = "appeal"
    clearance = "clearance"
    notification = "notification"


RESOURCE_POLICIES: dict[str, ResourcePolicy] = {
    ResourceKind.organization: ResourcePolicy(
        rules=(
            PlatformCrossTenant(READ | WRITE),
            TenantScoped(READ),
        )
    ),
    ResourceKind.organization_invite: ResourcePolicy(rules=(PlatformCrossTenant(READ | CREATE),)),
    ResourceKind.organization_report: ResourcePolicy(
        rules=(TierGated(READ, minimum_tier=OrganizationTier.plus, allowed_roles=MANAGING_ROLES),)
    ),
    ResourceKind.audit_entry: ResourcePolicy(
        rules=(
            PlatformCrossTenant(READ),
            TierGated(READ, minimum_tier=OrganizationTier.premium, allowed_roles=ORG_ADMIN_ONLY),
        )
    ),
    ResourceKind.student: ResourcePolicy(
        rules=(
            RoleGated(READ, OFFICER_ROLES),
            RoleGated(WRITE, MANAGING_ROLES),
            SelfAccess(READ),
            PrivilegedAudited(),
        ),
        contains_subject_pii=True,
    ),
    ResourceKind.clearance_period: ResourcePolicy(
        rules=(
            TenantScoped(READ),
            RoleGated(WRITE, MANAGING_ROLES),
        )
    ),
    ResourceKind.fee_type: ResourcePolicy(
        rules=(
            TenantScoped(READ),
            RoleGated(WRITE, MANAGING_ROLES),
        )
    ),
    ResourceKind.fee_assignment: ResourcePolicy(
        rules=(
            RoleGated(READ, OFFICER_ROLES),
            RoleGated(WRITE, MANAGING_ROLES),
            SelfAccess(READ),
        )
    ),
    ResourceKind.fine: ResourcePolicy(
        rules=(
            RoleGated(READ | CREATE, OFFICER_ROLES),
            RoleGated(UPDATE, MANAGING_ROLES),
            SelfAccess(READ),
        )
    ),
    ResourceKind.payment: ResourcePolicy(
        rules=(
            RoleGated(READ | CREATE, OFFICER_ROLES),
            RoleGated(UPDATE, MANAGING_ROLES),
            SelfAccess(READ | CREATE),
        )
    ),
    ResourceKind.waiver: ResourcePolicy(
        rules=(
            RoleGated(READ, OFFICER_ROLES),
            RoleGated(CREATE, MANAGING_ROLES),
            RoleGated(UPDATE, ORG_ADMIN_ONLY),
            SelfAccess(READ),
        )
    ),
    ResourceKind.appeal: ResourcePolicy(
        rules=(
            RoleGated(READ, OFFICER_ROLES),
            RoleGated(UPDATE, MANAGING_ROLES),
            SelfAccess(READ | CREATE),
        )
    ),
    ResourceKind.clearance: ResourcePolicy(
        rules=(
            RoleGated(READ, OFFICER_ROLES),
            RoleGated(UPDATE, ORG_ADMIN_ONLY),
            SelfAccess(READ),
        )
    ),
}
