from enum import Enum


class PrincipalRole(str, Enum):
    platform_admin = "platform_admin"
    org_admin = "org_admin"
    org_manager = "org_manager"
    org_staff = "org_staff"
    student = "student"
    none = "none"


OFFICER_ROLES = frozenset({PrincipalRole.org_admin, PrincipalRole.org_manager, PrincipalRole.org_staff})
MANAGING_ROLES = frozenset({PrincipalRole.org_admin, PrincipalRole.org_manager})
