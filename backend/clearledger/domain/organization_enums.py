from enum import Enum


class OrganizationTier(str, Enum):
    basic = "basic"
    plus = "plus"
    premium = "premium"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    def includes(self, required: "OrganizationTier") -> bool:
        return self.rank >= required.rank


_TIER_RANKS = {
    OrganizationTier.basic: 0,
    OrganizationTier.plus: 1,
    OrganizationTier.premium: 2,
}


class OrganizationStatus(str, Enum):
    active = "active"
    suspended = "suspended"
    inactive = "inactive"


class StudentStatus(str, Enum):
    active = "active"
    inactive = "inactive"
