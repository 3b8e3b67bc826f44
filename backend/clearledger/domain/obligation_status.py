from decimal import Decimal
from enum import Enum


class ObligationStatus(str, Enum):
    """Status of a fee assignment or fine.

    Statuses fall in two families. ``pending``, ``partially_paid`` and ``paid``
    are derived: they are a pure function of verified allocations against the
    obligation amount and are rewritten on every recomputation. ``waived`` and
    ``appealed`` are overrides: only the waiver and appeal workflows set or
    release them, recomputation leaves them untouched.
    """

    pending = "pending"
    partially_paid = "partially_paid"
    paid = "paid"
    waived = "waived"
    appealed = "appealed"

    @property
    def is_override(self) -> bool:
        return self in OVERRIDE_STATUSES

    @property
    def is_settled(self) -> bool:
        return self in SETTLED_STATUSES


DERIVED_STATUSES = frozenset(
    {ObligationStatus.pending, ObligationStatus.partially_paid, ObligationStatus.paid}
)
OVERRIDE_STATUSES = frozenset({ObligationStatus.waived, ObligationStatus.appealed})
SETTLED_STATUSES = frozenset({ObligationStatus.paid, ObligationStatus.waived})
APPEALABLE_STATUSES = frozenset({ObligationStatus.pending, ObligationStatus.partially_paid})


def derive_obligation_status(amount: Decimal, total_verified: Decimal) -> ObligationStatus:
    if total_verified <= Decimal("0.00"):
        return ObligationStatus.pending
    if total_verified < amount:
        return ObligationStatus.partially_paid
    return ObligationStatus.paid


def next_obligation_status(
    current: ObligationStatus, amount: Decimal, total_verified: Decimal
) -> ObligationStatus:
    if current.is_override:
        return current
    return derive_obligation_status(amount, total_verified)
