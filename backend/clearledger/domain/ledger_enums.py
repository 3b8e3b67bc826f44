from enum import Enum


class ObligationKind(str, Enum):
    fee = "fee"
    fine = "fine"


class PaymentStatus(str, Enum):
    pending = "pending"
    verified = "verified"
    rejected = "rejected"


class PaymentMethod(str, Enum):
    cash = "cash"
    gcash = "gcash"
    maya = "maya"
    bank_transfer = "bank_transfer"

    @property
    def requires_proof(self) -> bool:
        return self is not PaymentMethod.cash


class WaiverStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class AppealStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ClearanceStatus(str, Enum):
    pending = "pending"
    cleared = "cleared"
    not_cleared = "not_cleared"
    overridden = "overridden"


class NotificationStatus(str, Enum):
    queued = "queued"
    dispatched = "dispatched"
    failed = "failed"
