from clearledger.domain.policy import DenyReason


class ApplicationError(Exception):
    """Base application-layer error, independent from transport concerns."""


class NotFoundError(ApplicationError):
    """Raised when an expected entity does not exist."""


class ConflictError(ApplicationError):
    """Raised when a uniqueness or state conflict occurs."""


class ForbiddenError(ApplicationError):
    """Raised when operation is forbidden by business rules."""


class ValidationError(ApplicationError):
    """Raised when application-level validation fails."""


class AuthorizationError(ForbiddenError):
    """Raised when the policy evaluator denies a request.

    The reason code is kept for logs only; callers always see the same message.
    """

    def __init__(self, reason: DenyReason) -> None:
        super().__init__("Not permitted")
        self.reason = reason


class OverAllocationError(ValidationError):
    """Raised when an allocation exceeds the obligation's remaining balance."""


class AllocationMismatchError(ValidationError):
    """Raised when allocations do not add up to the payment amount."""


class AlreadyDecidedError(ValidationError):
    """Raised when a payment, waiver or appeal has already left its pending state."""


class AlreadyConsumedError(ConflictError):
    """Raised when an onboarding invite is replayed."""


class ConsistencyError(ApplicationError):
    """Raised when a ledger invariant is found violated inside a transaction."""


class AuditWriteError(ConsistencyError):
    """Raised when the audit sink could not record a required entry."""


class ExternalDependencyError(ApplicationError):
    """Raised when the blob store or notification delivery fails."""


class NotificationDeliveryError(ExternalDependencyError):
    """Raised by notification senders when delivery did not succeed."""
