from collections.abc import Iterator
from contextlib import contextmanager

from clearledger.application.errors import ConflictError
from clearledger.config import settings
from clearledger.infrastructure.cache.cache_service import acquire_lock, release_lock


def ledger_lock_key(*, organization_id: int, payment_id: int) -> str:
    return f"ledger_lock:{organization_id}:payment:{payment_id}"


@contextmanager
def payment_ledger_lock(*, organization_id: int, payment_id: int) -> Iterator[None]:
    """Short Redis lock so concurrent decisions on one payment fail fast instead of queueing on the row lock."""
    lock_key = ledger_lock_key(organization_id=organization_id, payment_id=payment_id)
    lock_token = acquire_lock(lock_key, settings.ledger_lock_ttl_seconds)
    if lock_token is None:
        raise ConflictError("This payment is already being processed")
    try:
        yield
    finally:
        release_lock(lock_key, lock_token)
