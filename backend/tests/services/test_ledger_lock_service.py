import pytest

from clearledger.application.errors import ConflictError
from clearledger.application.services.ledger_lock_service import ledger_lock_key, payment_ledger_lock


def test_ledger_lock_key_formats_scope():
    """
    Validate ledger lock keys include organization and payment.

    1. Build lock key for one organization and payment pair.
    2. Read key string result.
    3. Validate expected prefix is present.
    4. Validate organization and payment ids are embedded.
    """
    assert ledger_lock_key(organization_id=5, payment_id=42) == "ledger_lock:5:payment:42"


def test_payment_ledger_lock_acquires_and_releases(fake_redis):
    """
    Validate the lock is held inside the block and released after.

    1. Enter payment_ledger_lock for one payment.
    2. Validate the lock key is present while inside.
    3. Exit the context once.
    4. Validate the lock key is gone.
    """
    with payment_ledger_lock(organization_id=3, payment_id=8):
        assert "ledger_lock:3:payment:8" in fake_redis.values
    assert "ledger_lock:3:payment:8" not in fake_redis.values


def test_payment_ledger_lock_raises_conflict_when_held(fake_redis):
    """
    Validate concurrent decisions on one payment fail fast.

    1. Enter payment_ledger_lock for one payment.
    2. Enter it again for the same payment inside the first block.
    3. Validate ConflictError is raised.
    4. Validate message indicates lock contention.
    """
    with payment_ledger_lock(organization_id=10, payment_id=11):
        with pytest.raises(ConflictError) as exc:
            with payment_ledger_lock(organization_id=10, payment_id=11):
                pass
    assert str(exc.value) == "This payment is already being processed"
