from decimal import Decimal

from clearledger.domain.obligation_status import ObligationStatus, derive_obligation_status, next_obligation_status


def test_derive_status_follows_verified_total():
    """
    Validate derived statuses track verified totals against the amount.

    1. Use an obligation amount of 150.00.
    2. Derive status for zero, partial and exact verified totals.
    3. Derive status for a total above the amount.
    4. Validate pending, partially_paid, paid and paid respectively.
    """
    amount = Decimal("150.00")
    assert derive_obligation_status(amount, Decimal("0.00")) == ObligationStatus.pending
    assert derive_obligation_status(amount, Decimal("100.00")) == ObligationStatus.partially_paid
    assert derive_obligation_status(amount, Decimal("150.00")) == ObligationStatus.paid
    assert derive_obligation_status(amount, Decimal("150.01")) == ObligationStatus.paid


def test_override_statuses_survive_recomputation():
    """
    Validate waived and appealed are never rewritten by payments.

    1. Start from waived and appealed statuses.
    2. Recompute with a fully paid verified total.
    3. Recompute with a zero verified total.
    4. Validate both statuses are returned unchanged.
    """
    amount = Decimal("80.00")
    for status in (ObligationStatus.waived, ObligationStatus.appealed):
        assert next_obligation_status(status, amount, Decimal("80.00")) == status
        assert next_obligation_status(status, amount, Decimal("0.00")) == status


def test_derived_status_moves_backwards_when_payments_are_voided():
    """
    Validate recomputation can return a paid obligation to pending.

    1. Start from a paid status.
    2. Recompute with a zero verified total.
    3. Recompute with a partial verified total.
    4. Validate pending and partially_paid are returned.
    """
    amount = Decimal("200.00")
    assert next_obligation_status(ObligationStatus.paid, amount, Decimal("0.00")) == ObligationStatus.pending
    assert next_obligation_status(ObligationStatus.paid, amount, Decimal("20.00")) == ObligationStatus.partially_paid


def test_settled_and_override_flags():
    """
    Validate status classification helpers.

    1. Read is_settled for paid, waived and partially_paid.
    2. Read is_override for waived, appealed and pending.
    3. Compare against the documented families.
    4. Validate only paid and waived settle and only waived and appealed override.
    """
    assert ObligationStatus.paid.is_settled is True
    assert ObligationStatus.waived.is_settled is True
    assert ObligationStatus.partially_paid.is_settled is False
    assert ObligationStatus.waived.is_override is True
    assert ObligationStatus.appealed.is_override is True
    assert ObligationStatus.pending.is_override is False
