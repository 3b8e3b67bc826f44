from decimal import Decimal

import pytest

from clearledger.application.errors import (
    AllocationMismatchError,
    AlreadyDecidedError,
    ConsistencyError,
    NotFoundError,
    OverAllocationError,
    ValidationError,
)
from clearledger.application.services.ledger_service import (
    AllocationTarget,
    allocate,
    recompute_obligation_status,
    record_payment,
    reject_payment,
    remaining_balance,
    verify_payment,
)
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.ledger_enums import ClearanceStatus, ObligationKind, PaymentMethod, PaymentStatus
from clearledger.domain.obligation_status import ObligationStatus
from tests.helpers.concurrency import run_in_parallel_sessions
from tests.helpers.factories import (
    create_allocation,
    create_fee_assignment,
    create_fine,
    create_payment,
    list_allocations_for_payment,
    list_audit_entries,
    list_notifications,
    reload_status,
    set_obligation_status,
    stored_clearance_status,
)


def _fee(db_session, seeded_orgs, amount: str = "200.00", student: str = "alice"):
    return create_fee_assignment(
        db_session,
        organization_id=seeded_orgs["north"].id,
        student_id=seeded_orgs[student].id,
        period_id=seeded_orgs["north_period"].id,
        amount=amount,
    )


def _payment(db_session, seeded_orgs, amount: str, student: str = "alice", **kwargs):
    return create_payment(
        db_session,
        organization_id=seeded_orgs["north"].id,
        student_id=seeded_orgs[student].id,
        amount=amount,
        **kwargs,
    )


def _allocate(db_session, seeded_orgs, payment, targets, **kwargs):
    return allocate(
        db_session,
        payment_id=payment.id,
        organization_id=seeded_orgs["north"].id,
        targets=targets,
        performed_by=102,
        **kwargs,
    )


def test_record_payment_persists_pending_payment_with_audit(db_session, seeded_orgs):
    """
    Validate record_payment stores a pending payment and one audit entry.

    1. Seed two organizations with enrolled students.
    2. Call record_payment for a cash payment of 75.00.
    3. Validate the payment is pending with the recording officer.
    4. Validate exactly one PAYMENT_RECORDED audit entry exists.
    """
    payment = record_payment(
        db_session,
        organization_id=seeded_orgs["north"].id,
        student_id=seeded_orgs["alice"].id,
        amount=Decimal("75"),
        method=PaymentMethod.cash,
        recorded_by=103,
    )
    assert payment.status == PaymentStatus.pending
    assert payment.amount == Decimal("75.00")
    assert payment.recorded_by_subject_id == 103
    entries = list_audit_entries(db_session, action=AuditAction.payment_recorded.value, entity_id=payment.id)
    assert len(entries) == 1
    assert entries[0].after_snapshot["status"] == "pending"


def test_record_payment_requires_receipt_for_electronic_methods(db_session, seeded_orgs):
    """
    Validate electronic payments need a receipt reference.

    1. Seed two organizations with enrolled students.
    2. Call record_payment for gcash without a proof reference.
    3. Validate service raises ValidationError.
    4. Validate no audit entry was written.
    """
    with pytest.raises(ValidationError) as exc:
        record_payment(
            db_session,
            organization_id=seeded_orgs["north"].id,
            student_id=seeded_orgs["alice"].id,
            amount=Decimal("75.00"),
            method=PaymentMethod.gcash,
            recorded_by=103,
        )
    assert str(exc.value) == "A receipt is required for gcash payments"
    assert list_audit_entries(db_session, action=AuditAction.payment_recorded.value) == []


def test_record_payment_stores_deterministic_receipt_path(db_session, seeded_orgs):
    """
    Validate receipt paths follow organization and payment ids.

    1. Seed two organizations with enrolled students.
    2. Call record_payment for maya with a png receipt name.
    3. Read the stored proof path.
    4. Validate it is organization_id/payment_id.png.
    """
    north = seeded_orgs["north"]
    payment = record_payment(
        db_session,
        organization_id=north.id,
        student_id=seeded_orgs["alice"].id,
        amount=Decimal("20.00"),
        method=PaymentMethod.maya,
        recorded_by=501,
        proof_ref="receipt.PNG",
    )
    assert payment.proof_path == f"{north.id}/{payment.id}.png"


def test_record_payment_rejects_student_from_other_organization(db_session, seeded_orgs):
    """
    Validate payments cannot be recorded across tenants.

    1. Seed two organizations with enrolled students.
    2. Call record_payment in north for the south student.
    3. Validate service raises NotFoundError.
    4. Validate exception message matches expected text.
    """
    with pytest.raises(NotFoundError) as exc:
        record_payment(
            db_session,
            organization_id=seeded_orgs["north"].id,
            student_id=seeded_orgs["carol"].id,
            amount=Decimal("10.00"),
            method=PaymentMethod.cash,
            recorded_by=101,
        )
    assert str(exc.value) == "Student not found"


def test_allocate_splits_payment_across_fee_and_fine(db_session, seeded_orgs):
    """
    Validate a payment can settle several obligations at once.

    1. Seed one fee of 100.00, one fine of 50.00 and a payment of 150.00.
    2. Call allocate with two targets totaling the payment amount.
    3. Validate two allocation rows are stored for the payment.
    4. Validate one PAYMENT_ALLOCATED audit entry is written.
    """
    fee = _fee(db_session, seeded_orgs, amount="100.00")
    fine = create_fine(
        db_session,
        organization_id=seeded_orgs["north"].id,
        student_id=seeded_orgs["alice"].id,
        period_id=seeded_orgs["north_period"].id,
    )
    payment = _payment(db_session, seeded_orgs, "150.00")
    created = _allocate(
        db_session,
        seeded_orgs,
        payment,
        [
            AllocationTarget(ObligationKind.fee, fee.id, Decimal("100.00")),
            AllocationTarget(ObligationKind.fine, fine.id, Decimal("50.00")),
        ],
    )
    assert len(created) == 2
    assert len(list_allocations_for_payment(db_session, payment_id=payment.id)) == 2
    assert len(list_audit_entries(db_session, action=AuditAction.payment_allocated.value)) == 1


def test_allocate_rejects_amount_above_remaining_balance(db_session, seeded_orgs):
    """
    Validate over-allocation fails and leaves nothing behind.

    1. Seed one fee of 150.00 with 100.00 already verified against it.
    2. Call allocate with 60.00 from a new payment of 60.00.
    3. Validate service raises OverAllocationError with the remaining balance.
    4. Validate no allocation and no audit entry were written for the payment.
    """
    fee = _fee(db_session, seeded_orgs, amount="150.00")
    verified = _payment(db_session, seeded_orgs, "100.00", status=PaymentStatus.verified)
    create_allocation(db_session, payment_id=verified.id, amount="100.00", fee_assignment_id=fee.id)
    payment = _payment(db_session, seeded_orgs, "60.00")
    with pytest.raises(OverAllocationError) as exc:
        _allocate(db_session, seeded_orgs, payment, [AllocationTarget(ObligationKind.fee, fee.id, Decimal("60.00"))])
    assert str(exc.value) == f"Allocation of 60.00 exceeds the remaining balance of 50.00 for fee {fee.id}"
    assert list_allocations_for_payment(db_session, payment_id=payment.id) == []
    assert list_audit_entries(db_session, action=AuditAction.payment_allocated.value) == []


def test_allocate_requires_full_payment_amount_by_default(db_session, seeded_orgs):
    """
    Validate allocations must add up to the payment amount.

    1. Seed one fee of 200.00 and a payment of 100.00.
    2. Call allocate with only 40.00 of the payment.
    3. Validate service raises AllocationMismatchError.
    4. Validate exception message reports both totals.
    """
    fee = _fee(db_session, seeded_orgs)
    payment = _payment(db_session, seeded_orgs, "100.00")
    with pytest.raises(AllocationMismatchError) as exc:
        _allocate(db_session, seeded_orgs, payment, [AllocationTarget(ObligationKind.fee, fee.id, Decimal("40.00"))])
    assert str(exc.value) == "Allocations total 40.00 but the payment amount is 100.00"


def test_allocate_accepts_partial_split_when_requested(db_session, seeded_orgs):
    """
    Validate partial allocation mode keeps the remainder unallocated.

    1. Seed one fee of 200.00 and a payment of 100.00.
    2. Call allocate with 40.00 and full_allocation disabled.
    3. Validate one allocation of 40.00 is stored.
    4. Validate the fee is still pending because nothing is verified.
    """
    fee = _fee(db_session, seeded_orgs)
    payment = _payment(db_session, seeded_orgs, "100.00")
    _allocate(
        db_session,
        seeded_orgs,
        payment,
        [AllocationTarget(ObligationKind.fee, fee.id, Decimal("40.00"))],
        full_allocation=False,
    )
    allocations = list_allocations_for_payment(db_session, payment_id=payment.id)
    assert [item.amount_allocated for item in allocations] == [Decimal("40.00")]
    assert reload_status(db_session, fee) == ObligationStatus.pending


def test_allocate_rejects_obligation_of_another_student(db_session, seeded_orgs):
    """
    Validate payments only settle the paying student's obligations.

    1. Seed a fee for bob and a payment for alice.
    2. Call allocate from alice's payment to bob's fee.
    3. Validate service raises ValidationError.
    4. Validate no allocation was stored.
    """
    fee = _fee(db_session, seeded_orgs, student="bob")
    payment = _payment(db_session, seeded_orgs, "200.00")
    with pytest.raises(ValidationError) as exc:
        _allocate(db_session, seeded_orgs, payment, [AllocationTarget(ObligationKind.fee, fee.id, Decimal("200.00"))])
    assert str(exc.value) == "Obligation belongs to a different student"
    assert list_allocations_for_payment(db_session, payment_id=payment.id) == []


def test_allocate_rejects_rejected_payment(db_session, seeded_orgs):
    """
    Validate a rejected payment cannot be allocated.

    1. Seed one fee and a rejected payment.
    2. Call allocate once.
    3. Validate service raises AlreadyDecidedError.
    4. Validate exception message matches expected text.
    """
    fee = _fee(db_session, seeded_orgs)
    payment = _payment(db_session, seeded_orgs, "200.00", status=PaymentStatus.rejected)
    with pytest.raises(AlreadyDecidedError) as exc:
        _allocate(db_session, seeded_orgs, payment, [AllocationTarget(ObligationKind.fee, fee.id, Decimal("200.00"))])
    assert str(exc.value) == "Payment has already been rejected"


def test_verify_payment_settles_obligation_and_clearance(db_session, seeded_orgs):
    """
    Validate verification recomputes status and clearance in one step.

    1. Seed one fee of 200.00 with a full pending allocation.
    2. Call verify_payment once.
    3. Validate payment is verified and fee is paid.
    4. Validate clearance is cleared and a notification is queued.
    """
    fee = _fee(db_session, seeded_orgs)
    payment = _payment(db_session, seeded_orgs, "200.00")
    _allocate(db_session, seeded_orgs, payment, [AllocationTarget(ObligationKind.fee, fee.id, Decimal("200.00"))])
    verified = verify_payment(
        db_session, payment_id=payment.id, organization_id=seeded_orgs["north"].id, verifier_subject_id=101
    )
    assert verified.status == PaymentStatus.verified
    assert verified.verified_by_subject_id == 101
    assert reload_status(db_session, fee) == ObligationStatus.paid
    status = stored_clearance_status(
        db_session, student_id=seeded_orgs["alice"].id, period_id=seeded_orgs["north_period"].id
    )
    assert status == ClearanceStatus.cleared
    assert len(list_notifications(db_session, notification_type="payment_verified")) == 1


def test_verify_payment_twice_raises_already_decided(db_session, seeded_orgs):
    """
    Validate verification is not repeatable.

    1. Seed one verified payment.
    2. Call verify_payment on it.
    3. Validate service raises AlreadyDecidedError.
    4. Validate no PAYMENT_VERIFIED audit entry was written.
    """
    payment = _payment(db_session, seeded_orgs, "20.00", status=PaymentStatus.verified)
    with pytest.raises(AlreadyDecidedError) as exc:
        verify_payment(
            db_session, payment_id=payment.id, organization_id=seeded_orgs["north"].id, verifier_subject_id=101
        )
    assert str(exc.value) == "Payment is already verified"
    assert list_audit_entries(db_session, action=AuditAction.payment_verified.value) == []


def test_verify_payment_refuses_to_over_settle(db_session, seeded_orgs):
    """
    Validate verification re-checks the balance against stored allocations.

    1. Seed one fee of 100.00 with two pending 100.00 allocations written around allocate.
    2. Verify the first payment.
    3. Call verify_payment on the second payment.
    4. Validate ConsistencyError is raised and the second payment stays pending.
    """
    fee = _fee(db_session, seeded_orgs, amount="100.00")
    first = _payment(db_session, seeded_orgs, "100.00")
    second = _payment(db_session, seeded_orgs, "100.00")
    create_allocation(db_session, payment_id=first.id, amount="100.00", fee_assignment_id=fee.id)
    create_allocation(db_session, payment_id=second.id, amount="100.00", fee_assignment_id=fee.id)
    north_id = seeded_orgs["north"].id
    verify_payment(db_session, payment_id=first.id, organization_id=north_id, verifier_subject_id=101)
    with pytest.raises(ConsistencyError) as exc:
        verify_payment(db_session, payment_id=second.id, organization_id=north_id, verifier_subject_id=101)
    assert str(exc.value) == "Verifying this payment would over-settle an obligation"
    assert reload_status(db_session, second) == PaymentStatus.pending


def test_pending_allocation_holds_its_share_of_the_obligation(db_session, seeded_orgs):
    """
    Validate a second pending payment cannot claim an already allocated balance.

    1. Seed one fee of 200.00 and two pending payments of 200.00.
    2. Allocate the first payment fully to the fee.
    3. Validate allocating the second payment raises OverAllocationError.
    4. Reject the first payment and validate the second can then be allocated and verified.
    """
    fee = _fee(db_session, seeded_orgs)
    first = _payment(db_session, seeded_orgs, "200.00")
    second = _payment(db_session, seeded_orgs, "200.00")
    target = [AllocationTarget(ObligationKind.fee, fee.id, Decimal("200.00"))]
    _allocate(db_session, seeded_orgs, first, target)
    with pytest.raises(OverAllocationError) as exc:
        _allocate(db_session, seeded_orgs, second, target)
    assert str(exc.value) == f"Allocation of 200.00 exceeds the remaining balance of 0.00 for fee {fee.id}"
    assert list_allocations_for_payment(db_session, payment_id=second.id) == []

    north_id = seeded_orgs["north"].id
    reject_payment(db_session, payment_id=first.id, organization_id=north_id, performed_by=101, reason="Duplicate")
    _allocate(db_session, seeded_orgs, second, target)
    verify_payment(db_session, payment_id=second.id, organization_id=north_id, verifier_subject_id=101)
    assert reload_status(db_session, fee) == ObligationStatus.paid


def test_concurrent_allocations_to_one_obligation_serialize(db_session, seeded_orgs):
    """
    Validate two sessions racing to settle one obligation cannot both win.

    1. Seed one fee of 200.00 and two pending payments of 200.00.
    2. Allocate both payments to the fee from two sessions released together.
    3. Validate exactly one allocation succeeded and the other raised OverAllocationError.
    4. Validate the fee carries 200.00 of live allocations in total.
    """
    fee = _fee(db_session, seeded_orgs)
    payments = [_payment(db_session, seeded_orgs, "200.00") for _ in range(2)]
    north_id = seeded_orgs["north"].id

    def allocate_from(payment_id):
        return lambda session: allocate(
            session,
            payment_id=payment_id,
            organization_id=north_id,
            targets=[AllocationTarget(ObligationKind.fee, fee.id, Decimal("200.00"))],
            performed_by=102,
        )

    results = run_in_parallel_sessions(db_session, [allocate_from(payment.id) for payment in payments])
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], OverAllocationError)
    allocations = [
        item
        for payment in payments
        for item in list_allocations_for_payment(db_session, payment_id=payment.id)
    ]
    assert sum((item.amount_allocated for item in allocations), Decimal("0.00")) == Decimal("200.00")

def test_reject_verified_payment_reverses_settlement(db_session, seeded_orgs):
    """
    Validate rejecting a verified payment voids its allocations.

    1. Seed one fee of 200.00 fully settled by one verified payment.
    2. Call reject_payment with a reason.
    3. Validate the fee returns to pending and the remaining balance is restored.
    4. Validate the allocation is voided and one PAYMENT_REJECTED entry exists.
    """
    fee = _fee(db_session, seeded_orgs)
    payment = _payment(db_session, seeded_orgs, "200.00")
    _allocate(db_session, seeded_orgs, payment, [AllocationTarget(ObligationKind.fee, fee.id, Decimal("200.00"))])
    north_id = seeded_orgs["north"].id
    verify_payment(db_session, payment_id=payment.id, organization_id=north_id, verifier_subject_id=101)
    rejected = reject_payment(
        db_session, payment_id=payment.id, organization_id=north_id, performed_by=101, reason="Bounced transfer"
    )
    assert rejected.status == PaymentStatus.rejected
    assert reload_status(db_session, fee) == ObligationStatus.pending
    assert remaining_balance(db_session, kind=ObligationKind.fee, obligation=fee) == Decimal("200.00")
    allocations = list_allocations_for_payment(db_session, payment_id=payment.id)
    assert all(item.voided_at is not None for item in allocations)
    assert len(list_audit_entries(db_session, action=AuditAction.payment_rejected.value)) == 1


def test_reject_payment_replay_changes_nothing(db_session, seeded_orgs):
    """
    Validate replaying a rejection is a silent no-op.

    1. Seed one pending payment.
    2. Call reject_payment twice with the same reason.
    3. Validate the payment stays rejected.
    4. Validate only one PAYMENT_REJECTED audit entry exists.
    """
    payment = _payment(db_session, seeded_orgs, "30.00")
    north_id = seeded_orgs["north"].id
    for _ in range(2):
        result = reject_payment(
            db_session, payment_id=payment.id, organization_id=north_id, performed_by=101, reason="Duplicate entry"
        )
        assert result.status == PaymentStatus.rejected
    assert len(list_audit_entries(db_session, action=AuditAction.payment_rejected.value)) == 1


def test_reject_payment_replay_ignores_missing_reason(db_session, seeded_orgs):
    """
    Validate a replayed rejection is a no-op even without a reason.

    1. Seed one pending payment and reject it with a reason.
    2. Call reject_payment again with an empty reason.
    3. Validate the call returns the rejected payment without raising.
    4. Validate the stored reason and the single PAYMENT_REJECTED entry are unchanged.
    """
    payment = _payment(db_session, seeded_orgs, "30.00")
    north_id = seeded_orgs["north"].id
    reject_payment(db_session, payment_id=payment.id, organization_id=north_id, performed_by=101, reason="Duplicate")
    replayed = reject_payment(db_session, payment_id=payment.id, organization_id=north_id, performed_by=101, reason="")
    assert replayed.status == PaymentStatus.rejected
    assert replayed.rejection_reason == "Duplicate"
    assert len(list_audit_entries(db_session, action=AuditAction.payment_rejected.value)) == 1


def test_reject_pending_payment_requires_reason(db_session, seeded_orgs):
    """
    Validate a first rejection must say why.

    1. Seed one pending payment.
    2. Call reject_payment with a blank reason.
    3. Validate service raises ValidationError.
    4. Validate the payment stays pending.
    """
    payment = _payment(db_session, seeded_orgs, "30.00")
    north_id = seeded_orgs["north"].id
    with pytest.raises(ValidationError) as exc:
        reject_payment(db_session, payment_id=payment.id, organization_id=north_id, performed_by=101, reason="  ")
    assert str(exc.value) == "A rejection reason is required"
    assert reload_status(db_session, payment) == PaymentStatus.pending


def test_recompute_obligation_status_is_idempotent_and_keeps_overrides(db_session, seeded_orgs):
    """
    Validate recomputation only touches derived statuses.

    1. Seed a fee settled by a verified allocation but stored as pending, and a waived fine.
    2. Call recompute_obligation_status twice on the fee.
    3. Call recompute_obligation_status on the waived fine.
    4. Validate the fee is paid both times and the fine stays waived.
    """
    fee = _fee(db_session, seeded_orgs, amount="80.00")
    payment = _payment(db_session, seeded_orgs, "80.00", status=PaymentStatus.verified)
    create_allocation(db_session, payment_id=payment.id, amount="80.00", fee_assignment_id=fee.id)
    fine = create_fine(
        db_session,
        organization_id=seeded_orgs["north"].id,
        student_id=seeded_orgs["alice"].id,
        period_id=seeded_orgs["north_period"].id,
    )
    set_obligation_status(db_session, fine, ObligationStatus.waived)
    north_id = seeded_orgs["north"].id
    for _ in range(2):
        status = recompute_obligation_status(
            db_session, kind=ObligationKind.fee, obligation_id=fee.id, organization_id=north_id
        )
        assert status == ObligationStatus.paid
    fine_status = recompute_obligation_status(
        db_session, kind=ObligationKind.fine, obligation_id=fine.id, organization_id=north_id
    )
    assert fine_status == ObligationStatus.waived
