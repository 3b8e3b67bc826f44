from clearledger.domain.obligation_status import ObligationStatus
from tests.end2end.helpers_tc import record_allocate_verify, setup_tc_context
from tests.helpers.factories import reload_status


def test_tc_02_partial_payments_and_over_allocation(client, db_session):
    """
    Validate TC-02 two partial payments settle a fee and a third is refused.

    1. Seed one fee of 150 and settle 100 of it with a verified payment.
    2. Validate the fee becomes partially_paid, then settle the remaining 50.
    3. Validate the fee becomes paid.
    4. Allocate one more payment to the fee and validate the over-allocation 400.
    """
    _, student, fee, headers = setup_tc_context(db_session, tc_code="02", fee_amount="150.00")
    record_allocate_verify(client, headers, student_id=student.id, fee=fee, amount="100.00")
    assert reload_status(db_session, fee) == ObligationStatus.partially_paid
    record_allocate_verify(client, headers, student_id=student.id, fee=fee, amount="50.00")
    assert reload_status(db_session, fee) == ObligationStatus.paid

    extra = client.post(
        "/api/v1/payments",
        headers=headers,
        json={"student_id": student.id, "amount": "10.00", "method": "cash"},
    )
    response = client.post(
        f"/api/v1/payments/{extra.json()['id']}/allocations",
        headers=headers,
        json=[{"kind": "fee", "obligation_id": fee.id, "amount": "10.00"}],
    )
    assert response.status_code == 400
    assert response.json()["detail"] == (
        f"Allocation of 10.00 exceeds the remaining balance of 0.00 for fee {fee.id}"
    )
    assert reload_status(db_session, fee) == ObligationStatus.paid
