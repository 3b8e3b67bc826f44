from datetime import date
from decimal import Decimal

import pytest

from clearledger.application.errors import ConflictError, NotFoundError, ValidationError
from clearledger.application.services.obligation_service import (
    assign_fee,
    create_clearance_period,
    create_fee_type,
    issue_fine,
    list_student_obligations,
)
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.ledger_enums import ClearanceStatus, ObligationKind, PaymentStatus
from clearledger.domain.obligation_status import ObligationStatus
from tests.helpers.factories import (
    create_allocation,
    create_fee_assignment,
    create_fee_type,
    create_payment,
    list_audit_entries,
    list_clearances_for_period,
    list_notifications,
    stored_clearance_status,
)


def test_create_clearance_period_opens_pending_clearances(db_session, seeded_orgs):
    """
    Validate a new period opens one clearance per active student.

    1. Seed two organizations with enrolled students.
    2. Call create_clearance_period in the north organization.
    3. Validate two pending clearance rows exist for the period.
    4. Validate one CLEARANCE_PERIOD_CREATED entry records the count.
    """
    period = create_clearance_period(
        db_session,
        organization_id=seeded_orgs["north"].id,
        name="AY 2026 S2",
        starts_on=date(2026, 11, 1),
        ends_on=date(2027, 3, 31),
        performed_by=101,
    )
    rows = list_clearances_for_period(db_session, period_id=period.id)
    assert len(rows) == 2
    assert {row.status for row in rows} == {ClearanceStatus.pending}
    entries = list_audit_entries(db_session, action=AuditAction.clearance_period_created.value)
    assert entries[0].after_snapshot["clearances_opened"] == 2


def test_create_clearance_period_rejects_inverted_dates(db_session, seeded_orgs):
    """
    Validate a period cannot end before it starts.

    1. Seed two organizations with enrolled students.
    2. Call create_clearance_period with ends_on before starts_on.
    3. Validate service raises ValidationError.
    4. Validate exception message matches expected text.
    """
    with pytest.raises(ValidationError) as exc:
        create_clearance_period(
            db_session,
            organization_id=seeded_orgs["north"].id,
            name="Broken",
            starts_on=date(2026, 11, 1),
            ends_on=date(2026, 10, 1),
            performed_by=101,
        )
    assert str(exc.value) == "A clearance period cannot end before it starts"


def test_assign_fee_blocks_clearance_and_notifies(db_session, seeded_orgs):
    """
    Validate assigning a required fee blocks the student.

    1. Seed a required fee type in the north period.
    2. Call assign_fee for alice.
    3. Validate the assignment copies the fee type amount and is pending.
    4. Validate clearance is not_cleared and a fee_assigned notification is queued.
    """
    north_id = seeded_orgs["north"].id
    fee_type = create_fee_type(db_session, organization_id=north_id, period_id=seeded_orgs["north_period"].id)
    assignment = assign_fee(
        db_session,
        organization_id=north_id,
        student_id=seeded_orgs["alice"].id,
        fee_type_id=fee_type.id,
        performed_by=102,
    )
    assert assignment.amount == Decimal("200.00")
    assert assignment.status == ObligationStatus.pending
    status = stored_clearance_status(
        db_session, student_id=seeded_orgs["alice"].id, period_id=seeded_orgs["north_period"].id
    )
    assert status == ClearanceStatus.not_cleared
    assert len(list_notifications(db_session, notification_type="fee_assigned")) == 1


def test_assign_fee_twice_raises_conflict(db_session, seeded_orgs):
    """
    Validate a fee type is assigned once per student.

    1. Seed a fee type and assign it to alice.
    2. Call assign_fee again with the same pair.
    3. Validate service raises ConflictError.
    4. Validate only one FEE_ASSIGNED entry exists.
    """
    north_id = seeded_orgs["north"].id
    fee_type = create_fee_type(db_session, organization_id=north_id, period_id=seeded_orgs["north_period"].id)
    kwargs = {
        "organization_id": north_id,
        "student_id": seeded_orgs["alice"].id,
        "fee_type_id": fee_type.id,
        "performed_by": 102,
    }
    assign_fee(db_session, **kwargs)
    with pytest.raises(ConflictError):
        assign_fee(db_session, **kwargs)
    assert len(list_audit_entries(db_session, action=AuditAction.fee_assigned.value)) == 1


def test_create_fee_type_rejects_other_tenant_period(db_session, seeded_orgs):
    """
    Validate fee types must reference a period of their organization.

    1. Seed two organizations with one period each.
    2. Call create_fee_type in north with the south period.
    3. Validate service raises NotFoundError.
    4. Validate no FEE_TYPE_CREATED entry exists.
    """
    with pytest.raises(NotFoundError):
        create_fee_type(
            db_session,
            organization_id=seeded_orgs["north"].id,
            period_id=seeded_orgs["south_period"].id,
            name="Membership fee",
            amount=Decimal("100.00"),
            required_for_clearance=True,
            performed_by=101,
        )
    assert list_audit_entries(db_session, action=AuditAction.fee_type_created.value) == []


def test_issue_fine_validates_amount_and_reason(db_session, seeded_orgs):
    """
    Validate fines need a positive amount and a reason.

    1. Seed two organizations with enrolled students.
    2. Call issue_fine with a zero amount.
    3. Call issue_fine with a blank reason.
    4. Validate both calls raise ValidationError.
    """
    base = {
        "organization_id": seeded_orgs["north"].id,
        "student_id": seeded_orgs["alice"].id,
        "period_id": seeded_orgs["north_period"].id,
        "issued_by": 103,
    }
    with pytest.raises(ValidationError):
        issue_fine(db_session, reason="Late", amount=Decimal("0"), **base)
    with pytest.raises(ValidationError):
        issue_fine(db_session, reason="   ", amount=Decimal("10.00"), **base)


def test_issue_fine_records_issuer(db_session, seeded_orgs):
    """
    Validate issue_fine stores the issuing officer and audits it.

    1. Seed two organizations with enrolled students.
    2. Call issue_fine as staff.
    3. Validate the fine is pending with the issuer recorded.
    4. Validate one FINE_ISSUED entry exists for the fine.
    """
    fine = issue_fine(
        db_session,
        organization_id=seeded_orgs["north"].id,
        student_id=seeded_orgs["alice"].id,
        period_id=seeded_orgs["north_period"].id,
        reason="Missed general assembly",
        amount=Decimal("25"),
        issued_by=103,
    )
    assert fine.status == ObligationStatus.pending
    assert fine.issued_by_subject_id == 103
    assert fine.amount == Decimal("25.00")
    assert len(list_audit_entries(db_session, action=AuditAction.fine_issued.value, entity_id=fine.id)) == 1


def test_list_student_obligations_reports_remaining_balance(db_session, seeded_orgs):
    """
    Validate listed obligations carry their verified remaining balance.

    1. Seed one fee of 200.00 with 80.00 verified against it.
    2. Call list_student_obligations for alice.
    3. Read the single fee obligation.
    4. Validate its remaining balance is 120.00.
    """
    north_id = seeded_orgs["north"].id
    fee = create_fee_assignment(
        db_session,
        organization_id=north_id,
        student_id=seeded_orgs["alice"].id,
        period_id=seeded_orgs["north_period"].id,
    )
    payment = create_payment(
        db_session,
        organization_id=north_id,
        student_id=seeded_orgs["alice"].id,
        amount="80.00",
        status=PaymentStatus.verified,
    )
    create_allocation(db_session, payment_id=payment.id, amount="80.00", fee_assignment_id=fee.id)
    obligations = list_student_obligations(db_session, organization_id=north_id, student_id=seeded_orgs["alice"].id)
    assert len(obligations) == 1
    assert obligations[0]["kind"] == ObligationKind.fee
    assert obligations[0]["remaining_balance"] == Decimal("120.00")
