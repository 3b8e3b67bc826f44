from clearledger.domain.obligation_status import ObligationStatus
from tests.helpers.auth import principal_header
from tests.helpers.factories import create_fine, reload_status


def _alice_fine(db_session, seeded_orgs):
    return create_fine(
        db_session,
        organization_id=seeded_orgs["north"].id,
        student_id=seeded_orgs["alice"].id,
        period_id=seeded_orgs["north_period"].id,
    )


def test_student_files_appeal_and_clearance_is_blocked(client, db_session, seeded_orgs):
    """
    Validate filing an appeal.

    1. Seed a pending fine for alice.
    2. File an appeal as alice.
    3. Read alice's clearance.
    4. Validate the fine is appealed and the clearance lists it as blocking.
    """
    fine = _alice_fine(db_session, seeded_orgs)
    headers = principal_header(seeded_orgs, "north_alice")
    filed = client.post(
        "/api/v1/appeals",
        headers=headers,
        json={"kind": "fine", "obligation_id": fine.id, "reason": "I attended the assembly"},
    )
    assert filed.status_code == 201
    assert filed.json()["status"] == "pending"
    assert reload_status(db_session, fine) == ObligationStatus.appealed
    clearance = client.get(
        f"/api/v1/students/{seeded_orgs['alice'].id}/clearances/{seeded_orgs['north_period'].id}", headers=headers
    )
    assert clearance.json()["status"] == "not_cleared"
    assert [item["status"] for item in clearance.json()["blocking_items"]["fines"]] == ["appealed"]


def test_student_cannot_appeal_classmate_fine(client, db_session, seeded_orgs):
    """
    Validate appeals are self service only.

    1. Seed a pending fine for alice.
    2. File an appeal as bob.
    3. Receive forbidden response.
    4. Validate the fine stays pending.
    """
    fine = _alice_fine(db_session, seeded_orgs)
    response = client.post(
        "/api/v1/appeals",
        headers=principal_header(seeded_orgs, "north_bob"),
        json={"kind": "fine", "obligation_id": fine.id, "reason": "Not mine"},
    )
    assert response.status_code == 403
    assert reload_status(db_session, fine) == ObligationStatus.pending


def test_second_appeal_conflicts(client, db_session, seeded_orgs):
    """
    Validate one pending appeal per obligation.

    1. Seed a pending fine for alice.
    2. File an appeal as alice.
    3. File another appeal for the same fine.
    4. Validate 201 then 409.
    """
    fine = _alice_fine(db_session, seeded_orgs)
    headers = principal_header(seeded_orgs, "north_alice")
    body = {"kind": "fine", "obligation_id": fine.id, "reason": "I attended the assembly"}
    assert client.post("/api/v1/appeals", headers=headers, json=body).status_code == 201
    assert client.post("/api/v1/appeals", headers=headers, json=body).status_code == 409


def test_manager_approves_appeal_and_fine_is_waived(client, db_session, seeded_orgs):
    """
    Validate appeal approval.

    1. Seed a fine for alice and file an appeal as alice.
    2. Approve the appeal as north manager with a note.
    3. Reload the fine status.
    4. Validate the appeal is approved and the fine is waived.
    """
    fine = _alice_fine(db_session, seeded_orgs)
    filed = client.post(
        "/api/v1/appeals",
        headers=principal_header(seeded_orgs, "north_alice"),
        json={"kind": "fine", "obligation_id": fine.id, "reason": "I attended the assembly"},
    )
    approved = client.post(
        f"/api/v1/appeals/{filed.json()['id']}/approve",
        headers=principal_header(seeded_orgs, "north_manager"),
        json={"note": "Attendance sheet confirms it"},
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["decision_note"] == "Attendance sheet confirms it"
    assert reload_status(db_session, fine) == ObligationStatus.waived


def test_rejected_appeal_restores_fine_and_cannot_be_decided_again(client, db_session, seeded_orgs):
    """
    Validate appeal rejection.

    1. Seed a fine for alice and file an appeal as alice.
    2. Reject the appeal as north admin.
    3. Approve the same appeal afterwards.
    4. Validate the fine is pending again and the second decision returns 400.
    """
    fine = _alice_fine(db_session, seeded_orgs)
    filed = client.post(
        "/api/v1/appeals",
        headers=principal_header(seeded_orgs, "north_alice"),
        json={"kind": "fine", "obligation_id": fine.id, "reason": "I attended the assembly"},
    )
    headers = principal_header(seeded_orgs, "north_admin")
    rejected = client.post(f"/api/v1/appeals/{filed.json()['id']}/reject", headers=headers, json={})
    again = client.post(f"/api/v1/appeals/{filed.json()['id']}/approve", headers=headers, json={})
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"
    assert reload_status(db_session, fine) == ObligationStatus.pending
    assert again.status_code == 400


def test_staff_cannot_decide_appeals(client, db_session, seeded_orgs):
    """
    Validate appeal decisions need a managing role.

    1. Seed a fine for alice and file an appeal as alice.
    2. Approve the appeal as north staff.
    3. Receive forbidden response.
    4. Validate the fine stays appealed.
    """
    fine = _alice_fine(db_session, seeded_orgs)
    filed = client.post(
        "/api/v1/appeals",
        headers=principal_header(seeded_orgs, "north_alice"),
        json={"kind": "fine", "obligation_id": fine.id, "reason": "I attended the assembly"},
    )
    response = client.post(
        f"/api/v1/appeals/{filed.json()['id']}/approve", headers=principal_header(seeded_orgs, "north_staff"), json={}
    )
    assert response.status_code == 403
    assert reload_status(db_session, fine) == ObligationStatus.appealed
