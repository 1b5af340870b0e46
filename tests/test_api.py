from datetime import date

from coursedesk.services.date_engine import compute_course_dates
from coursedesk.services.entitlement import EntitlementState


def _participant_body(**overrides):
    body = {
        "company_name": "Acme Logistics",
        "person_name": "Ivan Petrov",
        "national_id": "8501011234",
        "birth_place": "Plovdiv",
        "medical_date": date.today().isoformat(),
    }
    body.update(overrides)
    return body


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_course_window(client):
    response = client.get("/api/dates/course-window", params={"medical_date": "2025-03-05"})

    assert response.status_code == 200
    assert response.json()["course_start_date"] == "2025-03-10"
    assert response.json()["course_end_date"] == "2025-03-17"


def test_first_participant_activates_its_week(client):
    window = compute_course_dates(date.today())

    response = client.post("/api/participants", json=_participant_body())

    assert response.status_code == 201
    body = response.json()
    assert body["course_start_date"] == window.course_start_date.isoformat()
    assert body["unique_number"] == "3531-001"

    groups = client.get("/api/groups", params={"status": "active"}).json()
    assert [g["course_start_date"] for g in groups] == [window.course_start_date.isoformat()]
    assert groups[0]["group_number"] == 1
    assert groups[0]["participant_count"] == 1


def test_manual_number_skipping_a_gap_is_rejected(client):
    client.post("/api/participants", json=_participant_body())
    created = client.post("/api/participants", json=_participant_body(unique_number="3531-003"))
    assert created.status_code == 201

    gap = client.get("/api/numbers/gap").json()
    assert gap == {"gap": "3531-002"}

    response = client.post("/api/participants", json=_participant_body(unique_number="3531-004"))
    assert response.status_code == 422
    issues = response.json()["detail"]["issues"]
    assert [issue["code"] for issue in issues] == ["skips_gap"]


def test_invalid_number_format_is_rejected(client):
    client.post("/api/participants", json=_participant_body())

    response = client.post("/api/participants", json=_participant_body(unique_number="12-3"))

    assert response.status_code == 422
    assert response.json()["detail"]["issues"][0]["code"] == "invalid_format"


def test_resolve_does_not_write(client):
    response = client.post("/api/participants/resolve", json={"medical_date": "2025-03-05"})

    assert response.status_code == 200
    body = response.json()
    assert body["course_start_date"] == "2025-03-10"
    assert body["group"]["is_virtual"] is True
    assert client.get("/api/groups").json() == []


def test_update_and_missing_participant(client):
    created = client.post("/api/participants", json=_participant_body()).json()

    response = client.patch(
        f"/api/participants/{created['id']}",
        json={"sent": True, "documents": True, "handed_over": True, "paid": True},
    )
    assert response.status_code == 200
    assert response.json()["completed"] is True

    assert client.patch("/api/participants/missing", json={"paid": True}).status_code == 404
    assert client.get("/api/participants/missing").status_code == 404


def test_bulk_milestone(client):
    first = client.post("/api/participants", json=_participant_body()).json()

    response = client.post(
        "/api/participants/bulk-milestone",
        json={"participant_ids": [first["id"], "missing"], "milestone": "paid", "value": True},
    )

    assert response.status_code == 200
    assert response.json()["success"] == 1
    assert response.json()["failed"] == 1


def test_read_only_workspace_returns_423(client, gate):
    gate.set_state(EntitlementState(configured=True, authenticated=True, read_only=True))

    response = client.post("/api/participants", json=_participant_body())

    assert response.status_code == 423
    entitlement = client.get("/api/entitlement").json()
    assert entitlement["read_only"] is True


def test_activate_needs_confirmation(client):
    client.post("/api/participants", json=_participant_body())
    groups = client.get("/api/groups", params={"status": "planned"}).json()

    response = client.post(f"/api/groups/{groups[0]['id']}/activate", json={"force": False})

    assert response.status_code == 200
    assert response.json()["needs_confirm"] is True
    assert response.json()["current_active"]["group_number"] == 1


def test_delete_active_group_is_refused(client):
    client.post("/api/participants", json=_participant_body())
    active = client.get("/api/groups", params={"status": "active"}).json()[0]

    response = client.delete(f"/api/groups/{active['id']}")

    assert response.status_code == 400


def test_reset_sequence(client):
    response = client.post("/api/numbers/reset-sequence", json={"new_prefix": 3600})

    assert response.status_code == 200
    assert response.json()["unique_prefix"] == 3600
    assert client.get("/api/numbers/next").json() == {"unique_number": "3600-001"}
    assert client.post("/api/numbers/reset-sequence", json={"new_prefix": 3600}).status_code == 400


def test_number_availability(client):
    client.post("/api/participants", json=_participant_body())

    taken = client.get("/api/numbers/availability", params={"candidate": "3531-001"}).json()
    free = client.get("/api/numbers/availability", params={"candidate": "3531-002"}).json()
    bad = client.get("/api/numbers/availability", params={"candidate": "x"}).json()

    assert taken["available"] is False
    assert free["available"] is True
    assert bad == {"candidate": "x", "valid_format": False, "available": False}


def test_backup_export_and_rejected_import(client):
    client.post("/api/participants", json=_participant_body())

    exported = client.get("/api/backup/export").json()
    assert exported["version"] == 3
    assert len(exported["participants"]) == 1

    response = client.post("/api/backup/import", json={"version": 99, "participants": [], "groups": []})
    assert response.status_code == 400
    assert response.json()["detail"]["version"] == 99


def test_backup_import_round_trip(client):
    client.post("/api/participants", json=_participant_body())
    exported = client.get("/api/backup/export").json()

    response = client.post("/api/backup/import", json=exported)

    assert response.status_code == 200
    assert response.json()["source_version"] == 3
    assert response.json()["participants"] == 1
