from datetime import date, timedelta

from sqlalchemy import text

from conftest import ADMIN_EMAIL

YESTERDAY = (date.today() - timedelta(days=1)).isoformat()
NEXT_MONTH = (date.today() + timedelta(days=30)).isoformat()
PDF = ("evidence.pdf", b"%PDF-1.4 minimal", "application/pdf")


def _finding(client, headers, audit_id, **overrides):
    body = {
        "audit_id": audit_id,
        "category": "Major",
        "description": "Emergency generator failed to start on test",
        "target_date": NEXT_MONTH,
    }
    body.update(overrides)
    return client.post("/api/findings", headers=headers, json=body)


# ---------------------------------------------------------------------------
# Health & authentication
# ---------------------------------------------------------------------------

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_without_token_are_rejected(client):
    resp = client.get("/api/vessels")
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_login_with_wrong_password(client):
    resp = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong-password"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid email or password"


def test_garbage_token_is_rejected(client):
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_me_returns_grants_from_matrix(client, admin):
    data = client.get("/api/auth/me", headers=admin).json()["data"]
    assert data["email"] == ADMIN_EMAIL
    assert data["role_name"] == "Admin"
    assert {"page_path": "/findings", "permission_name": "reopen"} in data["permissions"]


def test_change_password(client, make_user):
    from conftest import login

    headers = make_user("Viewer", email="crew@auditmonitor.com", password="first-pass")
    resp = client.post(
        "/api/users/change-password",
        headers=headers,
        json={"current_password": "wrong-one", "new_password": "second-pass"},
    )
    assert resp.status_code == 400

    resp = client.post(
        "/api/users/change-password",
        headers=headers,
        json={"current_password": "first-pass", "new_password": "second-pass"},
    )
    assert resp.status_code == 200
    login(client, "crew@auditmonitor.com", "second-pass")


# ---------------------------------------------------------------------------
# Validation & reference data
# ---------------------------------------------------------------------------

def test_validation_errors_use_the_envelope(client, admin):
    resp = client.post("/api/vessels", headers=admin, json={"vessel_name": "No Code"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation failed"
    assert any(d["field"] == "vessel_code" for d in body["details"])


def test_duplicate_vessel_code_conflicts(client, admin, reference_data):
    resp = client.post(
        "/api/vessels", headers=admin, json={"vessel_name": "Second Ship", "vessel_code": "NST-01"}
    )
    assert resp.status_code == 409


def test_vessel_referenced_by_audit_cannot_be_deleted(client, admin, audit):
    resp = client.delete(f"/api/vessels/{audit['vessel_id']}", headers=admin)
    assert resp.status_code == 409
    assert "referenced by 1 audit" in resp.json()["error"]


def test_unused_vessel_can_be_deleted(client, admin):
    vessel = client.post(
        "/api/vessels", headers=admin, json={"vessel_name": "Spare Hull", "vessel_code": "SPR-9"}
    ).json()["data"]
    resp = client.delete(f"/api/vessels/{vessel['id']}", headers=admin)
    assert resp.json() == {"success": True, "message": "Vessel deleted successfully"}
    assert client.get(f"/api/vessels/{vessel['id']}", headers=admin).status_code == 404


def test_audit_party_soft_delete_and_restore(client, admin, reference_data):
    party_id = reference_data["audit_party_id"]
    assert client.delete(f"/api/audit-parties/{party_id}", headers=admin).status_code == 200

    listed = client.get("/api/audit-parties", headers=admin).json()["data"]
    assert party_id not in [p["id"] for p in listed]
    listed = client.get("/api/audit-parties?include_deleted=true", headers=admin).json()["data"]
    assert party_id in [p["id"] for p in listed]

    resp = client.post(f"/api/audit-parties/{party_id}/restore", headers=admin)
    assert resp.json()["message"] == "Audit party restored successfully"
    assert resp.json()["data"]["deleted_at"] is None


def test_auditor_lists_by_company(client, admin):
    company = client.post(
        "/api/audit-companies", headers=admin, json={"company_name": "Lloyd's Register"}
    ).json()["data"]
    client.post(
        "/api/auditors", headers=admin,
        json={"auditor_name": "J. Smith", "audit_company_id": company["id"]},
    )
    client.post("/api/auditors", headers=admin, json={"auditor_name": "Independent Auditor"})

    data = client.get(f"/api/auditors?audit_company_id={company['id']}", headers=admin).json()["data"]
    assert [a["auditor_name"] for a in data] == ["J. Smith"]
    assert data[0]["company_name"] == "Lloyd's Register"


# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------

def test_audit_reference_is_generated(client, audit):
    yy = date.today().year % 100
    assert audit["audit_reference"] == f"AUD-{yy:02d}-{audit['id']:05d}"
    assert audit["vessel_name"] == "MV Northern Star"


def test_duplicate_audit_reference_conflicts(client, admin, reference_data):
    body = dict(reference_data, audit_start_date=date.today().isoformat(), audit_reference="EXT-001")
    assert client.post("/api/audits", headers=admin, json=body).status_code == 201
    assert client.post("/api/audits", headers=admin, json=body).status_code == 409


def test_audit_with_unknown_vessel_is_rejected(client, admin, reference_data):
    body = dict(reference_data, vessel_id=999, audit_start_date=date.today().isoformat())
    resp = client.post("/api/audits", headers=admin, json=body)
    assert resp.status_code in (400, 404)
    assert resp.json()["success"] is False


def test_audit_list_is_paginated(client, admin, reference_data):
    for day in range(3):
        client.post(
            "/api/audits", headers=admin,
            json=dict(reference_data, audit_start_date=(date.today() - timedelta(days=day)).isoformat()),
        )
    body = client.get("/api/audits?page=2&limit=2", headers=admin).json()
    assert body["pagination"] == {"total": 3, "page": 2, "limit": 2, "total_pages": 2}
    assert len(body["data"]) == 1


def test_audit_soft_delete_and_restore(client, admin, audit):
    resp = client.delete(f"/api/audits/{audit['id']}", headers=admin)
    assert resp.json()["message"] == "Audit deleted successfully"
    assert client.get(f"/api/audits/{audit['id']}", headers=admin).status_code == 404
    assert client.get("/api/audits", headers=admin).json()["pagination"]["total"] == 0

    resp = client.post(f"/api/audits/{audit['id']}/restore", headers=admin)
    assert resp.status_code == 200
    assert client.get(f"/api/audits/{audit['id']}", headers=admin).status_code == 200

    # restoring a live audit is an error
    assert client.post(f"/api/audits/{audit['id']}/restore", headers=admin).status_code == 400


def test_assign_auditor_once(client, admin, audit):
    auditor = client.post("/api/auditors", headers=admin, json={"auditor_name": "A. Lead"}).json()["data"]
    url = f"/api/audits/{audit['id']}/auditors"

    resp = client.post(url, headers=admin, json={"auditor_id": auditor["id"], "role": "Lead Auditor"})
    assert resp.status_code == 201
    assert client.post(url, headers=admin, json={"auditor_id": auditor["id"]}).status_code == 409

    detail = client.get(f"/api/audits/{audit['id']}", headers=admin).json()["data"]
    assert [a["role"] for a in detail["auditors"]] == ["Lead Auditor"]


def test_report_upload_and_download(client, admin, audit):
    resp = client.post(
        f"/api/audits/{audit['id']}/report",
        headers=admin,
        files={"file": ("Report Final.pdf", b"%PDF-1.4 report", "application/pdf")},
    )
    assert resp.status_code == 200, resp.text
    path = resp.json()["data"]["report_file_path"]
    assert path.startswith("/uploads/audits/report_final_")

    download = client.get(path)
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 report"


def test_uploads_outside_root_are_not_served(client):
    assert client.get("/uploads/../audit.db").status_code == 404


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------

def test_finding_past_target_is_created_overdue(client, admin, audit):
    resp = _finding(client, admin, audit["id"], target_date=YESTERDAY)
    assert resp.status_code == 201
    assert resp.json()["data"]["status"] == "Overdue"


def test_close_and_reopen(client, admin, audit):
    finding = _finding(client, admin, audit["id"], target_date=YESTERDAY).json()["data"]

    closed = client.post(f"/api/findings/{finding['id']}/close", headers=admin).json()["data"]
    assert closed["status"] == "Closed"
    assert closed["closure_date"] == date.today().isoformat()
    assert client.post(f"/api/findings/{finding['id']}/close", headers=admin).status_code == 400

    reopened = client.post(f"/api/findings/{finding['id']}/reopen", headers=admin).json()["data"]
    assert reopened["status"] == "Overdue"
    assert reopened["closure_date"] is None


def test_generic_update_cannot_close(client, admin, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    resp = client.put(f"/api/findings/{finding['id']}", headers=admin, json={"status": "Closed"})
    assert resp.status_code == 400

    resp = client.put(f"/api/findings/{finding['id']}", headers=admin, json={"status": "In Progress"})
    assert resp.json()["data"]["status"] == "In Progress"


def test_finding_filters(client, admin, audit):
    _finding(client, admin, audit["id"], category="Minor")
    _finding(client, admin, audit["id"], category="Observation", target_date=YESTERDAY)

    overdue = client.get("/api/findings?status=Overdue", headers=admin).json()
    assert overdue["pagination"]["total"] == 1
    assert overdue["data"][0]["category"] == "Observation"
    assert overdue["data"][0]["audit_reference"] == audit["audit_reference"]

    minor = client.get("/api/findings?category=Minor", headers=admin).json()["data"]
    assert [f["category"] for f in minor] == ["Minor"]


def test_evidence_upload_list_and_delete(client, admin, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    url = f"/api/findings/{finding['id']}/evidence"

    resp = client.post(url, headers=admin, files=[("files", PDF), ("files", PDF)])
    assert resp.status_code == 201, resp.text
    assert resp.json()["message"] == "2 file(s) uploaded successfully"

    listed = client.get(url, headers=admin).json()["data"]
    assert len(listed) == 2
    assert client.get(listed[0]["file_path"]).status_code == 200

    resp = client.delete(f"{url}/{listed[0]['id']}", headers=admin)
    assert resp.status_code == 200
    assert len(client.get(url, headers=admin).json()["data"]) == 1
    assert client.get(listed[0]["file_path"]).status_code == 404


def test_disallowed_file_type_is_rejected(client, admin, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    resp = client.post(
        f"/api/findings/{finding['id']}/evidence",
        headers=admin,
        files=[("files", ("payload.exe", b"MZ", "application/octet-stream"))],
    )
    assert resp.status_code == 400
    assert "File type not allowed" in resp.json()["error"]


def test_finding_soft_delete_hides_it(client, admin, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    client.delete(f"/api/findings/{finding['id']}", headers=admin)

    assert client.get(f"/api/findings/{finding['id']}", headers=admin).status_code == 404
    assert client.get("/api/findings", headers=admin).json()["pagination"]["total"] == 0

    client.post(f"/api/findings/{finding['id']}/restore", headers=admin)
    assert client.get(f"/api/findings/{finding['id']}", headers=admin).status_code == 200


def test_moving_target_into_past_marks_overdue(client, admin, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    resp = client.put(f"/api/findings/{finding['id']}", headers=admin, json={"target_date": YESTERDAY})
    assert resp.json()["data"]["status"] == "Overdue"

    # nothing left for the bulk sweep to do
    resp = client.post("/api/findings/update-overdue", headers=admin)
    assert resp.status_code == 200
    assert resp.json()["data"] == {"updated": 0}


def test_dashboard_stats(client, admin, audit):
    _finding(client, admin, audit["id"])
    _finding(client, admin, audit["id"], target_date=YESTERDAY)

    data = client.get("/api/dashboard/stats", headers=admin).json()["data"]
    assert data["audits"]["total_ytd"] == 1
    assert data["findings"] == {"total": 2, "open": 1, "overdue": 1, "closed_this_month": 0}

    filtered = client.get(
        f"/api/dashboard/stats?vessel_id={audit['vessel_id'] + 100}", headers=admin
    ).json()["data"]
    assert filtered["findings"]["total"] == 0


# ---------------------------------------------------------------------------
# Users & access control
# ---------------------------------------------------------------------------

def test_viewer_can_read_but_not_write(client, make_user, audit):
    viewer = make_user("Viewer")
    assert client.get("/api/audits", headers=viewer).status_code == 200

    resp = client.post(
        "/api/vessels", headers=viewer, json={"vessel_name": "Nope", "vessel_code": "NOPE-1"}
    )
    assert resp.status_code == 403
    assert client.get("/api/users", headers=viewer).status_code == 403


def test_encoder_can_close_but_not_reopen(client, admin, make_user, audit):
    encoder = make_user("Encoder")
    finding = _finding(client, encoder, audit["id"]).json()["data"]

    assert client.post(f"/api/findings/{finding['id']}/close", headers=encoder).status_code == 200
    assert client.post(f"/api/findings/{finding['id']}/reopen", headers=encoder).status_code == 403


def test_matrix_edit_takes_effect_immediately(client, admin, make_user):
    viewer = make_user("Viewer")
    viewer_role = next(
        r for r in client.get("/api/roles", headers=admin).json()["data"] if r["role_name"] == "Viewer"
    )
    pages = {p["page_path"]: p["id"] for p in client.get("/api/pages", headers=admin).json()["data"]}
    perms = {
        p["permission_name"]: p["id"]
        for p in client.get("/api/permissions", headers=admin).json()["data"]
    }
    url = f"/api/roles/{viewer_role['id']}/permissions"
    current = [
        {"page_id": rp["page_id"], "permission_id": rp["permission_id"]}
        for rp in client.get(url, headers=admin).json()["data"]
    ]

    grant = {"page_id": pages["/vessels"], "permission_id": perms["create"]}
    resp = client.put(url, headers=admin, json={"permissions": current + [grant]})
    assert resp.status_code == 200

    resp = client.post(
        "/api/vessels", headers=viewer, json={"vessel_name": "Granted", "vessel_code": "GRT-1"}
    )
    assert resp.status_code == 201

    # an empty set revokes everything, including view
    client.put(url, headers=admin, json={"permissions": []})
    assert client.get("/api/vessels", headers=viewer).status_code == 403


def test_permission_matrix_lists_every_role(client, admin):
    data = client.get("/api/roles/permissions/matrix", headers=admin).json()["data"]
    assert {r["role_name"] for r in data["roles"]} == {"Admin", "Encoder", "Viewer", "Auditor"}
    assert len(data["pages"]) == 12


def test_role_in_use_cannot_be_deleted(client, admin):
    admin_role = next(
        r for r in client.get("/api/roles", headers=admin).json()["data"] if r["role_name"] == "Admin"
    )
    assert client.delete(f"/api/roles/{admin_role['id']}", headers=admin).status_code == 409


def test_user_cannot_delete_self(client, admin):
    me = client.get("/api/auth/me", headers=admin).json()["data"]
    resp = client.delete(f"/api/users/{me['id']}", headers=admin)
    assert resp.status_code == 400


def test_deleted_user_token_stops_working(client, admin, make_user):
    viewer = make_user("Viewer")
    viewer_id = client.get("/api/auth/me", headers=viewer).json()["data"]["id"]

    assert client.delete(f"/api/users/{viewer_id}", headers=admin).status_code == 200
    assert client.get("/api/audits", headers=viewer).status_code == 401

    client.post(f"/api/users/{viewer_id}/restore", headers=admin)
    assert client.get("/api/audits", headers=viewer).status_code == 200


def test_duplicate_user_email_conflicts(client, admin, make_user):
    make_user("Viewer")
    resp = client.post(
        "/api/users",
        headers=admin,
        json={
            "name": "Other",
            "email": "VIEWER@auditmonitor.com",
            "password": "password1",
            "role_id": client.get("/api/auth/me", headers=admin).json()["data"]["role_id"],
        },
    )
    assert resp.status_code == 409


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_settings_round_trip(client, admin):
    resp = client.put(
        "/api/settings", headers=admin,
        json={"company_name": "Blue Water Shipping", "company_email": "ops@bluewater.com"},
    )
    assert resp.status_code == 200
    data = client.get("/api/settings", headers=admin).json()["data"]
    assert data["company_name"] == "Blue Water Shipping"
    assert data["company_email"] == "ops@bluewater.com"

    assert client.put("/api/settings", headers=admin, json={"company_name": ""}).status_code == 400


# ---------------------------------------------------------------------------
# Stored status drift and soft-delete edge cases
# ---------------------------------------------------------------------------

def _age_finding(client, finding_id, days_ago):
    """Move a stored target date into the past without going through the API."""
    engine = client.app.state.database.engine
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE findings SET target_date = :target WHERE id = :id"),
            {"target": (date.today() - timedelta(days=days_ago)).isoformat(), "id": finding_id},
        )


def test_status_filter_sees_findings_that_aged_into_overdue(client, admin, audit):
    finding = _finding(client, admin, audit["id"], target_date=(date.today() + timedelta(days=5)).isoformat())
    finding = finding.json()["data"]
    _age_finding(client, finding["id"], 3)

    body = client.get("/api/findings?status=Open", headers=admin).json()
    assert body["data"] == []
    assert body["pagination"]["total"] == 0

    body = client.get("/api/findings?status=Overdue", headers=admin).json()
    assert [(f["id"], f["status"]) for f in body["data"]] == [(finding["id"], "Overdue")]
    assert body["pagination"]["total"] == 1


def test_overdue_filter_is_exact_on_first_query(client, admin, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    _age_finding(client, finding["id"], 1)

    body = client.get("/api/findings?status=Overdue", headers=admin).json()
    assert [f["id"] for f in body["data"]] == [finding["id"]]


def test_lookups_in_use_cannot_be_deleted(client, admin, reference_data):
    company = client.post(
        "/api/audit-companies", headers=admin, json={"company_name": "Bureau Veritas"}
    ).json()["data"]
    auditor = client.post(
        "/api/auditors", headers=admin,
        json={"auditor_name": "M. Rossi", "audit_company_id": company["id"]},
    ).json()["data"]
    audit = client.post(
        "/api/audits", headers=admin,
        json=dict(
            reference_data,
            audit_start_date=date.today().isoformat(),
            audit_company_id=company["id"],
        ),
    ).json()["data"]
    client.post(f"/api/audits/{audit['id']}/auditors", headers=admin, json={"auditor_id": auditor["id"]})

    cases = [
        (f"/api/audit-types/{reference_data['audit_type_id']}", "Cannot delete audit type"),
        (f"/api/audit-companies/{company['id']}", "Cannot delete audit company"),
        (f"/api/auditors/{auditor['id']}", "Cannot delete auditor"),
    ]
    for url, message in cases:
        resp = client.delete(url, headers=admin)
        assert resp.status_code == 409
        assert message in resp.json()["error"]
        assert client.get(url, headers=admin).status_code == 200


def test_deleting_twice_is_rejected(client, admin, make_user, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    make_user("Viewer")
    users = client.get("/api/users", headers=admin).json()["data"]
    viewer_id = next(u["id"] for u in users if u["email"] == "viewer@auditmonitor.com")

    for url in (
        f"/api/findings/{finding['id']}",
        f"/api/audits/{audit['id']}",
        f"/api/users/{viewer_id}",
    ):
        assert client.delete(url, headers=admin).status_code == 200
        resp = client.delete(url, headers=admin)
        assert resp.status_code == 400
        assert "already deleted" in resp.json()["error"]


def test_restoring_live_finding_or_user_is_rejected(client, admin, make_user, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    make_user("Viewer")
    users = client.get("/api/users", headers=admin).json()["data"]
    viewer_id = next(u["id"] for u in users if u["email"] == "viewer@auditmonitor.com")

    for url in (f"/api/findings/{finding['id']}/restore", f"/api/users/{viewer_id}/restore"):
        resp = client.post(url, headers=admin)
        assert resp.status_code == 400
        assert "not deleted" in resp.json()["error"]


def test_include_deleted_lists_audits_and_findings(client, admin, audit):
    finding = _finding(client, admin, audit["id"]).json()["data"]
    client.delete(f"/api/findings/{finding['id']}", headers=admin)
    client.delete(f"/api/audits/{audit['id']}", headers=admin)

    assert client.get("/api/findings", headers=admin).json()["data"] == []
    listed = client.get("/api/findings?include_deleted=true", headers=admin).json()["data"]
    assert [f["id"] for f in listed] == [finding["id"]]

    assert client.get("/api/audits", headers=admin).json()["data"] == []
    listed = client.get("/api/audits?include_deleted=true", headers=admin).json()["data"]
    assert [a["id"] for a in listed] == [audit["id"]]
