from datetime import date

import pytest
from fastapi.testclient import TestClient

from api import app

ADMIN_EMAIL = "admin@auditmonitor.com"
ADMIN_PASSWORD = "admin-secret"


@pytest.fixture
def client(tmp_path, monkeypatch):
    """A TestClient over a fresh SQLite file and upload directory."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'audit.db'}")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    with TestClient(app) as c:
        yield c


def login(client, email, password):
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['data']['token']}"}


@pytest.fixture
def admin(client):
    return login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


def role_id(client, headers, name):
    roles = client.get("/api/users/roles", headers=headers).json()["data"]
    return next(r["id"] for r in roles if r["role_name"] == name)


@pytest.fixture
def make_user(client, admin):
    """Create a user with the named role and return auth headers for them."""

    def _make(role_name, email=None, password="password1"):
        email = email or f"{role_name.lower()}@auditmonitor.com"
        resp = client.post(
            "/api/users",
            headers=admin,
            json={
                "name": f"{role_name} User",
                "email": email,
                "password": password,
                "role_id": role_id(client, admin, role_name),
            },
        )
        assert resp.status_code == 201, resp.text
        return login(client, email, password)

    return _make


@pytest.fixture
def reference_data(client, admin):
    """One vessel, audit type and audit party; returns their ids."""
    vessel = client.post(
        "/api/vessels", headers=admin,
        json={"vessel_name": "MV Northern Star", "vessel_code": "NST-01"},
    ).json()["data"]
    audit_type = client.post(
        "/api/audit-types", headers=admin, json={"type_name": "ISM Internal"},
    ).json()["data"]
    party = client.post(
        "/api/audit-parties", headers=admin, json={"party_name": "Flag State"},
    ).json()["data"]
    return {"vessel_id": vessel["id"], "audit_type_id": audit_type["id"], "audit_party_id": party["id"]}


@pytest.fixture
def audit(client, admin, reference_data):
    resp = client.post(
        "/api/audits",
        headers=admin,
        json=dict(reference_data, audit_start_date=date.today().isoformat()),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]
