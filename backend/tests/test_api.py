from fastapi.testclient import TestClient
from backend.app import app
from backend.models.enums import Role
from backend.tests.helpers import auth_headers

client = TestClient(app)

new_user = {
    "full_name": "Ana Pérez",
    "email": "Ana.Perez@Example.com",
    "password": "secret123",
    "phone": "70000000",
}


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"
    assert "X-Request-ID" in r.headers


def test_ledger_health_ok_on_empty_db():
    r = client.get("/health/ledger")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "mismatches": 0}


def test_register_creates_citizen_with_lowercase_email():
    r = client.post("/auth/register", json={**new_user, "role": "admin"})
    assert r.status_code == 201
    data = r.json()
    assert data["access_token"]
    assert data["user"]["email"] == "ana.perez@example.com"
    assert data["user"]["role"] == "citizen"
    assert data["user"]["points"] == 0
    assert data["user"]["level"] == 1


def test_register_duplicate_email_is_rejected():
    assert client.post("/auth/register", json=new_user).status_code == 201
    r = client.post("/auth/register", json={**new_user, "email": "ANA.PEREZ@example.com"})
    assert r.status_code == 400
    assert r.json()["code"] == "EMAIL_ALREADY_REGISTERED"


def test_register_short_password_is_validation_error():
    r = client.post("/auth/register", json={**new_user, "password": "123"})
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert "timestamp" in body
    assert any("password" in d["field"] for d in body["details"])


def test_login_and_profile():
    client.post("/auth/register", json=new_user)
    r = client.post("/auth/login", json={"email": "ana.perez@example.com", "password": "secret123"})
    assert r.status_code == 200
    token = r.json()["access_token"]

    r = client.get("/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["full_name"] == "Ana Pérez"


def test_login_wrong_password():
    client.post("/auth/register", json=new_user)
    r = client.post("/auth/login", json={"email": new_user["email"], "password": "nope-nope"})
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"


def test_login_inactive_account(make_user):
    user = make_user(is_active=False)
    r = client.post("/auth/login", json={"email": user.email, "password": "secret123"})
    assert r.status_code == 403


def test_profile_requires_token():
    r = client.get("/auth/profile")
    assert r.status_code == 401


def test_citizen_cannot_reach_admin_routes(make_user):
    citizen = make_user()
    r = client.get("/admin/stats", headers=auth_headers(citizen))
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"


def test_admin_stats(make_user):
    admin = make_user(role=Role.ADMIN)
    make_user()
    r = client.get("/admin/stats", headers=auth_headers(admin))
    assert r.status_code == 200
    data = r.json()
    assert data["usuarios"]["por_rol"]["citizen"] == 1
    assert data["reportes"]["total"] == 0
