import logging
from pathlib import Path

from fastapi.testclient import TestClient

from backend.app import app
from backend.config import settings
from backend.errors import DependencyError
from backend.models import Notification, PointsLedgerEntry, Report
from backend.models.enums import ReportStatus, Role
from backend.services import ledger
from backend.services.image_host import ImageHost, get_image_host
from backend.tests.helpers import auth_headers, png_bytes

client = TestClient(app)

form = {
    "descripcion": "Hay basura acumulada en la esquina",
    "latitud": "-17.78",
    "longitud": "-63.16",
    "direccion": "Av. Busch y 3er anillo",
    "tipo_estimado": "plástico",
}


class FailingHost(ImageHost):
    def upload(self, data):
        raise DependencyError("host down", code="IMAGE_UPLOAD_FAILED")

    def upload_thumbnail(self, data):
        raise DependencyError("host down", code="IMAGE_UPLOAD_FAILED")

    def delete(self, public_id):
        pass


def _existing_reports(db, user, count, status=ReportStatus.REPORTED):
    for _ in range(count):
        db.add(
            Report(
                user_id=user.id,
                description="Reporte previo de prueba",
                latitude=0.0,
                longitude=0.0,
                status=status.value,
            )
        )
    db.commit()


def _create(user, **kwargs):
    return client.post("/reports", data={**form, **kwargs.pop("data", {})}, headers=auth_headers(user), **kwargs)


def _notes(db, user, type_=None):
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if type_:
        q = q.filter(Notification.type == type_)
    return q.all()


# ---------- Creation ----------

def test_basic_flow_awards_ten_points(db, make_user):
    user = make_user()
    # Keep count-based badges out of the way: this becomes report number 3.
    _existing_reports(db, user, 2)

    r = _create(user)
    assert r.status_code == 201
    data = r.json()
    assert data["reporte"]["estado"] == "Reported"
    assert data["puntos_ganados"] == 10
    assert data["imagen_subida"] is False
    assert data["reporte"]["descripcion"] == form["descripcion"]
    assert ledger.balance(db, user.id) == 10

    entry = db.query(PointsLedgerEntry).filter(PointsLedgerEntry.user_id == user.id).one()
    assert entry.action_type == "report_created"
    assert entry.report_id == data["reporte"]["id"]


def test_photo_bonus(db, make_user):
    user = make_user()
    _existing_reports(db, user, 2)

    r = _create(user, files={"imagen": ("foto.png", png_bytes(), "image/png")})
    assert r.status_code == 201
    data = r.json()
    assert data["puntos_ganados"] == 15
    assert data["imagen_subida"] is True
    assert data["reporte"]["imagen_url"].startswith(settings.UPLOAD_BASE_URL)
    assert data["reporte"]["thumbnail_url"]

    report = db.query(Report).filter(Report.id == data["reporte"]["id"]).one()
    assert (Path(settings.UPLOAD_DIR) / report.image_public_id).exists()
    assert (Path(settings.UPLOAD_DIR) / report.thumbnail_public_id).exists()
    assert ledger.balance(db, user.id) == 15


def test_upload_failure_degrades_to_text_only(db, make_user, caplog):
    app.dependency_overrides[get_image_host] = lambda: FailingHost()
    user = make_user()
    _existing_reports(db, user, 2)

    with caplog.at_level(logging.WARNING):
        r = _create(user, files={"imagen": ("foto.png", png_bytes(), "image/png")})
    assert r.status_code == 201
    assert r.json()["puntos_ganados"] == 10
    assert r.json()["imagen_subida"] is False
    assert r.json()["reporte"]["imagen_url"] is None
    assert "text-only" in caplog.text


def test_non_image_upload_is_rejected(make_user):
    user = make_user()
    r = _create(user, files={"imagen": ("foto.png", b"definitely not a png", "image/png")})
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_IMAGE_TYPE"


def test_description_and_coordinates_are_validated(make_user):
    user = make_user()
    r = _create(user, data={"descripcion": "corta"})
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_DESCRIPTION"

    r = _create(user, data={"descripcion": "x" * 501})
    assert r.json()["code"] == "INVALID_DESCRIPTION"

    r = _create(user, data={"latitud": "91"})
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_LATITUDE"

    r = _create(user, data={"longitud": "abc"})
    assert r.json()["code"] == "INVALID_LONGITUDE"


def test_disabled_account_with_live_token_is_forbidden(db, make_user):
    user = make_user()
    headers = auth_headers(user)
    user.is_active = False
    db.commit()

    r = client.post("/reports", data=form, headers=headers)
    assert r.status_code == 403
    assert r.json()["code"] == "INACTIVE_USER"
    assert db.query(Report).count() == 0

    r = client.get("/auth/profile", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_new_report_broadcast_to_active_authorities(db, make_user):
    citizen = make_user()
    active = make_user(role=Role.AUTHORITY)
    inactive = make_user(role=Role.AUTHORITY, is_active=False)

    assert _create(citizen).status_code == 201
    assert len(_notes(db, active, "new_report")) == 1
    assert _notes(db, inactive) == []


def test_first_report_achievement_runs_after_response(db, make_user):
    user = make_user()
    assert _create(user).status_code == 201
    # 10 for the report, 10 for the first_report badge.
    assert ledger.balance(db, user.id) == 20
    assert len(_notes(db, user, "achievement")) == 1
    assert ledger.reconcile(db) == []


def test_side_effect_failure_does_not_fail_request(db, make_user, monkeypatch, caplog):
    def boom(report_id):
        raise RuntimeError("notification store down")

    monkeypatch.setattr("backend.workers.jobs.notify_authorities_new_report", boom)
    user = make_user()
    make_user(role=Role.AUTHORITY)

    with caplog.at_level(logging.ERROR):
        r = _create(user)
    assert r.status_code == 201
    assert "notification store down" in caplog.text
    assert db.query(Report).count() == 1


# ---------- Transitions ----------

def test_full_resolution_cycle(db, make_user):
    owner = make_user()
    authority = make_user(role=Role.AUTHORITY)
    _existing_reports(db, owner, 2)
    report_id = _create(owner).json()["reporte"]["id"]
    before = ledger.balance(db, owner.id)

    r = client.patch(f"/reports/{report_id}", json={"estado": "Resolved"}, headers=auth_headers(authority))
    assert r.status_code == 200
    data = r.json()
    assert data["reporte"]["estado"] == "Resolved"
    assert data["reporte"]["fecha_resolucion"] is not None
    assert data["puntos_otorgados"] == 25
    assert ledger.balance(db, owner.id) == before + 25
    assert len(_notes(db, owner, "report_resolved")) == 1
    assert _notes(db, owner, "achievement") == []


def test_fifth_resolution_pays_problem_solver(db, make_user):
    owner = make_user()
    authority = make_user(role=Role.AUTHORITY)
    _existing_reports(db, owner, 4, status=ReportStatus.RESOLVED)
    _existing_reports(db, owner, 2)
    report_id = _create(owner).json()["reporte"]["id"]
    before = ledger.balance(db, owner.id)

    r = client.patch(f"/reports/{report_id}", json={"estado": "Resolved"}, headers=auth_headers(authority))
    assert r.status_code == 200
    assert ledger.balance(db, owner.id) == before + 25 + 25
    assert len(_notes(db, owner, "report_resolved")) == 1
    achievements = _notes(db, owner, "achievement")
    assert len(achievements) == 1
    assert achievements[0].payload["achievement"] == "problem_solver"


def test_terminal_states_are_immutable(db, make_user):
    owner = make_user()
    authority = make_user(role=Role.AUTHORITY)
    _existing_reports(db, owner, 2)
    report_id = _create(owner).json()["reporte"]["id"]
    headers = auth_headers(authority)

    first = client.patch(f"/reports/{report_id}", json={"estado": "Resolved"}, headers=headers)
    resolved_at = first.json()["reporte"]["fecha_resolucion"]
    balance = ledger.balance(db, owner.id)

    for estado in ("Resolved", "InProgress", "Rejected", "Reported"):
        r = client.patch(f"/reports/{report_id}", json={"estado": estado}, headers=headers)
        assert r.status_code == 409
        assert r.json()["code"] == "INVALID_TRANSITION"

    db.expire_all()
    report = db.query(Report).filter(Report.id == report_id).one()
    assert report.status == "Resolved"
    assert report.resolved_at.isoformat() == resolved_at
    assert ledger.balance(db, owner.id) == balance
    resolved_entries = db.query(PointsLedgerEntry).filter(
        PointsLedgerEntry.report_id == report_id, PointsLedgerEntry.action_type == "report_resolved"
    )
    assert resolved_entries.count() == 1


def test_in_progress_then_rejected_with_comment(db, make_user):
    owner = make_user()
    authority = make_user(role=Role.AUTHORITY)
    _existing_reports(db, owner, 2)
    report_id = _create(owner).json()["reporte"]["id"]
    balance = ledger.balance(db, owner.id)
    headers = auth_headers(authority)

    r = client.patch(f"/reports/{report_id}", json={"estado": "InProgress"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["reporte"]["fecha_resolucion"] is None
    assert len(_notes(db, owner, "status_update")) == 1

    r = client.patch(
        f"/reports/{report_id}",
        json={"estado": "Rejected", "comentario_autoridad": "Ubicación duplicada"},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["reporte"]["comentario_autoridad"] == "Ubicación duplicada"
    assert r.json()["reporte"]["fecha_resolucion"] is not None
    assert ledger.balance(db, owner.id) == balance
    rejected = _notes(db, owner, "report_rejected")
    assert len(rejected) == 1
    assert "Ubicación duplicada" in rejected[0].body


def test_rejection_comment_policy(db, make_user, monkeypatch):
    monkeypatch.setattr(settings, "REJECTION_COMMENT_REQUIRED", True)
    owner = make_user()
    authority = make_user(role=Role.AUTHORITY)
    report_id = _create(owner).json()["reporte"]["id"]

    r = client.patch(f"/reports/{report_id}", json={"estado": "Rejected"}, headers=auth_headers(authority))
    assert r.status_code == 400
    assert r.json()["code"] == "REJECTION_COMMENT_REQUIRED"


def test_invalid_or_missing_estado(make_user):
    owner = make_user()
    authority = make_user(role=Role.AUTHORITY)
    report_id = _create(owner).json()["reporte"]["id"]
    headers = auth_headers(authority)

    r = client.patch(f"/reports/{report_id}", json={"estado": "Limpio"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_STATUS"

    r = client.patch(f"/reports/{report_id}", json={}, headers=headers)
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_citizen_cannot_change_status(make_user):
    owner = make_user()
    report_id = _create(owner).json()["reporte"]["id"]
    r = client.patch(f"/reports/{report_id}", json={"estado": "Resolved"}, headers=auth_headers(owner))
    assert r.status_code == 403


def test_resolving_for_inactive_owner_skips_points(db, make_user):
    owner = make_user()
    authority = make_user(role=Role.AUTHORITY)
    report_id = _create(owner).json()["reporte"]["id"]
    before = ledger.balance(db, owner.id)

    owner.is_active = False
    db.commit()

    r = client.patch(f"/reports/{report_id}", json={"estado": "Resolved"}, headers=auth_headers(authority))
    assert r.status_code == 200
    assert r.json()["puntos_otorgados"] == 0
    assert ledger.balance(db, owner.id) == before


def test_unknown_report_is_404(make_user):
    authority = make_user(role=Role.AUTHORITY)
    r = client.patch("/reports/9999", json={"estado": "Resolved"}, headers=auth_headers(authority))
    assert r.status_code == 404
    assert r.json()["code"] == "REPORTE_NOT_FOUND"


# ---------- Reads and admin ----------

def test_citizens_only_see_their_own_reports(make_user):
    alice, bob = make_user(), make_user()
    authority = make_user(role=Role.AUTHORITY)
    alice_report = _create(alice).json()["reporte"]["id"]
    _create(bob)

    mine = client.get("/reports", headers=auth_headers(alice)).json()
    assert [r["id"] for r in mine["reportes"]] == [alice_report]
    assert client.get(f"/reports/{alice_report}", headers=auth_headers(bob)).status_code == 404
    assert client.get(f"/reports/{alice_report}", headers=auth_headers(alice)).status_code == 200
    assert client.get("/reports", headers=auth_headers(authority)).json()["total"] == 2


def test_report_list_total_counts_every_match(db, make_user):
    owner = make_user()
    _existing_reports(db, owner, 5)

    page = client.get("/reports?limit=2", headers=auth_headers(owner)).json()
    assert len(page["reportes"]) == 2
    assert page["total"] == 5

    last = client.get("/reports?limit=2&offset=4", headers=auth_headers(owner)).json()
    assert len(last["reportes"]) == 1
    assert last["total"] == 5


def test_admin_soft_delete(db, make_user):
    owner = make_user()
    admin = make_user(role=Role.ADMIN)
    report_id = _create(owner).json()["reporte"]["id"]

    assert client.delete(f"/reports/{report_id}", headers=auth_headers(owner)).status_code == 403
    assert client.delete(f"/reports/{report_id}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/reports/{report_id}", headers=auth_headers(owner)).status_code == 404
    assert db.query(Report).filter(Report.id == report_id).one().is_active is False
