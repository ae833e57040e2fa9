from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from backend.app import app
from backend.errors import NotFoundError, ValidationError
from backend.models import Notification
from backend.models.enums import NotificationType, Role
from backend.services import notifications
from backend.tests.helpers import auth_headers

client = TestClient(app)


def _seed(db, user, count):
    for i in range(count):
        notifications.notify(db, user.id, NotificationType.INFO, f"Aviso {i}", f"Cuerpo {i}")


def test_notify_persists_message(db, make_user):
    user = make_user()
    note = notifications.notify(
        db, user.id, "status_update", "Título", "Cuerpo", payload={"report_id": 3}
    )
    assert note.id is not None
    assert note.is_read is False
    assert note.payload == {"report_id": 3}


def test_notify_rejects_unknown_type(db, make_user):
    user = make_user()
    with pytest.raises(ValidationError):
        notifications.notify(db, user.id, "carrier_pigeon", "t", "b")


def test_notify_many_marks_urgent_and_dedupes(db, make_user):
    a, b = make_user(), make_user()
    created = notifications.notify_many(db, [a.id, b.id, a.id], "Alerta", "Cierre de vía", {"zona": 4})
    assert len(created) == 2
    assert all(n.type == "urgent" for n in created)
    assert all(n.payload == {"zona": 4, "urgent": True} for n in created)


def test_list_is_newest_first_and_paginated(db, make_user):
    user = make_user()
    _seed(db, user, 5)

    items, total = notifications.list_for_user(db, user.id, page=1, page_size=2)
    assert total == 5
    assert [n.title for n in items] == ["Aviso 4", "Aviso 3"]

    items, _ = notifications.list_for_user(db, user.id, page=3, page_size=2)
    assert [n.title for n in items] == ["Aviso 0"]


def test_mark_read_checks_ownership(db, make_user):
    owner, stranger = make_user(), make_user()
    note = notifications.notify(db, owner.id, "info", "t", "b")

    with pytest.raises(NotFoundError):
        notifications.mark_read(db, note.id, stranger.id)
    with pytest.raises(NotFoundError):
        notifications.delete(db, note.id, stranger.id)

    assert notifications.mark_read(db, note.id, owner.id).is_read is True
    assert notifications.unread_count(db, owner.id) == 0


def test_mark_all_read_only_touches_own(db, make_user):
    a, b = make_user(), make_user()
    _seed(db, a, 3)
    _seed(db, b, 2)
    assert notifications.mark_all_read(db, a.id) == 3
    assert notifications.unread_count(db, a.id) == 0
    assert notifications.unread_count(db, b.id) == 2


def test_purge_older_than(db, make_user):
    user = make_user()
    _seed(db, user, 2)
    old = db.query(Notification).first()
    old.created_at = datetime.utcnow() - timedelta(days=45)
    db.commit()

    assert notifications.purge_older_than(db, 30) == 1
    assert db.query(Notification).count() == 1
    with pytest.raises(ValidationError):
        notifications.purge_older_than(db, 0)


def test_status_change_message_includes_rejection_reason(db, make_user):
    from backend.models import Report
    from backend.models.enums import ReportStatus

    report = Report(description="x" * 12, latitude=0, longitude=0, waste_type="plástico")
    message = notifications.status_change_message(report, ReportStatus.REJECTED, "Ubicación incorrecta")
    assert message.type == NotificationType.REPORT_REJECTED
    assert "Motivo: Ubicación incorrecta" in message.body


# ---------- HTTP surface ----------

def test_list_endpoint_shape(db, make_user):
    user = make_user()
    _seed(db, user, 3)
    r = client.get("/notifications?page=1&limit=2", headers=auth_headers(user))
    assert r.status_code == 200
    data = r.json()
    assert len(data["notifications"]) == 2
    assert data["pagination"]["total_items"] == 3
    assert data["pagination"]["total_pages"] == 2
    assert data["pagination"]["has_next"] is True
    assert data["unread_count"] == 3


def test_read_other_users_notification_is_404(db, make_user):
    owner, stranger = make_user(), make_user()
    note = notifications.notify(db, owner.id, "info", "t", "b")

    r = client.patch(f"/notifications/{note.id}/read", headers=auth_headers(stranger))
    assert r.status_code == 404
    assert r.json()["code"] == "NOTIFICATION_NOT_FOUND"

    r = client.delete(f"/notifications/{note.id}", headers=auth_headers(stranger))
    assert r.status_code == 404

    r = client.patch(f"/notifications/{note.id}/read", headers=auth_headers(owner))
    assert r.status_code == 200
    assert r.json()["is_read"] is True


def test_read_all_and_delete(db, make_user):
    user = make_user()
    _seed(db, user, 2)
    r = client.patch("/notifications/read-all", headers=auth_headers(user))
    assert r.status_code == 200
    assert r.json()["updated"] == 2

    note_id = db.query(Notification.id).filter(Notification.user_id == user.id).first()[0]
    assert client.delete(f"/notifications/{note_id}", headers=auth_headers(user)).status_code == 200
    assert client.get("/notifications/unread-count", headers=auth_headers(user)).json() == {"unread_count": 0}


def test_test_notification_outside_production(make_user):
    user = make_user()
    r = client.post("/notifications/test", json={}, headers=auth_headers(user))
    assert r.status_code == 201
    assert r.json()["payload"] == {"test": True}


def test_admin_urgent_broadcast_to_role(make_user):
    admin = make_user(role=Role.ADMIN)
    make_user(role=Role.AUTHORITY)
    make_user(role=Role.AUTHORITY)
    make_user(role=Role.AUTHORITY, is_active=False)

    r = client.post(
        "/admin/notifications/urgent",
        json={"title": "Alerta", "body": "Inundación en zona norte", "role": "authority"},
        headers=auth_headers(admin),
    )
    assert r.status_code == 201
    assert r.json()["enviadas"] == 2


def test_admin_purge_endpoint(db, make_user):
    admin = make_user(role=Role.ADMIN)
    _seed(db, admin, 1)
    r = client.post("/admin/maintenance/purge-notifications", json={"days": 1}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json() == {"deleted": 0, "days": 1}
