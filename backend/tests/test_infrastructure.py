import hashlib
import logging
from datetime import datetime, timedelta

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.config import settings
from backend.errors import DependencyError, ValidationError
from backend.middleware.rate_limit import InMemoryRateLimitStore, RateLimitMiddleware, RateLimitRule
from backend.models import Notification
from backend.services import side_effects
from backend.services.image_host import (
    CloudinaryImageHost,
    LocalImageHost,
    detect_image_type,
    validate_image,
)
from backend.tests.helpers import png_bytes
from backend.workers import retention


# ---------- Rate limiting ----------

def _limited_app(store, global_max=100, rules=None):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, store=store, rules=rules or [], max_requests=global_max, window_seconds=60)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/reports")
    def reports():
        return []

    @app.get("/points")
    def points():
        return []

    return app


def test_rate_limit_per_prefix_rule():
    store = InMemoryRateLimitStore()
    rules = [RateLimitRule("reports", ("/reports",), 2, 60)]
    client = TestClient(_limited_app(store, rules=rules))

    assert client.get("/reports").status_code == 200
    assert client.get("/reports").status_code == 200
    r = client.get("/reports")
    assert r.status_code == 429
    assert r.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(r.headers["Retry-After"]) >= 1
    # Other prefixes keep their own budget.
    assert client.get("/points").status_code == 200


def test_rate_limit_global_window_and_exemptions():
    store = InMemoryRateLimitStore()
    client = TestClient(_limited_app(store, global_max=3))

    for _ in range(3):
        assert client.get("/points").status_code == 200
    assert client.get("/points").status_code == 429
    assert client.get("/health").status_code == 200

    store.reset()
    assert client.get("/points").status_code == 200


def test_in_memory_store_window_resets():
    now = [1000.0]
    store = InMemoryRateLimitStore(clock=lambda: now[0])

    assert store.hit("k:1.2.3.4:60", 60)[0] == 1
    assert store.hit("k:1.2.3.4:60", 60)[0] == 2
    now[0] += 61
    assert store.hit("k:1.2.3.4:60", 60)[0] == 1


# ---------- Images ----------

def test_detect_image_type_magic_numbers():
    assert detect_image_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
    assert detect_image_type(png_bytes()) == "image/png"
    assert detect_image_type(b"GIF89a....") == "image/gif"
    assert detect_image_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert detect_image_type(b"%PDF-1.7") is None


def test_validate_image_rejects_size_and_type(monkeypatch):
    with pytest.raises(ValidationError):
        validate_image(png_bytes(), "application/pdf")
    with pytest.raises(ValidationError):
        validate_image(b"", "image/png")

    monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE_MB", 0)
    with pytest.raises(ValidationError) as exc:
        validate_image(png_bytes(), "image/png")
    assert exc.value.code == "IMAGE_TOO_LARGE"


def test_local_host_limits_size_and_builds_thumbnail(tmp_path):
    from PIL import Image

    host = LocalImageHost(root=str(tmp_path), base_url="/files")
    data = png_bytes(size=(2400, 600))

    main = host.upload(data)
    thumb = host.upload_thumbnail(data)
    assert main.url == f"/files/{main.public_id}"

    with Image.open(tmp_path / main.public_id) as img:
        assert max(img.size) == 1200
    with Image.open(tmp_path / thumb.public_id) as img:
        assert img.size == (300, 300)

    host.delete(main.public_id)
    assert not (tmp_path / main.public_id).exists()


def test_local_host_corrupt_image_is_dependency_error(tmp_path):
    host = LocalImageHost(root=str(tmp_path))
    with pytest.raises(DependencyError):
        host.upload_thumbnail(b"\x89PNG but truncated")


def test_cloudinary_signed_upload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"secure_url": "https://cdn/x.png", "public_id": "ecoreports/reportes/x"})

    host = CloudinaryImageHost(
        "demo", "key", "secret", client=httpx.Client(transport=httpx.MockTransport(handler))
    )
    uploaded = host.upload(png_bytes())
    assert uploaded.url == "https://cdn/x.png"
    assert uploaded.public_id == "ecoreports/reportes/x"
    assert seen["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"
    assert b"ecoreports/reportes" in seen["body"]

    params = {"folder": "f", "timestamp": 1}
    expected = hashlib.sha1(b"folder=f&timestamp=1secret").hexdigest()
    assert host._sign(params) == expected


def test_cloudinary_failure_raises_dependency_error():
    host = CloudinaryImageHost(
        "demo",
        "key",
        "secret",
        client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )
    with pytest.raises(DependencyError):
        host.upload(png_bytes())


# ---------- Side effects and maintenance ----------

def test_run_guarded_logs_and_swallows(caplog):
    def explode(x):
        raise RuntimeError(f"bad {x}")

    with caplog.at_level(logging.ERROR):
        side_effects.run_guarded(explode, 7)
    assert "bad 7" in caplog.text


def test_fire_and_forget_without_background_tasks_runs_inline():
    calls = []
    side_effects.fire_and_forget(None, calls.append, "done")
    assert calls == ["done"]


def test_fire_and_forget_falls_back_when_queue_unreachable(monkeypatch):
    def no_queue():
        raise ConnectionError("redis down")

    monkeypatch.setattr(settings, "SIDE_EFFECT_BACKEND", "rq")
    monkeypatch.setattr(side_effects, "get_side_effect_queue", no_queue)
    calls = []
    side_effects.fire_and_forget(None, calls.append, 1)
    assert calls == [1]


def test_retention_run_once(db, make_user):
    user = make_user()
    db.add_all(
        [
            Notification(user_id=user.id, type="info", title="viejo", body="b",
                         created_at=datetime.utcnow() - timedelta(days=40)),
            Notification(user_id=user.id, type="info", title="nuevo", body="b"),
        ]
    )
    db.commit()

    assert retention.run_once() == 1
    assert [n.title for n in db.query(Notification).all()] == ["nuevo"]
