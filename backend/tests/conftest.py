import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="ecoreports-tests-")
os.environ["DB_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SIDE_EFFECT_BACKEND"] = "inline"
os.environ["IMAGE_HOST"] = "local"
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from backend.app import app
from backend.db import Base, SessionLocal, engine
from backend.models.enums import Role
from backend.models.user import User
from backend.security import get_password_hash
from backend.services.catalog import seed_catalog


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_catalog(db)
    finally:
        db.close()
    app.dependency_overrides.clear()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


_HASH = get_password_hash("secret123")


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=Role.CITIZEN, is_active=True, full_name=None):
        counter["n"] += 1
        user = User(
            email=f"{role.value}{counter['n']}@example.com",
            full_name=full_name or f"{role.value.title()} {counter['n']}",
            hashed_password=_HASH,
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make

