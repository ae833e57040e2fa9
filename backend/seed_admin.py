from __future__ import annotations

import logging
import os

from sqlalchemy.orm import Session

from backend.app import init_db
from backend.db import SessionLocal
from backend.logging_config import configure_logging
from backend.models.enums import Role
from backend.models.user import User
from backend.security import get_password_hash

logger = logging.getLogger(__name__)


def seed_admin() -> None:
    init_db()
    admin_email = os.getenv("ADMIN_EMAIL", "admin@ecoreports.org").strip().lower()
    admin_password = os.getenv("ADMIN_PASSWORD", "Admin123!")

    db: Session = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == admin_email).first()
        if existing:
            logger.info("Admin already exists: %s", admin_email)
            return
        admin = User(
            email=admin_email,
            hashed_password=get_password_hash(admin_password),
            role=Role.ADMIN,
            full_name="Administrador del Sistema",
        )
        db.add(admin)
        db.commit()
        logger.info("Admin user created: %s", admin_email)
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    seed_admin()
