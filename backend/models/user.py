# backend/models/user.py
from __future__ import annotations

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Integer
from sqlalchemy.sql import func
from sqlalchemy.orm import validates

from ..db import Base
from .enums import Role


class User(Base):
    __tablename__ = "users"

    id = Column(
        String,
        primary_key=True,
        index=True,
        default=lambda: str(uuid.uuid4()),
    )
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    hashed_password = Column(String, nullable=False)

    # Roles: "citizen", "authority", "admin"
    role = Column(String, nullable=False, default=Role.CITIZEN.value)

    # Only ever changed through the points ledger.
    points = Column(Integer, nullable=False, default=0, server_default="0")
    level = Column(Integer, nullable=False, default=1, server_default="1")

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    @validates("email")
    def normalize_email(self, key, value: str) -> str:
        return (value or "").strip().lower()

    @validates("role")
    def normalize_role(self, key, value) -> str:
        """Store roles lower-case; unknown roles are rejected."""
        if not value:
            return Role.CITIZEN.value
        if isinstance(value, Role):
            return value.value
        return Role(str(value).strip().lower()).value

    @property
    def display_name(self) -> str:
        return self.full_name or self.email
