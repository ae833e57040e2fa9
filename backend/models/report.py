# backend/models/report.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import relationship

from ..db import Base
from .enums import ReportStatus


class Report(Base):
    """
    Citizen-submitted waste/litter observation.

    ``resolved_at`` is set iff ``status`` is Resolved or Rejected.
    """

    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    description = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String, nullable=True)
    waste_type = Column(String, nullable=True)

    image_url = Column(String, nullable=True)
    image_public_id = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    thumbnail_public_id = Column(String, nullable=True)

    status = Column(String, nullable=False, default=ReportStatus.REPORTED.value)
    authority_comment = Column(Text, nullable=True)
    assigned_authority_id = Column(String, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    user = relationship("User", foreign_keys=[user_id])
    assigned_authority = relationship("User", foreign_keys=[assigned_authority_id])

    __table_args__ = (Index("ix_reports_status_active", "status", "is_active"),)
