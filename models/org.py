"""SQLAlchemy model for organisations and their active plan assignment."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Org(Base):
    """Organisation registry; ``plan_id`` is written only by the plan assignment service."""

    __tablename__ = "orgs"
    __table_args__ = {"extend_existing": True}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug = Column(String(160), unique=True, nullable=True)
    name = Column(String(160), nullable=False)
    status = Column(String(32), nullable=False, default="active")
    plan_id = Column(UUID(as_uuid=True), ForeignKey("plans.id", ondelete="RESTRICT"), nullable=False, index=True)
    plan_updated_at = Column(DateTime(timezone=True), nullable=True)
    user_count = Column(Integer, nullable=False, default=0)
    app_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    plan = relationship("Plan", lazy="joined")


__all__ = ["Org"]
