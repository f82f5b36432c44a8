"""SQLAlchemy models for the plan catalog (plans + per-period pricing)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Plan(Base):
    """Catalog entry; ceilings left NULL mean unlimited."""

    __tablename__ = "plans"
    __table_args__ = {"extend_existing": True}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(160), nullable=False)
    description = Column(Text, nullable=True)
    max_users = Column(Integer, nullable=True)
    max_apps = Column(Integer, nullable=True)
    max_storage_bytes = Column(BigInteger, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    pricings = relationship(
        "PlanPricing",
        back_populates="plan",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PlanPricing.billing_period",
    )


class PlanPricing(Base):
    """One price per billing period; a missing row means the plan is sold through sales."""

    __tablename__ = "plan_pricings"
    __table_args__ = (
        UniqueConstraint("plan_id", "billing_period", name="uq_plan_pricings_plan_period"),
        {"extend_existing": True},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    billing_period = Column(String(16), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    plan = relationship("Plan", back_populates="pricings")


__all__ = ["Plan", "PlanPricing"]
