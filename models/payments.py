from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from core.plan_constants import UpgradeState
from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentOrder(Base):
    """One payment attempt for one plan switch. Never reused across attempts."""

    __tablename__ = "payment_orders"
    __table_args__ = {"extend_existing": True}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    target_plan_id = Column(UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False)
    target_pricing_id = Column(UUID(as_uuid=True), ForeignKey("plan_pricings.id"), nullable=False)
    expected_plan_id = Column(UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False)
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    gateway_order_id = Column(String(64), nullable=True, unique=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True, index=True)
    status = Column(String(32), nullable=False, default=UpgradeState.ORDER_CREATED.value, index=True)
    failure_reason = Column(Text, nullable=True)
    needs_reconciliation = Column(Boolean, nullable=False, default=False, index=True)
    apply_attempts = Column(Integer, nullable=False, default=0)
    notes = Column(JSON, nullable=False, default=dict)
    history = Column(JSON, nullable=False, default=list)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    applied_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


__all__ = ["PaymentOrder"]
