"""Readiness endpoints for the plan and payment services."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import database
from core.env import env_str
from core.logging import get_logger

router = APIRouter(prefix="/health", tags=["Health"])

logger = get_logger(__name__)

_PAYMENT_KEYS = ("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET")


def ping_database() -> Tuple[bool, Optional[str]]:
    db = database.SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return True, None
    except SQLAlchemyError as exc:
        logger.warning("Database ping failed: %s", exc)
        return False, str(exc)
    finally:
        db.close()


def payment_config_status() -> Dict[str, Any]:
    """Report which gateway credentials are missing without exposing their values."""
    missing = [key for key in _PAYMENT_KEYS if not env_str(key)]
    payload: Dict[str, Any] = {"configured": not missing}
    if missing:
        payload["missing"] = missing
    return payload


@router.get(
    "/status",
    summary="Service readiness",
    description="Database connectivity plus whether checkout can be opened with the configured gateway keys.",
)
def read_service_status():
    db_ok, db_error = ping_database()
    payments = payment_config_status()
    payload: Dict[str, Any] = {
        "status": "ok" if db_ok and payments["configured"] else "degraded",
        "database": {"ok": db_ok},
        "payments": payments,
    }
    if db_error:
        payload["database"]["error"] = db_error
    return payload


__all__ = ["router", "payment_config_status", "ping_database"]
