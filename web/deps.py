"""Shared FastAPI dependencies."""

from __future__ import annotations

import uuid
from typing import Type

from fastapi import Depends, HTTPException, status

from services.payments.errors import UpgradeError
from services.payments.gateway import PaymentGateway
from services.payments.razorpay_client import get_razorpay_client
from services.payments.upgrade_orchestrator import UpgradeOrchestrator
from services.payments.verifier import PaymentVerifier, get_payment_verifier as _build_payment_verifier
from services.plan_catalog_service import coerce_uuid


def _config_missing(exc: RuntimeError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "payments.config_missing", "message": str(exc)},
    )


def get_payment_gateway() -> PaymentGateway:
    try:
        return get_razorpay_client()
    except RuntimeError as exc:
        raise _config_missing(exc) from exc


def get_payment_verifier() -> PaymentVerifier:
    try:
        return _build_payment_verifier()
    except RuntimeError as exc:
        raise _config_missing(exc) from exc


def get_upgrade_orchestrator(
    gateway: PaymentGateway = Depends(get_payment_gateway),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
) -> UpgradeOrchestrator:
    return UpgradeOrchestrator(gateway, verifier)


def upgrade_http_error(exc: UpgradeError) -> HTTPException:
    """Translate a domain error into the ``{"code", "message"}`` HTTP detail."""
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def require_uuid(value: str, error: Type[UpgradeError], field: str) -> uuid.UUID:
    parsed = coerce_uuid(value)
    if parsed is None:
        raise upgrade_http_error(error(**{field: value}))
    return parsed
