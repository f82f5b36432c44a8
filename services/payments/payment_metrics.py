"""Prometheus counters for the plan upgrade flow."""

from __future__ import annotations

from core.plan_constants import UpgradeState
from services.prometheus_helpers import build_counter

_ORDERS_CREATED = build_counter(
    "plan_upgrade_orders_created_total",
    "Gateway orders minted for plan upgrades.",
    ["currency"],
)
_UPGRADE_OUTCOMES = build_counter(
    "plan_upgrade_outcomes_total",
    "Plan upgrade attempts by terminal state.",
    ["state"],
)
_RECONCILIATION_FLAGS = build_counter(
    "plan_upgrade_reconciliation_flags_total",
    "Payment orders flagged for manual reconciliation.",
    ["state"],
)


def record_order_created(currency: str) -> None:
    _ORDERS_CREATED.labels(currency=currency).inc()


def record_outcome(state: UpgradeState) -> None:
    _UPGRADE_OUTCOMES.labels(state=state.value).inc()


def record_reconciliation_flag(state: UpgradeState) -> None:
    _RECONCILIATION_FLAGS.labels(state=state.value).inc()


__all__ = ["record_order_created", "record_outcome", "record_reconciliation_flag"]
