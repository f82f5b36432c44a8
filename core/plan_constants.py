"""Shared plan tier and upgrade state constants used across services and routers."""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Sequence


class PlanSlug(str, Enum):
    FREE = "free"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


# Lowest tier first. PLAN_TIER_ORDER can override this at runtime.
DEFAULT_TIER_ORDER: Sequence[str] = tuple(slug.value for slug in PlanSlug)
FREE_PLAN_SLUG = PlanSlug.FREE.value


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


class TierComparison(str, Enum):
    EQUAL = "equal"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"

    def invert(self) -> "TierComparison":
        if self is TierComparison.UPGRADE:
            return TierComparison.DOWNGRADE
        if self is TierComparison.DOWNGRADE:
            return TierComparison.UPGRADE
        return TierComparison.EQUAL


class UpgradeState(str, Enum):
    IDLE = "idle"
    ORDER_CREATED = "order_created"
    CHECKOUT_OPEN = "checkout_open"
    AUTHORIZED = "authorized"
    GATEWAY_FAILED = "gateway_failed"
    USER_DISMISSED = "user_dismissed"
    EXPIRED = "expired"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"
    APPLYING = "applying"
    APPLIED = "applied"
    APPLY_FAILED = "apply_failed"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


TERMINAL_UPGRADE_STATES: FrozenSet[UpgradeState] = frozenset(
    {
        UpgradeState.GATEWAY_FAILED,
        UpgradeState.USER_DISMISSED,
        UpgradeState.EXPIRED,
        UpgradeState.VERIFICATION_FAILED,
        UpgradeState.APPLIED,
        UpgradeState.APPLY_FAILED,
    }
)

# Orders waiting on the payer; these are the ones bounded by the order TTL.
AWAITING_CHECKOUT_STATES: FrozenSet[UpgradeState] = frozenset(
    {UpgradeState.ORDER_CREATED, UpgradeState.CHECKOUT_OPEN}
)

RECONCILIATION_STATES: FrozenSet[UpgradeState] = frozenset(
    {UpgradeState.VERIFICATION_FAILED, UpgradeState.APPLY_FAILED}
)

__all__ = [
    "AWAITING_CHECKOUT_STATES",
    "BillingPeriod",
    "DEFAULT_TIER_ORDER",
    "FREE_PLAN_SLUG",
    "PlanSlug",
    "RECONCILIATION_STATES",
    "TERMINAL_UPGRADE_STATES",
    "TierComparison",
    "UpgradeState",
]
