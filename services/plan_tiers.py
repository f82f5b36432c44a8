"""Ranking helpers deciding whether a plan switch is an upgrade, a downgrade or a no-op.

The comparison tries three sources in order:

1. a canonical slug order (``free < professional < enterprise`` unless
   ``PLAN_TIER_ORDER`` says otherwise),
2. the price of each plan for the requested billing period,
3. a free/non-free heuristic when one side has no price.

Anything left unresolved compares as ``EQUAL`` and is not offered as a
self-service switch. Every step is symmetric, so swapping the arguments
inverts the result.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional

from core.env import env_list
from core.plan_constants import DEFAULT_TIER_ORDER, BillingPeriod, TierComparison
from services.plan_catalog_service import PlanRecord


class PlanAction(str, Enum):
    CURRENT = "current"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    CONTACT = "contact"
    NONE = "none"


def canonical_tier_ranks() -> Mapping[str, int]:
    order = env_list("PLAN_TIER_ORDER", DEFAULT_TIER_ORDER)
    return {slug: index for index, slug in enumerate(order)}


def _sign(delta) -> TierComparison:
    if delta > 0:
        return TierComparison.UPGRADE
    if delta < 0:
        return TierComparison.DOWNGRADE
    return TierComparison.EQUAL


def compare_tiers(
    current: PlanRecord,
    candidate: PlanRecord,
    period: BillingPeriod | str,
    *,
    ranks: Optional[Mapping[str, int]] = None,
) -> TierComparison:
    """Rank ``candidate`` relative to ``current`` for ``period``."""
    if current.id == candidate.id:
        return TierComparison.EQUAL

    rank_map = canonical_tier_ranks() if ranks is None else ranks
    current_rank = rank_map.get(current.slug)
    candidate_rank = rank_map.get(candidate.slug)
    if current_rank is not None and candidate_rank is not None:
        return _sign(candidate_rank - current_rank)

    current_pricing = current.pricing_for(period)
    candidate_pricing = candidate.pricing_for(period)
    if current_pricing is not None and candidate_pricing is not None:
        if current_pricing.currency == candidate_pricing.currency:
            return _sign(candidate_pricing.price - current_pricing.price)

    if current.is_free and not candidate.is_free:
        return TierComparison.UPGRADE
    if candidate.is_free and not current.is_free:
        return TierComparison.DOWNGRADE
    return TierComparison.EQUAL


def has_self_service_price(plan: PlanRecord, period: BillingPeriod | str) -> bool:
    pricing = plan.pricing_for(period)
    return pricing is not None and pricing.price > 0


def resolve_plan_action(
    current: PlanRecord,
    candidate: PlanRecord,
    period: BillingPeriod | str,
    *,
    ranks: Optional[Mapping[str, int]] = None,
) -> PlanAction:
    """Map the tier comparison onto the action offered for ``candidate``."""
    if current.id == candidate.id:
        return PlanAction.CURRENT
    comparison = compare_tiers(current, candidate, period, ranks=ranks)
    if comparison is TierComparison.UPGRADE:
        return PlanAction.UPGRADE if has_self_service_price(candidate, period) else PlanAction.CONTACT
    if comparison is TierComparison.DOWNGRADE:
        return PlanAction.DOWNGRADE
    return PlanAction.NONE


__all__ = [
    "PlanAction",
    "canonical_tier_ranks",
    "compare_tiers",
    "has_self_service_price",
    "resolve_plan_action",
]
