"""Quota attainment and accelerator tier selection."""

import logging
import math
from typing import Tuple

from ..errors import InvalidQuota
from ..plans.models import AcceleratorTier, CommissionPlan

logger = logging.getLogger(__name__)


def attainment_percent(sales: float, quota: float) -> float:
    """Exact attainment percentage. Raises InvalidQuota for quota <= 0."""
    if quota is None or not math.isfinite(quota) or quota <= 0:
        logger.warning(f"Rejected attainment calculation with quota {quota!r}")
        raise InvalidQuota(quota)
    # Multiply first so round-number boundaries (100%, 125%) stay exact
    return sales * 100 / quota


def select_tier(plan: CommissionPlan, attainment: float) -> AcceleratorTier:
    """Highest tier whose threshold is at or below attainment.

    Below every threshold the plan's base rate applies.
    """
    selected = plan.base_tier
    for tier in plan.tiers:
        if tier.threshold <= attainment and tier.threshold >= selected.threshold:
            selected = tier
    return selected


def resolve_tier(plan: CommissionPlan, ytd_sales: float, quota: float) -> Tuple[int, AcceleratorTier]:
    """Resolve attainment and the accelerator tier it earns.

    Returns the attainment rounded to a whole percent along with the tier.
    Selection uses the unrounded figure, so 99.999% stays below a 100%
    threshold.
    """
    exact = attainment_percent(ytd_sales, quota)
    tier = select_tier(plan, exact)
    logger.debug(
        f"Plan {plan.id}: attainment {exact:.3f}% selects tier "
        f"{tier.threshold}% at {tier.rate}%"
    )
    return round(exact), tier


def effective_tier(accelerator_eligible: bool, plan: CommissionPlan, tier: AcceleratorTier) -> AcceleratorTier:
    """Tier the calculator should apply for a rep."""
    if not accelerator_eligible:
        return plan.base_tier
    return tier
