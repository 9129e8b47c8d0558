"""Commission plan definitions: accelerator tiers and bonus rules."""

import math
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from ..errors import PlanTierOrderingViolation


class BonusTrigger(Enum):
    """Deal conditions a bonus rule can fire on."""
    NEW_LOGO = "new_logo"
    MULTI_YEAR = "multi_year"
    UPSELL = "upsell"
    VOLUME = "volume"
    RETENTION = "retention"
    ANY_DEAL = "any_deal"      # SPIFFs paid on every deal in their window


class BonusEffect(Enum):
    """How a bonus adds to the commission."""
    FIXED = "fixed"            # Flat amount once per qualifying deal
    PERCENTAGE = "percentage"  # Additional percent of the sales amount


# Trigger parameters used when a rule leaves `threshold` unset
DEFAULT_TRIGGER_THRESHOLDS = {
    BonusTrigger.MULTI_YEAR: 3,    # 3+ year contracts
    BonusTrigger.VOLUME: 5,        # every 5th deal in the period
    BonusTrigger.RETENTION: 0,     # minimum renewal rate percent
}


@dataclass(frozen=True)
class AcceleratorTier:
    """Rate that applies once attainment reaches `threshold` percent."""
    threshold: float
    rate: float


@dataclass(frozen=True)
class DealContext:
    """Facts about a single deal that bonus triggers are tested against."""
    deal_id: str = ""
    description: str = ""
    new_logo: bool = False
    contract_years: int = 1
    upsell: bool = False
    deals_closed_in_period: int = 0
    renewal: bool = False
    renewal_rate: float = 0.0
    closed_on: Optional[date] = None


@dataclass(frozen=True)
class BonusRule:
    """A bonus or SPIFF layered on top of the base commission."""
    name: str
    trigger: BonusTrigger
    effect: BonusEffect
    value: float
    plan_scope: FrozenSet[str] = frozenset()  # empty = every plan
    threshold: Optional[float] = None
    description: str = ""
    active_from: Optional[date] = None   # inclusive
    active_until: Optional[date] = None  # inclusive

    def __post_init__(self):
        if self.active_from and self.active_until and self.active_until < self.active_from:
            raise ValueError(
                f"Bonus {self.name} ends {self.active_until} before it starts {self.active_from}"
            )

    def is_active_on(self, day: date) -> bool:
        if self.active_from and day < self.active_from:
            return False
        if self.active_until and day > self.active_until:
            return False
        return True

    def status_on(self, day: date) -> str:
        """Scheduled, active or expired on the given day."""
        if self.active_from and day < self.active_from:
            return "scheduled"
        if self.active_until and day > self.active_until:
            return "expired"
        return "active"

    @property
    def trigger_threshold(self) -> float:
        if self.threshold is not None:
            return self.threshold
        return DEFAULT_TRIGGER_THRESHOLDS.get(self.trigger, 0)

    def applies_to_plan(self, plan_id: str) -> bool:
        return not self.plan_scope or plan_id in self.plan_scope

    def is_triggered_by(self, deal: DealContext) -> bool:
        """Check whether the deal satisfies this rule's trigger."""
        if self.trigger == BonusTrigger.NEW_LOGO:
            return deal.new_logo
        if self.trigger == BonusTrigger.MULTI_YEAR:
            return deal.contract_years >= self.trigger_threshold
        if self.trigger == BonusTrigger.UPSELL:
            return deal.upsell
        if self.trigger == BonusTrigger.VOLUME:
            step = int(self.trigger_threshold) or 1
            count = deal.deals_closed_in_period
            return count > 0 and count % step == 0
        if self.trigger == BonusTrigger.RETENTION:
            return deal.renewal and deal.renewal_rate >= self.trigger_threshold
        if self.trigger == BonusTrigger.ANY_DEAL:
            return True
        return False

    def amount_for(self, sales_amount: float) -> float:
        if self.effect == BonusEffect.FIXED:
            return self.value
        return sales_amount * self.value / 100


@dataclass(frozen=True)
class CommissionPlan:
    """An immutable commission plan.

    Plans are versioned by creating a new plan, never by editing one that
    reps are already paid under.
    """
    id: str
    name: str
    base_rate: float
    tiers: Tuple[AcceleratorTier, ...] = ()
    bonus_rules: Tuple[BonusRule, ...] = ()
    eligible_roles: FrozenSet[str] = frozenset()
    description: str = ""
    version: int = 1
    retroactive_accelerators: bool = True
    supersedes: Optional[str] = None  # id of the plan this version replaces

    def __post_init__(self):
        # Accept lists/sets from callers but store immutable containers
        object.__setattr__(self, "tiers", tuple(self.tiers))
        object.__setattr__(self, "bonus_rules", tuple(self.bonus_rules))
        object.__setattr__(self, "eligible_roles", frozenset(self.eligible_roles))
        self.validate()

    def validate(self):
        """Reject plans that would make tier selection ambiguous."""
        if not math.isfinite(self.base_rate) or self.base_rate < 0:
            raise ValueError(f"Plan {self.id} has invalid base rate {self.base_rate}")

        thresholds = [t.threshold for t in self.tiers]
        for previous, current in zip(thresholds, thresholds[1:]):
            if current <= previous:
                raise PlanTierOrderingViolation(self.id, thresholds)

        for tier in self.tiers:
            if tier.threshold < 0 or tier.rate < 0:
                raise ValueError(f"Plan {self.id} has a negative tier {tier}")

    @property
    def base_tier(self) -> AcceleratorTier:
        """Virtual tier at threshold 0 carrying the base rate."""
        return AcceleratorTier(threshold=0, rate=self.base_rate)

    def is_role_eligible(self, role: str) -> bool:
        return not self.eligible_roles or role in self.eligible_roles
