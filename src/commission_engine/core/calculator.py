"""Commission calculation from resolved tiers and bonus rules."""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from .attainment import attainment_percent, effective_tier, resolve_tier
from ..errors import InvalidSalesAmount
from ..plans.models import AcceleratorTier, BonusRule, CommissionPlan, DealContext
from ..reps.accounts import SalesRepAccount

logger = logging.getLogger(__name__)


@dataclass
class BonusLine:
    """A bonus rule that fired for a deal."""
    name: str
    amount: float


@dataclass
class CommissionBreakdown:
    """Itemized commission for one deal."""
    rep_id: str
    plan_id: str
    sales_amount: float
    rate: float
    attainment_pct: Optional[int]
    base_commission: float
    bonuses: List[BonusLine] = field(default_factory=list)
    retroactive: bool = True
    # Rounded once from the unrounded base and bonuses, so it can differ
    # from the sum of the displayed lines by a cent
    total: float = 0.0

    @property
    def bonus_total(self) -> float:
        return round(sum(b.amount for b in self.bonuses), 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rep_id": self.rep_id,
            "plan_id": self.plan_id,
            "sales_amount": self.sales_amount,
            "rate": self.rate,
            "attainment_pct": self.attainment_pct,
            "base_commission": self.base_commission,
            "bonuses": [{"name": b.name, "amount": b.amount} for b in self.bonuses],
            "bonus_total": self.bonus_total,
            "total": self.total,
            "retroactive": self.retroactive,
        }


def _check_sales_amount(sales_amount: float):
    if sales_amount is None or not math.isfinite(sales_amount) or sales_amount < 0:
        logger.warning(f"Rejected sales amount {sales_amount!r}")
        raise InvalidSalesAmount(sales_amount)


def qualifying_bonuses(
    account: SalesRepAccount,
    plan: CommissionPlan,
    deal: Optional[DealContext],
) -> List[BonusRule]:
    """Bonus rules that apply to this rep, plan and deal.

    Rules with an active window only fire for deals closed inside it; a deal
    without a close date is treated as closing today.
    """
    if deal is None:
        return []
    closed_on = deal.closed_on or date.today()
    return [
        rule for rule in plan.bonus_rules
        if account.is_bonus_eligible(rule.trigger)
        and rule.applies_to_plan(plan.id)
        and rule.is_active_on(closed_on)
        and rule.is_triggered_by(deal)
    ]


def compute_earned(
    account: SalesRepAccount,
    plan: CommissionPlan,
    sales_amount: float,
    tier: AcceleratorTier,
    deal: Optional[DealContext] = None,
) -> float:
    """Commission earned on a sales amount at the given tier.

    Reps without accelerator eligibility always get the plan's base rate.
    Qualifying bonuses stack on top: fixed bonuses once per deal,
    percentage bonuses as an extra percent of the sales amount.
    """
    _check_sales_amount(sales_amount)

    applied = effective_tier(account.accelerator_eligible, plan, tier)
    return _commission_total(
        sales_amount * applied.rate / 100,
        qualifying_bonuses(account, plan, deal),
        sales_amount,
    )


def _commission_total(base: float, rules: List[BonusRule], sales_amount: float) -> float:
    """Money total for a deal: unrounded base plus bonuses, rounded once."""
    amount = base
    for rule in rules:
        amount += rule.amount_for(sales_amount)
    return round(amount, 2)


def marginal_commission(
    plan: CommissionPlan,
    sales_before: float,
    sales_amount: float,
    quota: float,
) -> float:
    """Commission when accelerated rates apply only above each threshold.

    The deal occupies [sales_before, sales_before + sales_amount) on the
    rep's sales line; each slice is paid at the rate of the band it falls in.
    """
    _check_sales_amount(sales_amount)
    attainment_percent(sales_before, quota)  # validates quota

    bands = [plan.base_tier] + [t for t in plan.tiers if t.threshold > 0]
    start = max(sales_before, 0.0)
    end = start + sales_amount
    total = 0.0

    for i, band in enumerate(bands):
        band_start = band.threshold * quota / 100
        band_end = bands[i + 1].threshold * quota / 100 if i + 1 < len(bands) else math.inf
        overlap = min(end, band_end) - max(start, band_start)
        if overlap > 0:
            total += overlap * band.rate / 100

    return total


class CommissionCalculator:
    """Produces itemized commission breakdowns for deals."""

    def breakdown(
        self,
        account: SalesRepAccount,
        plan: CommissionPlan,
        sales_amount: float,
        deal: Optional[DealContext] = None,
    ) -> CommissionBreakdown:
        """Itemize the commission for a deal.

        The account's attainment basis is expected to already include the
        deal's sales.
        """
        _check_sales_amount(sales_amount)

        basis_sales, quota = account.attainment_basis()
        attainment, tier = resolve_tier(plan, basis_sales, quota)
        applied = effective_tier(account.accelerator_eligible, plan, tier)

        if plan.retroactive_accelerators or not account.accelerator_eligible:
            base = sales_amount * applied.rate / 100
        else:
            sales_before = max(basis_sales - sales_amount, 0.0)
            base = marginal_commission(plan, sales_before, sales_amount, quota)

        rules = qualifying_bonuses(account, plan, deal)
        bonuses = [
            BonusLine(name=rule.name, amount=round(rule.amount_for(sales_amount), 2))
            for rule in rules
        ]

        result = CommissionBreakdown(
            rep_id=account.id,
            plan_id=plan.id,
            sales_amount=sales_amount,
            rate=applied.rate,
            attainment_pct=attainment,
            base_commission=round(base, 2),
            bonuses=bonuses,
            retroactive=plan.retroactive_accelerators,
            total=_commission_total(base, rules, sales_amount),
        )
        logger.debug(
            f"Rep {account.id}: {sales_amount:.2f} at {applied.rate}% "
            f"+ {len(bonuses)} bonus(es) = {result.total:.2f}"
        )
        return result
