"""Payout history and per-plan team performance reports."""

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.attainment import attainment_percent
from ..errors import InvalidQuota
from ..ledger.ledger import Ledger
from ..ledger.models import Period, TransactionKind
from ..ledger.reconciliation import Reconciler
from ..plans.catalog import PlanCatalog
from ..reps.accounts import RepDirectory

logger = logging.getLogger(__name__)


@dataclass
class MonthlyPayout:
    """Commission paid out in one calendar month."""
    year: int
    month: int
    amount: float
    payment_count: int

    @property
    def label(self) -> str:
        return f"{calendar.month_abbr[self.month]} {self.year}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'month': self.label,
            'amount': self.amount,
            'payment_count': self.payment_count,
        }


@dataclass
class PlanPerformance:
    """How the reps on one plan are doing."""
    plan_id: str
    plan_name: str
    rep_count: int
    average_attainment: Optional[float]
    total_earned: float
    total_paid: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'plan_id': self.plan_id,
            'plan_name': self.plan_name,
            'rep_count': self.rep_count,
            'average_attainment': self.average_attainment,
            'total_earned': self.total_earned,
            'total_paid': self.total_paid,
        }


def monthly_payouts(
    ledger: Ledger,
    rep_ids: Optional[Iterable[str]] = None,
    year: Optional[int] = None,
) -> List[MonthlyPayout]:
    """Paid totals per month, oldest first.

    Payments are dated by their pay date, or by when they were recorded if
    they have none. Recoveries of clawbacks count as negative payments.
    """
    rep_ids = list(rep_ids) if rep_ids is not None else ledger.rep_ids()
    totals: Dict[Tuple[int, int], float] = defaultdict(float)
    counts: Dict[Tuple[int, int], int] = defaultdict(int)

    for rep_id in rep_ids:
        for entry in ledger.entries_for(rep_id).of_kind(TransactionKind.PAID):
            day = entry.pay_date or entry.timestamp.date()
            if year is not None and day.year != year:
                continue
            totals[(day.year, day.month)] += entry.amount
            counts[(day.year, day.month)] += 1

    return [
        MonthlyPayout(year=y, month=m, amount=round(totals[(y, m)], 2), payment_count=counts[(y, m)])
        for y, m in sorted(totals)
    ]


def team_performance(
    reconciler: Reconciler,
    accounts: RepDirectory,
    catalog: PlanCatalog,
    period: Optional[Period] = None,
) -> List[PlanPerformance]:
    """Average attainment and commission totals for each plan with reps."""
    by_plan = defaultdict(list)
    for account in accounts.list_reps():
        by_plan[account.plan_id].append(account)

    report = []
    for plan_id, reps in by_plan.items():
        plan_name = catalog.plans[plan_id].name if plan_id in catalog else plan_id

        attainments = []
        earned = paid = 0.0
        for account in reps:
            sales, quota = account.attainment_basis()
            try:
                attainments.append(attainment_percent(sales, quota))
            except InvalidQuota:
                logger.debug(f"Rep {account.id} has no usable quota; left out of attainment")

            totals = reconciler.ledger_totals(account.id, period)
            earned += totals.earned
            paid += totals.paid

        report.append(PlanPerformance(
            plan_id=plan_id,
            plan_name=plan_name,
            rep_count=len(reps),
            average_attainment=round(sum(attainments) / len(attainments), 1) if attainments else None,
            total_earned=round(earned, 2),
            total_paid=round(paid, 2),
        ))

    return sorted(report, key=lambda p: p.total_earned, reverse=True)
