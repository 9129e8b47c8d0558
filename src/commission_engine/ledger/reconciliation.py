"""Reconcile ledger totals into earned/paid/pending summaries."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from .ledger import Ledger, LedgerView
from .models import Period, TransactionKind, pending_closure
from ..core.attainment import effective_tier, resolve_tier
from ..errors import CommissionError, InvalidQuota
from ..plans.catalog import PlanCatalog
from ..reps.accounts import RepDirectory

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.01


@dataclass
class CommissionSummary:
    """Derived earned/paid/pending totals for a rep over a period."""
    rep_id: str
    period: str
    total_earned: float
    total_paid: float
    total_pending: float
    # Pending entries from earlier periods that were paid or voided in this one
    prior_pending_closed: float = 0.0
    attainment_pct: Optional[int] = None
    current_rate: Optional[float] = None
    entry_count: int = 0

    is_consistent = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rep_id': self.rep_id,
            'period': self.period,
            'total_earned': self.total_earned,
            'total_paid': self.total_paid,
            'total_pending': self.total_pending,
            'prior_pending_closed': self.prior_pending_closed,
            'attainment_pct': self.attainment_pct,
            'current_rate': self.current_rate,
            'entry_count': self.entry_count,
        }


@dataclass
class ReconciliationMismatch:
    """Ledger totals disagree beyond tolerance. Needs human review."""
    rep_id: str
    period: str
    expected: float
    actual: float
    delta: float
    reason: str = ""

    is_consistent = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rep_id': self.rep_id,
            'period': self.period,
            'expected': self.expected,
            'actual': self.actual,
            'delta': self.delta,
            'reason': self.reason,
        }


ReconciliationResult = Union[CommissionSummary, ReconciliationMismatch]


@dataclass
class LedgerTotals:
    """Raw sums over a rep's entries in a period."""
    earned: float = 0.0
    paid: float = 0.0
    pending: float = 0.0
    prior_pending_closed: float = 0.0
    entry_count: int = 0

    @property
    def settled(self) -> float:
        """Paid plus pending, net of closures of pending from other periods."""
        return round(self.paid + self.pending - self.prior_pending_closed, 2)


class Reconciler:
    """Checks that earned == paid + pending for a rep's ledger entries."""

    def __init__(
        self,
        ledger: Ledger,
        accounts: Optional[RepDirectory] = None,
        catalog: Optional[PlanCatalog] = None,
        tolerance: float = DEFAULT_TOLERANCE,
    ):
        self.ledger = ledger
        self.accounts = accounts
        self.catalog = catalog
        self.tolerance = tolerance

    def ledger_totals(self, rep_id: str, period: Optional[Period] = None) -> LedgerTotals:
        """Earned, paid and open pending from one snapshot.

        Closing a Pending entry reduces pending in the closing entry's
        period. When the Pending entry itself falls outside the period, the
        closure is reported as `prior_pending_closed` instead.
        """
        period = period or Period.all_time()
        snapshot = self.ledger.snapshot(rep_id)
        by_id = {e.id: e for e in snapshot}

        earned = paid = pending = prior_closed = 0.0
        count = 0
        for entry in LedgerView(snapshot, period):
            count += 1
            if entry.kind in (TransactionKind.EARNED, TransactionKind.ADJUSTMENT):
                earned += entry.amount
            elif entry.kind == TransactionKind.PAID:
                paid += entry.amount
            elif entry.kind == TransactionKind.PENDING:
                pending += entry.amount

            if entry.reference_id:
                referenced = by_id.get(entry.reference_id)
                closing = pending_closure(entry, referenced)
                if closing and period.contains(referenced.timestamp):
                    pending -= closing
                else:
                    prior_closed += closing

        return LedgerTotals(
            earned=round(earned, 2),
            paid=round(paid, 2),
            pending=round(pending, 2),
            prior_pending_closed=round(prior_closed, 2),
            entry_count=count,
        )

    def current_rate(self, rep_id: str) -> Tuple[Optional[int], Optional[float]]:
        if not self.accounts or not self.catalog:
            return None, None
        try:
            account = self.accounts.get(rep_id)
            plan = self.catalog.get(account.plan_id)
            sales, quota = account.attainment_basis()
            attainment, tier = resolve_tier(plan, sales, quota)
        except InvalidQuota:
            return None, None
        except CommissionError as e:
            logger.debug(f"No plan context for rep {rep_id}: {e}")
            return None, None
        return attainment, effective_tier(account.accelerator_eligible, plan, tier).rate

    def reconcile(
        self,
        rep_id: str,
        period: Optional[Period] = None,
        expected_earned: Optional[float] = None,
    ) -> ReconciliationResult:
        """Summarize a rep's ledger, or report why it does not balance.

        When `expected_earned` is given (the calculator's figure for the
        period), the ledger's earned total must also match it.
        """
        period = period or Period.all_time()
        totals = self.ledger_totals(rep_id, period)
        earned = totals.earned

        if expected_earned is not None:
            delta = round(earned - expected_earned, 2)
            if abs(delta) > self.tolerance:
                logger.warning(
                    f"Rep {rep_id} {period}: ledger earned {earned:.2f} "
                    f"differs from computed {expected_earned:.2f}"
                )
                return ReconciliationMismatch(
                    rep_id=rep_id,
                    period=str(period),
                    expected=round(expected_earned, 2),
                    actual=earned,
                    delta=delta,
                    reason="ledger earned total differs from computed commission",
                )

        settled = totals.settled
        delta = round(earned - settled, 2)
        if abs(delta) > self.tolerance:
            logger.warning(
                f"Rep {rep_id} {period}: earned {earned:.2f} != paid {totals.paid:.2f} "
                f"+ pending {totals.pending:.2f} - prior closed {totals.prior_pending_closed:.2f}"
            )
            return ReconciliationMismatch(
                rep_id=rep_id,
                period=str(period),
                expected=earned,
                actual=settled,
                delta=delta,
                reason="earned does not equal paid plus pending",
            )

        attainment, rate = self.current_rate(rep_id)
        return CommissionSummary(
            rep_id=rep_id,
            period=str(period),
            total_earned=earned,
            total_paid=totals.paid,
            total_pending=totals.pending,
            prior_pending_closed=totals.prior_pending_closed,
            attainment_pct=attainment,
            current_rate=rate,
            entry_count=totals.entry_count,
        )

    def reconcile_many(
        self,
        rep_ids: Optional[Iterable[str]] = None,
        period: Optional[Period] = None,
        max_workers: int = 4,
    ) -> Dict[str, ReconciliationResult]:
        """Reconcile several reps concurrently."""
        rep_ids = list(rep_ids) if rep_ids is not None else self.ledger.rep_ids()
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = pool.map(lambda rep_id: self.reconcile(rep_id, period), rep_ids)
            return dict(zip(rep_ids, results))
