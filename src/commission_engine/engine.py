"""High-level commission workflows over the catalog, reps and ledger."""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from .core.calculator import CommissionBreakdown, CommissionCalculator
from .core.config import EngineConfig
from .errors import LedgerError, PendingAlreadyClosed, RoleNotEligible
from .ledger.ledger import CLOSE_TOLERANCE, Ledger, new_transaction_id
from .ledger.models import CommissionTransaction, Period, TransactionKind
from .ledger.reconciliation import Reconciler, ReconciliationResult
from .plans.catalog import PlanCatalog
from .plans.models import DealContext
from .reporting.forecast import Forecaster, ForecastPoint, PipelineDeal
from .reporting.performance import MonthlyPayout, PlanPerformance, monthly_payouts, team_performance
from .reps.accounts import RepDirectory

logger = logging.getLogger(__name__)


@dataclass
class EarningResult:
    """Outcome of recording a deal."""
    breakdown: CommissionBreakdown
    earned_id: str
    pending_id: str

    @property
    def amount(self) -> float:
        return self.breakdown.total


class CommissionEngine:
    """Records deals, payroll closures and corrections, and reports on them."""

    def __init__(
        self,
        catalog: PlanCatalog,
        accounts: RepDirectory,
        ledger: Ledger,
        config: Optional[EngineConfig] = None,
    ):
        self.config = config or EngineConfig()
        self.catalog = catalog
        self.accounts = accounts
        self.ledger = ledger
        self.calculator = CommissionCalculator()
        self.reconciler = Reconciler(
            ledger,
            accounts=accounts,
            catalog=catalog,
            tolerance=self.config.reconciliation_tolerance,
        )
        self.forecaster = Forecaster(ledger, lookback_weeks=self.config.forecast_lookback_weeks)
        self._rep_locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    @classmethod
    def from_config(cls, config: EngineConfig) -> "CommissionEngine":
        """Engine backed by the JSON files in the configured data directory."""
        return cls(
            catalog=PlanCatalog(config.plans_path),
            accounts=RepDirectory(config.reps_path),
            ledger=Ledger(config.ledger_path),
            config=config,
        )

    def _lock_for(self, rep_id: str) -> threading.RLock:
        """Serializes read-price-write workflows for one rep."""
        with self._guard:
            lock = self._rep_locks.get(rep_id)
            if lock is None:
                lock = self._rep_locks[rep_id] = threading.RLock()
            return lock

    def preview_deal(
        self,
        rep_id: str,
        sales_amount: float,
        deal: Optional[DealContext] = None,
    ) -> CommissionBreakdown:
        """Commission a deal would earn, without recording anything."""
        account = self.accounts.get(rep_id)
        plan = self.catalog.get(account.plan_id)
        if not plan.is_role_eligible(account.role):
            raise RoleNotEligible(rep_id, account.role, plan.id)

        deal = deal or DealContext()
        with_deal = replace(
            account,
            ytd_sales=account.ytd_sales + max(sales_amount, 0.0),
            period_sales=account.period_sales + max(sales_amount, 0.0),
        )
        return self.calculator.breakdown(with_deal, plan, sales_amount, deal)

    def record_deal(
        self,
        rep_id: str,
        sales_amount: float,
        deal: Optional[DealContext] = None,
        timestamp: Optional[datetime] = None,
        pay_date: Optional[date] = None,
    ) -> EarningResult:
        """Compute commission for a closed deal and record it.

        Writes an Earned entry and the Pending entry awaiting payroll in one
        ledger append. Invalid input raises before anything is written.

        Deals for the same rep are recorded one at a time: the tier is read
        from the rep's sales, so the next deal must see this one's sales.
        """
        timestamp = timestamp or datetime.now()
        deal = deal or DealContext()
        if deal.closed_on is None:
            deal = replace(deal, closed_on=timestamp.date())

        with self._lock_for(rep_id):
            return self._record_deal(rep_id, sales_amount, deal, timestamp, pay_date)

    def _record_deal(
        self,
        rep_id: str,
        sales_amount: float,
        deal: DealContext,
        timestamp: datetime,
        pay_date: Optional[date],
    ) -> EarningResult:
        breakdown = self.preview_deal(rep_id, sales_amount, deal)

        source_ref = deal.deal_id
        note = deal.description
        earned_id = new_transaction_id()

        _, pending_id = self.ledger.append_many([
            CommissionTransaction(
                id=earned_id,
                rep_id=rep_id,
                kind=TransactionKind.EARNED,
                amount=breakdown.total,
                timestamp=timestamp,
                source_ref=source_ref,
                note=note,
            ),
            CommissionTransaction(
                rep_id=rep_id,
                kind=TransactionKind.PENDING,
                amount=breakdown.total,
                timestamp=timestamp,
                source_ref=source_ref,
                note="Awaiting payroll",
                pay_date=pay_date,
                reference_id=earned_id,
            ),
        ])
        self.accounts.record_sales(rep_id, sales_amount)
        return EarningResult(breakdown=breakdown, earned_id=earned_id, pending_id=pending_id)

    def record_adjustment(
        self,
        rep_id: str,
        amount: float,
        note: str,
        source_ref: str = "",
        settled: bool = False,
        timestamp: Optional[datetime] = None,
        pay_date: Optional[date] = None,
        reference_id: Optional[str] = None,
    ) -> str:
        """Record a manual adjustment such as a SPIFF or a clawback.

        Positive adjustments are balanced by a Pending entry, or by a Paid
        entry when already settled. A clawback (negative amount) either
        references the open Pending entry it cancels, or, when the money was
        already paid out, is matched by a recovery: a negative Paid entry
        written now when `settled`, or later through `recover_clawback`.
        Until then reconciliation flags it.
        """
        self.accounts.get(rep_id)
        timestamp = timestamp or datetime.now()
        amount = round(amount, 2)
        adjustment_id = new_transaction_id()
        entries = [
            CommissionTransaction(
                id=adjustment_id,
                rep_id=rep_id,
                kind=TransactionKind.ADJUSTMENT,
                amount=amount,
                timestamp=timestamp,
                source_ref=source_ref,
                note=note,
                reference_id=reference_id,
            )
        ]

        if reference_id is not None:
            pending = self._pending(reference_id)
            if amount >= 0 or pending.rep_id != rep_id:
                raise LedgerError(
                    f"Only a clawback for rep {pending.rep_id} can reference pending entry {reference_id}"
                )
        elif amount > 0:
            entries.append(CommissionTransaction(
                rep_id=rep_id,
                kind=TransactionKind.PAID if settled else TransactionKind.PENDING,
                amount=amount,
                timestamp=timestamp,
                source_ref=source_ref,
                note=note,
                pay_date=pay_date,
                reference_id=None if settled else adjustment_id,
            ))
        elif amount < 0 and settled:
            entries.append(self._recovery(rep_id, adjustment_id, -amount, timestamp, pay_date, source_ref))
        elif amount < 0:
            logger.warning(f"Clawback {amount:.2f} for rep {rep_id} awaits recovery: {note}")

        with self._lock_for(rep_id):
            self.ledger.append_many(entries)
        return adjustment_id

    def recover_clawback(
        self,
        adjustment_id: str,
        amount: Optional[float] = None,
        pay_date: Optional[date] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        """Payroll hook: take back (part of) a clawback that was already paid.

        Emits a negative Paid entry referencing the clawback Adjustment.
        """
        clawback = self.ledger.get(adjustment_id)
        if clawback is None or clawback.kind != TransactionKind.ADJUSTMENT:
            raise LedgerError(f"{adjustment_id} is not an adjustment")

        with self._lock_for(clawback.rep_id):
            outstanding = self.ledger.outstanding_recovery(adjustment_id)
            amount = outstanding if amount is None else round(amount, 2)
            if outstanding <= 0 or amount <= 0:
                raise LedgerError(f"Nothing left to recover on {adjustment_id}")
            paid_id = self.ledger.append(self._recovery(
                clawback.rep_id,
                adjustment_id,
                amount,
                timestamp or datetime.now(),
                pay_date,
                clawback.source_ref,
            ))
        logger.info(f"Recovered {amount:.2f} of clawback {adjustment_id} for rep {clawback.rep_id}")
        return paid_id

    def _recovery(
        self,
        rep_id: str,
        adjustment_id: str,
        amount: float,
        timestamp: datetime,
        pay_date: Optional[date],
        source_ref: str,
    ) -> CommissionTransaction:
        return CommissionTransaction(
            rep_id=rep_id,
            kind=TransactionKind.PAID,
            amount=-amount,
            timestamp=timestamp,
            source_ref=source_ref,
            note=f"Recovery of clawback {adjustment_id}",
            pay_date=pay_date or date.today(),
            reference_id=adjustment_id,
        )

    def close_pending(
        self,
        pending_id: str,
        amount: Optional[float] = None,
        pay_date: Optional[date] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        """Payroll hook: pay out (part of) a Pending entry.

        Emits a Paid entry referencing the Pending one. Closing an entry that
        has nothing left open raises PendingAlreadyClosed.
        """
        pending = self._pending(pending_id)
        open_balance = self.ledger.open_balance(pending_id)
        amount = open_balance if amount is None else round(amount, 2)
        if open_balance <= 0 or amount <= 0:
            raise PendingAlreadyClosed(pending_id, open_balance, amount)

        paid_id = self.ledger.append(CommissionTransaction(
            rep_id=pending.rep_id,
            kind=TransactionKind.PAID,
            amount=amount,
            timestamp=timestamp or datetime.now(),
            source_ref=pending.source_ref,
            note=f"Payroll payment for {pending_id}",
            pay_date=pay_date or date.today(),
            reference_id=pending_id,
        ))
        logger.info(f"Closed {amount:.2f} of pending {pending_id} for rep {pending.rep_id}")
        return paid_id

    def void_pending(self, pending_id: str, note: str = "", timestamp: Optional[datetime] = None) -> str:
        """Void whatever is still open on a Pending entry via an Adjustment."""
        pending = self._pending(pending_id)
        open_balance = self.ledger.open_balance(pending_id)
        if open_balance <= 0:
            raise PendingAlreadyClosed(pending_id, open_balance, open_balance)

        return self.ledger.append(CommissionTransaction(
            rep_id=pending.rep_id,
            kind=TransactionKind.ADJUSTMENT,
            amount=-open_balance,
            timestamp=timestamp or datetime.now(),
            source_ref=pending.source_ref,
            note=note or f"Void of pending {pending_id}",
            reference_id=pending_id,
        ))

    def correct_earned(
        self,
        earned_id: str,
        corrected_amount: float,
        note: str = "",
        timestamp: Optional[datetime] = None,
    ) -> Tuple[str, str]:
        """Replace a mis-recorded, still unpaid Earned entry.

        Appends a reversing Adjustment against its Pending entry, then a
        corrected Earned/Pending pair. Nothing is edited in place.
        """
        earned = self.ledger.get(earned_id)
        if earned is None or earned.kind != TransactionKind.EARNED:
            raise LedgerError(f"{earned_id} is not an earned entry")
        if corrected_amount < 0:
            raise LedgerError("Corrected amount cannot be negative; void the entry instead")

        with self._lock_for(earned.rep_id):
            return self._correct_earned(earned, corrected_amount, note, timestamp)

    def _correct_earned(
        self,
        earned: CommissionTransaction,
        corrected_amount: float,
        note: str,
        timestamp: Optional[datetime],
    ) -> Tuple[str, str]:
        earned_id = earned.id
        pending = next(
            (e for e in self.ledger.snapshot(earned.rep_id)
             if e.kind == TransactionKind.PENDING and e.reference_id == earned_id),
            None,
        )
        if pending is None or abs(self.ledger.open_balance(pending.id) - earned.amount) > CLOSE_TOLERANCE:
            raise LedgerError(f"Earned entry {earned_id} is already (partly) paid; record an adjustment")

        timestamp = timestamp or datetime.now()
        new_earned_id = new_transaction_id()
        _, _, new_pending_id = self.ledger.append_many([
            CommissionTransaction(
                rep_id=earned.rep_id,
                kind=TransactionKind.ADJUSTMENT,
                amount=-earned.amount,
                timestamp=timestamp,
                source_ref=earned.source_ref,
                note=note or f"Reversal of {earned_id}",
                reference_id=pending.id,
            ),
            CommissionTransaction(
                id=new_earned_id,
                rep_id=earned.rep_id,
                kind=TransactionKind.EARNED,
                amount=round(corrected_amount, 2),
                timestamp=timestamp,
                source_ref=earned.source_ref,
                note=f"Correction of {earned_id}",
                reference_id=earned_id,
            ),
            CommissionTransaction(
                rep_id=earned.rep_id,
                kind=TransactionKind.PENDING,
                amount=round(corrected_amount, 2),
                timestamp=timestamp,
                source_ref=earned.source_ref,
                note="Awaiting payroll",
                pay_date=pending.pay_date,
                reference_id=new_earned_id,
            ),
        ])
        logger.info(f"Corrected earned {earned_id} to {corrected_amount:.2f}")
        return new_earned_id, new_pending_id

    def summary(
        self,
        rep_id: str,
        period: Optional[Period] = None,
        expected_earned: Optional[float] = None,
    ) -> ReconciliationResult:
        return self.reconciler.reconcile(rep_id, period, expected_earned)

    def forecast(
        self,
        rep_id: str,
        window_days: int,
        as_of: Optional[date] = None,
        pipeline: Optional[List[PipelineDeal]] = None,
    ) -> List[ForecastPoint]:
        """Forecast using the rep's current effective rate for pipeline deals."""
        _, rate = self.reconciler.current_rate(rep_id)
        return self.forecaster.forecast(rep_id, window_days, as_of, pipeline, rate)

    def payout_history(self, year: Optional[int] = None) -> List[MonthlyPayout]:
        return monthly_payouts(self.ledger, year=year)

    def team_performance(self, period: Optional[Period] = None) -> List[PlanPerformance]:
        return team_performance(self.reconciler, self.accounts, self.catalog, period)

    def _pending(self, pending_id: str) -> CommissionTransaction:
        pending = self.ledger.get(pending_id)
        if pending is None or pending.kind != TransactionKind.PENDING:
            raise LedgerError(f"{pending_id} is not a pending entry")
        return pending
