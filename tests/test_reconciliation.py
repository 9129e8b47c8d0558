"""Tests for ledger reconciliation."""

import random
from datetime import datetime, timedelta

import pytest

from commission_engine.engine import CommissionEngine
from commission_engine.ledger import (
    CommissionSummary,
    CommissionTransaction,
    Ledger,
    Period,
    ReconciliationMismatch,
    Reconciler,
    TransactionKind,
)
from commission_engine.plans import DealContext, PlanCatalog
from commission_engine.reps import RepDirectory, SalesRepAccount


REP = "rep_sarah"


def make_engine():
    catalog = PlanCatalog()
    catalog.seed_defaults()
    accounts = RepDirectory()
    accounts.add(SalesRepAccount(
        id=REP,
        name="Sarah Johnson",
        role="Senior Account Executive",
        plan_id="plan_enterprise",
        annual_quota=250000,
    ))
    return CommissionEngine(catalog, accounts, Ledger())


def txn(kind, amount, reference_id=None, when=None, rep_id=REP):
    return CommissionTransaction(
        rep_id=rep_id,
        kind=kind,
        amount=amount,
        timestamp=when or datetime(2024, 5, 1, 9, 0),
        reference_id=reference_id,
    )


class TestEndToEnd:
    """Deal to payroll to summary."""

    def setup_method(self):
        self.engine = make_engine()
        result = self.engine.record_deal(REP, 287500)
        self.result = result
        self.engine.close_pending(result.pending_id, 20612.50)

    def test_deal_earns_at_115_percent(self):
        assert self.result.breakdown.attainment_pct == 115
        assert self.result.breakdown.rate == 8.5
        assert self.result.amount == 24437.50

    def test_summary_balances(self):
        summary = self.engine.summary(REP)

        assert isinstance(summary, CommissionSummary)
        assert summary.is_consistent
        assert summary.total_earned == 24437.50
        assert summary.total_paid == 20612.50
        assert summary.total_pending == 3825.00
        assert summary.attainment_pct == 115
        assert summary.current_rate == 8.5

    def test_matches_computed_commission(self):
        assert self.engine.summary(REP, expected_earned=24437.50).is_consistent

    def test_differs_from_computed_commission(self):
        result = self.engine.summary(REP, expected_earned=20000)

        assert isinstance(result, ReconciliationMismatch)
        assert result.delta == 4437.50
        assert result.to_dict()["actual"] == 24437.50


class TestReconciler:
    """Tests for Reconciler on hand-built ledgers."""

    def setup_method(self):
        self.ledger = Ledger()
        self.reconciler = Reconciler(self.ledger)

    def test_empty_ledger(self):
        summary = self.reconciler.reconcile("nobody")

        assert summary.is_consistent
        assert summary.total_earned == 0.0
        assert summary.entry_count == 0
        assert summary.attainment_pct is None

    def test_earned_without_pending_is_mismatch(self):
        self.ledger.append(txn(TransactionKind.EARNED, 100.0))

        result = self.reconciler.reconcile(REP)
        assert isinstance(result, ReconciliationMismatch)
        assert not result.is_consistent
        assert result.delta == 100.0

    @pytest.mark.parametrize("pending,consistent", [(100.0, True), (99.99, True), (99.98, False)])
    def test_tolerance(self, pending, consistent):
        """Differences within a cent are rounding, not errors."""
        self.ledger.append(txn(TransactionKind.EARNED, 100.0))
        self.ledger.append(txn(TransactionKind.PENDING, pending))

        assert self.reconciler.reconcile(REP).is_consistent is consistent

    def test_payment_in_later_period(self):
        """Each period balances on its own when payroll runs next month."""
        earned_id = self.ledger.append(txn(TransactionKind.EARNED, 500.0, when=datetime(2024, 5, 20)))
        pending_id = self.ledger.append(txn(TransactionKind.PENDING, 500.0, earned_id, datetime(2024, 5, 20)))
        self.ledger.append(txn(TransactionKind.PAID, 500.0, pending_id, datetime(2024, 6, 15)))

        may = self.reconciler.reconcile(REP, Period.month(2024, 5))
        june = self.reconciler.reconcile(REP, Period.month(2024, 6))

        assert may.is_consistent and may.total_pending == 500.0
        assert june.is_consistent and june.total_paid == 500.0
        assert june.total_pending == 0.0
        assert june.prior_pending_closed == 500.0

        overall = self.reconciler.reconcile(REP)
        assert overall.total_pending == 0.0
        assert overall.prior_pending_closed == 0.0

    def test_void_in_later_period(self):
        """A void of last month's pending never shows negative pending."""
        earned_id = self.ledger.append(txn(TransactionKind.EARNED, 500.0, when=datetime(2024, 5, 20)))
        pending_id = self.ledger.append(txn(TransactionKind.PENDING, 500.0, earned_id, datetime(2024, 5, 20)))
        self.ledger.append(txn(TransactionKind.PENDING, 200.0, when=datetime(2024, 6, 2)))
        self.ledger.append(txn(TransactionKind.EARNED, 200.0, when=datetime(2024, 6, 2)))
        self.ledger.append(txn(TransactionKind.ADJUSTMENT, -500.0, pending_id, datetime(2024, 6, 10)))

        june = self.reconciler.reconcile(REP, Period.month(2024, 6))

        assert june.is_consistent
        assert june.total_earned == -300.0
        assert june.total_pending == 200.0
        assert june.prior_pending_closed == 500.0
        assert june.to_dict()["prior_pending_closed"] == 500.0

    def test_reconcile_many(self):
        self.ledger.append(txn(TransactionKind.EARNED, 100.0, rep_id="rep_a"))
        self.ledger.append(txn(TransactionKind.PAID, 100.0, rep_id="rep_a"))
        self.ledger.append(txn(TransactionKind.EARNED, 100.0, rep_id="rep_b"))

        results = self.reconciler.reconcile_many()

        assert sorted(results) == ["rep_a", "rep_b"]
        assert results["rep_a"].is_consistent
        assert not results["rep_b"].is_consistent


def run_random_sequence(engine, rng, steps=60):
    """Drive the engine through a random mix of operations."""
    start = datetime(2024, 1, 2, 9, 0)
    recorded = []

    for step in range(steps):
        when = start + timedelta(days=step * 3)
        op = rng.choice(["deal", "deal", "pay", "pay", "void", "spiff", "correct", "clawback"])

        if op == "deal":
            deal = DealContext(new_logo=rng.random() < 0.3, contract_years=rng.randint(1, 4))
            recorded.append(engine.record_deal(REP, round(rng.uniform(100, 40000), 2), deal, timestamp=when))
        elif op in ("pay", "void"):
            open_entries = engine.ledger.open_pending(REP)
            if not open_entries:
                continue
            pending, balance = rng.choice(open_entries)
            if op == "void":
                engine.void_pending(pending.id, timestamp=when)
            elif rng.random() < 0.5:
                engine.close_pending(pending.id, timestamp=when)
            else:
                engine.close_pending(pending.id, round(rng.uniform(0.01, balance), 2), timestamp=when)
        elif op == "spiff":
            engine.record_adjustment(REP, round(rng.uniform(50, 500), 2), "SPIFF",
                                     settled=rng.random() < 0.5, timestamp=when)
        elif op == "clawback":
            open_entries = engine.ledger.open_pending(REP)
            if open_entries and rng.random() < 0.5:
                pending, balance = rng.choice(open_entries)
                engine.record_adjustment(REP, -round(rng.uniform(0.01, balance), 2), "Credit note",
                                         reference_id=pending.id, timestamp=when)
            else:
                adjustment_id = engine.record_adjustment(REP, -round(rng.uniform(10, 300), 2), "Clawback",
                                                         timestamp=when)
                engine.recover_clawback(adjustment_id, timestamp=when)
        else:
            candidates = [r for r in recorded if engine.ledger.open_balance(r.pending_id) == r.amount > 0]
            if candidates:
                target = rng.choice(candidates)
                engine.correct_earned(target.earned_id, round(target.amount * rng.uniform(0.5, 1.5), 2),
                                      timestamp=when)

        yield step


@pytest.mark.parametrize("seed", range(8))
def test_invariant_holds_after_every_append(seed):
    """Earned equals paid plus pending after any engine-generated sequence."""
    engine = make_engine()

    for _ in run_random_sequence(engine, random.Random(seed)):
        result = engine.summary(REP)
        assert result.is_consistent, result

    for month in range(1, 8):
        assert engine.summary(REP, Period.month(2024, month)).is_consistent


@pytest.mark.parametrize("seed", range(3))
def test_tampered_ledger_is_flagged(seed):
    """Removing the engine from the loop breaks the balance."""
    engine = make_engine()
    for _ in run_random_sequence(engine, random.Random(seed), steps=20):
        pass

    engine.ledger.append(txn(TransactionKind.EARNED, 123.45, when=datetime(2024, 3, 1)))

    result = engine.summary(REP)
    assert isinstance(result, ReconciliationMismatch)
    assert result.delta == 123.45
