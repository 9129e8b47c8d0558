"""Tests for payout history and team performance reports."""

from datetime import date, datetime

import pytest

from commission_engine.engine import CommissionEngine
from commission_engine.ledger import CommissionTransaction, Ledger, Period, TransactionKind
from commission_engine.plans import PlanCatalog
from commission_engine.reporting import monthly_payouts
from commission_engine.reps import RepDirectory, SalesRepAccount


def rep(rep_id, plan_id, role, quota=100000):
    return SalesRepAccount(id=rep_id, name=rep_id.title(), role=role, plan_id=plan_id, annual_quota=quota)


@pytest.fixture
def engine():
    """Two enterprise reps and one SMB rep."""
    catalog = PlanCatalog()
    catalog.seed_defaults()
    accounts = RepDirectory()
    accounts.add(rep("rep_a", "plan_enterprise", "Senior Account Executive"))
    accounts.add(rep("rep_b", "plan_enterprise", "Senior Account Executive"))
    accounts.add(rep("rep_c", "plan_smb", "SMB Account Manager"))
    return CommissionEngine(catalog, accounts, Ledger())


class TestMonthlyPayouts:
    """Tests for monthly payout history."""

    def test_grouped_by_pay_date(self, engine):
        first = engine.record_deal("rep_a", 10000, timestamp=datetime(2024, 4, 20, 10, 0))
        second = engine.record_deal("rep_b", 20000, timestamp=datetime(2024, 4, 22, 10, 0))
        engine.close_pending(first.pending_id, pay_date=date(2024, 5, 15))
        engine.close_pending(second.pending_id, 400, pay_date=date(2024, 5, 31))
        engine.close_pending(second.pending_id, pay_date=date(2024, 6, 15))

        history = engine.payout_history()

        assert [(m.label, m.amount, m.payment_count) for m in history] == [
            ("May 2024", 1100.0, 2),
            ("Jun 2024", 1000.0, 1),
        ]
        assert history[0].to_dict()["month"] == "May 2024"

    def test_recoveries_reduce_the_month(self, engine):
        result = engine.record_deal("rep_a", 10000)
        engine.close_pending(result.pending_id, pay_date=date(2024, 5, 15))
        clawback = engine.record_adjustment("rep_a", -200, "Clawback")
        engine.recover_clawback(clawback, pay_date=date(2024, 5, 31))

        assert [m.amount for m in engine.payout_history(2024)] == [500.0]

    def test_year_and_rep_filters(self):
        ledger = Ledger()
        for rep_id, day in [("rep_a", date(2023, 12, 29)), ("rep_a", date(2024, 1, 5)), ("rep_b", date(2024, 1, 9))]:
            ledger.append(CommissionTransaction(
                rep_id=rep_id, kind=TransactionKind.PAID, amount=100.0, pay_date=day,
            ))

        assert [m.label for m in monthly_payouts(ledger, year=2024)] == ["Jan 2024"]
        assert monthly_payouts(ledger, year=2024)[0].amount == 200.0
        assert monthly_payouts(ledger, ["rep_a"], 2024)[0].amount == 100.0
        assert monthly_payouts(ledger, ["nobody"]) == []


class TestTeamPerformance:
    """Tests for the per-plan rollup."""

    def test_rollup_by_plan(self, engine):
        engine.record_deal("rep_a", 120000)   # 120% at 8.5%
        b = engine.record_deal("rep_b", 80000)   # 80% at 7%
        engine.record_deal("rep_c", 50000)   # 50% at 4%
        engine.close_pending(b.pending_id)

        report = {p.plan_id: p for p in engine.team_performance()}

        enterprise = report["plan_enterprise"]
        assert enterprise.plan_name == "Enterprise Tier"
        assert enterprise.rep_count == 2
        assert enterprise.average_attainment == 100.0
        assert enterprise.total_earned == 10200.0 + 5600.0
        assert enterprise.total_paid == 5600.0

        smb = report["plan_smb"]
        assert smb.rep_count == 1
        assert smb.average_attainment == 50.0
        assert smb.total_earned == 2000.0
        assert smb.to_dict()["total_paid"] == 0.0

    def test_sorted_by_commission(self, engine):
        engine.record_deal("rep_c", 50000)
        engine.record_deal("rep_a", 10000)

        assert [p.plan_id for p in engine.team_performance()] == ["plan_smb", "plan_enterprise"]

    def test_period_totals(self, engine):
        engine.record_deal("rep_a", 10000, timestamp=datetime(2024, 4, 10, 10, 0))
        engine.record_deal("rep_a", 10000, timestamp=datetime(2024, 5, 10, 10, 0))

        april = {p.plan_id: p for p in engine.team_performance(Period.month(2024, 4))}
        assert april["plan_enterprise"].total_earned == 700.0

    def test_rep_without_quota_has_no_attainment(self, engine):
        engine.accounts.add(rep("rep_d", "plan_smb", "SMB Account Manager", quota=0))
        engine.accounts.get("rep_c").ytd_sales = 30000

        smb = {p.plan_id: p for p in engine.team_performance()}["plan_smb"]
        assert smb.rep_count == 2
        assert smb.average_attainment == 30.0
