"""Tests for inbound record validation."""

import math
from datetime import date

import pytest
from pydantic import ValidationError

from commission_engine.errors import PlanTierOrderingViolation
from commission_engine.plans.models import BonusTrigger
from commission_engine.reps.accounts import QuotaPeriod
from commission_engine.schemas import DealRecord, PlanRecord, RepRecord


PLAN_DATA = {
    "id": "plan_enterprise",
    "name": "Enterprise Tier",
    "base_rate": 7.0,
    "tiers": [{"threshold": 100, "rate": 8.5}, {"threshold": 125, "rate": 10.0}],
    "bonus_rules": [
        {"name": "New Logo Bonus", "trigger": "new_logo", "effect": "fixed", "value": 1000},
    ],
    "eligible_roles": ["Senior Account Executive"],
}


class TestPlanRecord:
    """Tests for PlanRecord."""

    def test_to_model(self):
        plan = PlanRecord(**PLAN_DATA).to_model()

        assert plan.id == "plan_enterprise"
        assert plan.tiers[1].rate == 10.0
        assert plan.bonus_rules[0].trigger == BonusTrigger.NEW_LOGO
        assert plan.is_role_eligible("Senior Account Executive")

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError):
            PlanRecord(**{**PLAN_DATA, "base_rate": -2})

    def test_unknown_trigger_rejected(self):
        data = {**PLAN_DATA, "bonus_rules": [
            {"name": "Odd", "trigger": "birthday", "effect": "fixed", "value": 10},
        ]}
        with pytest.raises(ValidationError):
            PlanRecord(**data)

    def test_misordered_tiers_rejected_on_build(self):
        """Tier ordering is enforced when the plan is built."""
        data = {**PLAN_DATA, "tiers": [{"threshold": 125, "rate": 10.0}, {"threshold": 100, "rate": 8.5}]}
        record = PlanRecord(**data)

        with pytest.raises(PlanTierOrderingViolation):
            record.to_model()

    def test_spiff_window(self):
        data = {**PLAN_DATA, "bonus_rules": [
            {"name": "Q2 Product SPIFF", "trigger": "any_deal", "effect": "fixed", "value": 300,
             "active_from": "2024-04-01", "active_until": "2024-06-30"},
        ]}
        rule = PlanRecord(**data).to_model().bonus_rules[0]

        assert rule.active_from == date(2024, 4, 1)
        assert rule.status_on(date(2024, 7, 1)) == "expired"

    def test_reversed_spiff_window_rejected(self):
        data = {**PLAN_DATA, "bonus_rules": [
            {"name": "Bad", "trigger": "any_deal", "effect": "fixed", "value": 300,
             "active_from": "2024-06-30", "active_until": "2024-04-01"},
        ]}
        with pytest.raises(ValidationError):
            PlanRecord(**data)


class TestRepRecord:
    """Tests for RepRecord."""

    def test_defaults(self):
        account = RepRecord(
            id="rep_1",
            name="Sarah Johnson",
            plan_id="plan_enterprise",
            annual_quota=250000,
        ).to_model()

        assert account.quota_period == QuotaPeriod.ANNUAL
        assert account.bonus_eligibility == set(BonusTrigger)
        assert account.accelerator_eligible

    def test_restricted_bonus_eligibility(self):
        account = RepRecord(
            id="rep_2",
            name="Michael Chen",
            plan_id="plan_mid_market",
            annual_quota=180000,
            quota_period="quarterly",
            bonus_eligibility=["upsell"],
        ).to_model()

        assert account.quota_period == QuotaPeriod.QUARTERLY
        assert account.bonus_eligibility == {BonusTrigger.UPSELL}

    def test_negative_sales_rejected(self):
        with pytest.raises(ValidationError):
            RepRecord(id="r", name="R", plan_id="p", annual_quota=1000, ytd_sales=-5)


class TestDealRecord:
    """Tests for DealRecord."""

    def test_to_context(self):
        deal = DealRecord(deal_id="D-1", amount=10000, new_logo=True, contract_years=3).to_context()

        assert deal.deal_id == "D-1"
        assert deal.new_logo
        assert deal.contract_years == 3
        assert deal.closed_on is None

    def test_close_date(self):
        deal = DealRecord(amount=10000, closed_on="2024-05-02").to_context()
        assert deal.closed_on == date(2024, 5, 2)

    def test_non_finite_amount_rejected(self):
        with pytest.raises(ValidationError):
            DealRecord(amount=math.nan)

    def test_negative_amount_passes_validation(self):
        """Negative amounts are left for the calculator to reject."""
        assert DealRecord(amount=-500).amount == -500
