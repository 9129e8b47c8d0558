"""Pydantic models for plan, rep and deal records supplied by the data layer."""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..plans.models import (
    AcceleratorTier,
    BonusEffect,
    BonusRule,
    BonusTrigger,
    CommissionPlan,
    DealContext,
)
from ..reps.accounts import QuotaPeriod, SalesRepAccount


class TierRecord(BaseModel):
    threshold: float = Field(..., ge=0, description="Attainment percent at which the tier starts")
    rate: float = Field(..., ge=0, description="Commission rate in percent")


class BonusRuleRecord(BaseModel):
    name: str
    trigger: BonusTrigger
    effect: BonusEffect
    value: float = Field(..., ge=0)
    plan_scope: List[str] = []
    threshold: Optional[float] = None
    description: str = ""
    active_from: Optional[date] = None
    active_until: Optional[date] = None

    @model_validator(mode="after")
    def window_is_ordered(self) -> "BonusRuleRecord":
        if self.active_from and self.active_until and self.active_until < self.active_from:
            raise ValueError("active_until must not be before active_from")
        return self

    def to_model(self) -> BonusRule:
        return BonusRule(
            name=self.name,
            trigger=self.trigger,
            effect=self.effect,
            value=self.value,
            plan_scope=frozenset(self.plan_scope),
            threshold=self.threshold,
            description=self.description,
            active_from=self.active_from,
            active_until=self.active_until,
        )


class PlanRecord(BaseModel):
    id: str
    name: str
    base_rate: float = Field(..., ge=0)
    tiers: List[TierRecord] = []
    bonus_rules: List[BonusRuleRecord] = []
    eligible_roles: List[str] = []
    description: str = ""
    version: int = Field(1, ge=1)
    retroactive_accelerators: bool = True
    supersedes: Optional[str] = None

    def to_model(self) -> CommissionPlan:
        """Build the plan; tier ordering is checked by the plan itself."""
        return CommissionPlan(
            id=self.id,
            name=self.name,
            base_rate=self.base_rate,
            tiers=tuple(AcceleratorTier(t.threshold, t.rate) for t in self.tiers),
            bonus_rules=tuple(b.to_model() for b in self.bonus_rules),
            eligible_roles=frozenset(self.eligible_roles),
            description=self.description,
            version=self.version,
            retroactive_accelerators=self.retroactive_accelerators,
            supersedes=self.supersedes,
        )


class RepRecord(BaseModel):
    id: str
    name: str
    role: str = ""
    plan_id: str
    annual_quota: float
    quota_period: QuotaPeriod = QuotaPeriod.ANNUAL
    ytd_sales: float = Field(0.0, ge=0)
    period_sales: float = Field(0.0, ge=0)
    accelerator_eligible: bool = True
    bonus_eligibility: Optional[List[BonusTrigger]] = None
    email: Optional[str] = None

    def to_model(self) -> SalesRepAccount:
        eligibility = set(BonusTrigger) if self.bonus_eligibility is None else set(self.bonus_eligibility)
        return SalesRepAccount(
            id=self.id,
            name=self.name,
            role=self.role,
            plan_id=self.plan_id,
            annual_quota=self.annual_quota,
            quota_period=self.quota_period,
            ytd_sales=self.ytd_sales,
            period_sales=self.period_sales,
            accelerator_eligible=self.accelerator_eligible,
            bonus_eligibility=eligibility,
            email=self.email or "",
        )


class DealRecord(BaseModel):
    deal_id: str = ""
    description: str = ""
    amount: float
    new_logo: bool = False
    contract_years: int = Field(1, ge=0)
    upsell: bool = False
    deals_closed_in_period: int = Field(0, ge=0)
    renewal: bool = False
    renewal_rate: float = Field(0.0, ge=0, le=100)
    closed_on: Optional[date] = None

    @field_validator("amount")
    @classmethod
    def amount_is_finite(cls, value: float) -> float:
        # Negative amounts pass through so the calculator can reject them
        # with InvalidSalesAmount
        if value != value or value in (float("inf"), float("-inf")):
            raise ValueError("amount must be a finite number")
        return value

    def to_context(self) -> DealContext:
        return DealContext(
            deal_id=self.deal_id,
            description=self.description,
            new_logo=self.new_logo,
            contract_years=self.contract_years,
            upsell=self.upsell,
            deals_closed_in_period=self.deals_closed_in_period,
            renewal=self.renewal,
            renewal_rate=self.renewal_rate,
            closed_on=self.closed_on,
        )
