"""Commission plan definitions and catalog."""

from .models import (
    AcceleratorTier,
    BonusEffect,
    BonusRule,
    BonusTrigger,
    CommissionPlan,
    DealContext,
)
from .catalog import PlanCatalog, default_plans, plan_from_dict, plan_to_dict

__all__ = [
    "AcceleratorTier",
    "BonusEffect",
    "BonusRule",
    "BonusTrigger",
    "CommissionPlan",
    "DealContext",
    "PlanCatalog",
    "default_plans",
    "plan_from_dict",
    "plan_to_dict",
]
