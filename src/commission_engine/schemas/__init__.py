"""Validation schemas for inbound records."""

from .records import BonusRuleRecord, DealRecord, PlanRecord, RepRecord, TierRecord

__all__ = [
    "BonusRuleRecord",
    "DealRecord",
    "PlanRecord",
    "RepRecord",
    "TierRecord",
]
