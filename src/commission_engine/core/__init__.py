"""Core commission computation: attainment, tiers and earned amounts."""

from .attainment import attainment_percent, effective_tier, resolve_tier, select_tier
from .calculator import (
    BonusLine,
    CommissionBreakdown,
    CommissionCalculator,
    compute_earned,
    marginal_commission,
    qualifying_bonuses,
)
from .config import EngineConfig, EngineConfigManager

__all__ = [
    "attainment_percent",
    "effective_tier",
    "resolve_tier",
    "select_tier",
    "BonusLine",
    "CommissionBreakdown",
    "CommissionCalculator",
    "compute_earned",
    "marginal_commission",
    "qualifying_bonuses",
    "EngineConfig",
    "EngineConfigManager",
]
