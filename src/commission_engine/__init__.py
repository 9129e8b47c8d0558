"""Commission Engine - sales commission calculation and reconciliation."""

__version__ = "1.0.0"

from .core import CommissionBreakdown, CommissionCalculator, EngineConfig, EngineConfigManager
from .engine import CommissionEngine, EarningResult
from .errors import (
    CommissionError,
    InvalidQuota,
    InvalidSalesAmount,
    LedgerError,
    PendingAlreadyClosed,
    PlanNotFound,
    PlanTierOrderingViolation,
    RepNotFound,
    RoleNotEligible,
    UnknownReference,
)
from .ledger import (
    CommissionSummary,
    CommissionTransaction,
    Ledger,
    Period,
    ReconciliationMismatch,
    Reconciler,
    TransactionKind,
)
from .plans import AcceleratorTier, BonusRule, CommissionPlan, DealContext, PlanCatalog
from .reporting import (
    ForecastPoint,
    Forecaster,
    MonthlyPayout,
    PipelineDeal,
    PlanPerformance,
    monthly_payouts,
    team_performance,
)
from .reps import QuotaPeriod, RepDirectory, SalesRepAccount

__all__ = [
    "__version__",
    "CommissionBreakdown",
    "CommissionCalculator",
    "EngineConfig",
    "EngineConfigManager",
    "CommissionEngine",
    "EarningResult",
    "CommissionError",
    "InvalidQuota",
    "InvalidSalesAmount",
    "LedgerError",
    "PendingAlreadyClosed",
    "PlanNotFound",
    "PlanTierOrderingViolation",
    "RepNotFound",
    "RoleNotEligible",
    "UnknownReference",
    "CommissionSummary",
    "CommissionTransaction",
    "Ledger",
    "Period",
    "ReconciliationMismatch",
    "Reconciler",
    "TransactionKind",
    "AcceleratorTier",
    "BonusRule",
    "CommissionPlan",
    "DealContext",
    "PlanCatalog",
    "ForecastPoint",
    "Forecaster",
    "PipelineDeal",
    "MonthlyPayout",
    "PlanPerformance",
    "monthly_payouts",
    "team_performance",
    "QuotaPeriod",
    "RepDirectory",
    "SalesRepAccount",
]
