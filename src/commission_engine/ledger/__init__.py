"""Commission ledger and reconciliation."""

from .models import (
    CommissionTransaction,
    Period,
    TransactionKind,
    open_pending_balances,
    open_recovery_balances,
)
from .ledger import Ledger, LedgerView
from .reconciliation import CommissionSummary, LedgerTotals, ReconciliationMismatch, Reconciler

__all__ = [
    "CommissionTransaction",
    "Period",
    "TransactionKind",
    "open_pending_balances",
    "open_recovery_balances",
    "Ledger",
    "LedgerView",
    "CommissionSummary",
    "LedgerTotals",
    "ReconciliationMismatch",
    "Reconciler",
]
