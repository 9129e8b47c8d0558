"""Exception hierarchy for the commission engine."""


class CommissionError(Exception):
    """Base class for all commission engine errors."""


class InvalidQuota(CommissionError, ValueError):
    """Quota is zero, negative or not a finite number."""

    def __init__(self, quota):
        self.quota = quota
        super().__init__(f"Quota must be a positive amount, got {quota!r}")


class InvalidSalesAmount(CommissionError, ValueError):
    """Sales amount is negative or not finite.

    Credits and returns are recorded as Adjustment entries instead.
    """

    def __init__(self, amount):
        self.amount = amount
        super().__init__(
            f"Sales amount must be a non-negative finite number, got {amount!r}; "
            "record credits as an adjustment"
        )


class PlanTierOrderingViolation(CommissionError, ValueError):
    """Accelerator tier thresholds are not strictly increasing."""

    def __init__(self, plan_id: str, thresholds):
        self.plan_id = plan_id
        self.thresholds = list(thresholds)
        super().__init__(
            f"Plan {plan_id} has non-increasing tier thresholds: {self.thresholds}"
        )


class PlanNotFound(CommissionError, KeyError):
    """No plan with the given id in the catalog."""

    def __str__(self):
        return f"Commission plan {self.args[0]} not found"


class RepNotFound(CommissionError, KeyError):
    """No sales rep account with the given id."""

    def __str__(self):
        return f"Sales rep {self.args[0]} not found"


class RoleNotEligible(CommissionError):
    """A rep's role is not covered by the plan's eligible roles."""

    def __init__(self, rep_id: str, role: str, plan_id: str):
        self.rep_id = rep_id
        self.role = role
        self.plan_id = plan_id
        super().__init__(f"Role '{role}' of rep {rep_id} is not eligible for plan {plan_id}")


class LedgerError(CommissionError):
    """A ledger append was rejected."""


class UnknownReference(LedgerError):
    """An entry references a transaction that does not exist for the rep."""

    def __init__(self, rep_id: str, reference_id: str):
        self.rep_id = rep_id
        self.reference_id = reference_id
        super().__init__(f"Rep {rep_id} has no ledger entry {reference_id}")


class PendingAlreadyClosed(LedgerError):
    """Closing amount exceeds what is still open on a Pending entry."""

    def __init__(self, pending_id: str, open_balance: float, requested: float):
        self.pending_id = pending_id
        self.open_balance = open_balance
        self.requested = requested
        super().__init__(
            f"Pending entry {pending_id} has {open_balance:.2f} open, "
            f"cannot close {requested:.2f}"
        )
