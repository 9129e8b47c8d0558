"""Sales rep accounts and the directory that holds them."""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from ..errors import InvalidSalesAmount, RepNotFound
from ..plans.models import BonusTrigger

logger = logging.getLogger(__name__)


class QuotaPeriod(Enum):
    """Period a quota is measured over."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"

    @property
    def periods_per_year(self) -> int:
        return {"monthly": 12, "quarterly": 4, "annual": 1}[self.value]


@dataclass
class SalesRepAccount:
    """A sales representative as supplied by the data layer."""
    id: str
    name: str
    role: str
    plan_id: str
    annual_quota: float
    quota_period: QuotaPeriod = QuotaPeriod.ANNUAL
    ytd_sales: float = 0.0
    period_sales: float = 0.0  # Sales in the current monthly/quarterly period
    accelerator_eligible: bool = True
    bonus_eligibility: Set[BonusTrigger] = field(default_factory=lambda: set(BonusTrigger))
    email: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def period_quota(self) -> float:
        return self.annual_quota / self.quota_period.periods_per_year

    def attainment_basis(self) -> Tuple[float, float]:
        """Sales and quota that attainment is measured on.

        Monthly and quarterly quotas reset each period, so they use
        period-to-date sales; annual quotas use year-to-date sales.
        """
        if self.quota_period == QuotaPeriod.ANNUAL:
            return self.ytd_sales, self.annual_quota
        return self.period_sales, self.period_quota

    def is_bonus_eligible(self, trigger: BonusTrigger) -> bool:
        return trigger in self.bonus_eligibility


class RepDirectory:
    """In-memory rep accounts with optional JSON persistence."""

    def __init__(self, data_path: Optional[Path] = None):
        self.data_path = data_path
        self.accounts: Dict[str, SalesRepAccount] = {}
        self._lock = threading.Lock()

        self._load_data()

    def _load_data(self):
        """Load accounts from storage."""
        if not self.data_path or not self.data_path.exists():
            return

        with open(self.data_path, 'r') as f:
            data = json.load(f)
            for r in data.get('reps', []):
                eligibility = r.get('bonus_eligibility')
                account = SalesRepAccount(
                    id=r['id'],
                    name=r['name'],
                    role=r.get('role', ''),
                    plan_id=r['plan_id'],
                    annual_quota=r['annual_quota'],
                    quota_period=QuotaPeriod(r.get('quota_period', 'annual')),
                    ytd_sales=r.get('ytd_sales', 0.0),
                    period_sales=r.get('period_sales', 0.0),
                    accelerator_eligible=r.get('accelerator_eligible', True),
                    bonus_eligibility=(
                        {BonusTrigger(t) for t in eligibility}
                        if eligibility is not None else set(BonusTrigger)
                    ),
                    email=r.get('email', ''),
                    created_at=datetime.fromisoformat(r['created_at']) if r.get('created_at') else datetime.now(),
                )
                self.accounts[account.id] = account

    def _save_data(self):
        """Save accounts to storage."""
        if not self.data_path:
            return

        self.data_path.parent.mkdir(parents=True, exist_ok=True)
        reps_data = [
            {
                'id': a.id,
                'name': a.name,
                'role': a.role,
                'plan_id': a.plan_id,
                'annual_quota': a.annual_quota,
                'quota_period': a.quota_period.value,
                'ytd_sales': a.ytd_sales,
                'period_sales': a.period_sales,
                'accelerator_eligible': a.accelerator_eligible,
                'bonus_eligibility': sorted(t.value for t in a.bonus_eligibility),
                'email': a.email,
                'created_at': a.created_at.isoformat(),
            }
            for a in self.accounts.values()
        ]
        with open(self.data_path, 'w') as f:
            json.dump({'reps': reps_data}, f, indent=2)

    def add(self, account: SalesRepAccount) -> SalesRepAccount:
        """Add or replace a rep account."""
        with self._lock:
            self.accounts[account.id] = account
            self._save_data()
        return account

    def get(self, rep_id: str) -> SalesRepAccount:
        account = self.accounts.get(rep_id)
        if not account:
            raise RepNotFound(rep_id)
        return account

    def list_reps(self, plan_id: Optional[str] = None) -> List[SalesRepAccount]:
        reps = list(self.accounts.values())
        if plan_id:
            reps = [r for r in reps if r.plan_id == plan_id]
        return sorted(reps, key=lambda r: r.name)

    def record_sales(self, rep_id: str, amount: float) -> SalesRepAccount:
        """Add closed sales to the rep's year- and period-to-date totals."""
        if amount < 0:
            raise InvalidSalesAmount(amount)
        with self._lock:
            account = self.get(rep_id)
            account.ytd_sales += amount
            account.period_sales += amount
            self._save_data()
        return account

    def reset_period(self, rep_id: str):
        """Start a new monthly/quarterly quota period."""
        with self._lock:
            account = self.get(rep_id)
            account.period_sales = 0.0
            self._save_data()
        logger.info(f"Reset quota period sales for rep {rep_id}")

    def reset_year(self, rep_id: str):
        """Start a new fiscal year."""
        with self._lock:
            account = self.get(rep_id)
            account.ytd_sales = 0.0
            account.period_sales = 0.0
            self._save_data()
        logger.info(f"Reset year-to-date sales for rep {rep_id}")

    def assign_plan(self, rep_id: str, plan_id: str) -> SalesRepAccount:
        """Move a rep onto another plan, e.g. a newer version of their plan."""
        with self._lock:
            account = self.get(rep_id)
            previous = account.plan_id
            account.plan_id = plan_id
            self._save_data()
        logger.info(f"Moved rep {rep_id} from plan {previous} to {plan_id}")
        return account
