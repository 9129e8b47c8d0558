"""Plan catalog: the read-only set of commission plans the engine computes with."""

import json
import logging
import threading
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import (
    AcceleratorTier,
    BonusEffect,
    BonusRule,
    BonusTrigger,
    CommissionPlan,
)
from ..errors import PlanNotFound

logger = logging.getLogger(__name__)


def plan_to_dict(plan: CommissionPlan) -> Dict[str, Any]:
    """Serialize a plan to plain JSON-compatible data."""
    return {
        'id': plan.id,
        'name': plan.name,
        'description': plan.description,
        'version': plan.version,
        'base_rate': plan.base_rate,
        'retroactive_accelerators': plan.retroactive_accelerators,
        'tiers': [
            {'threshold': t.threshold, 'rate': t.rate}
            for t in plan.tiers
        ],
        'bonus_rules': [
            {
                'name': b.name,
                'trigger': b.trigger.value,
                'effect': b.effect.value,
                'value': b.value,
                'plan_scope': sorted(b.plan_scope),
                'threshold': b.threshold,
                'description': b.description,
                'active_from': b.active_from.isoformat() if b.active_from else None,
                'active_until': b.active_until.isoformat() if b.active_until else None,
            }
            for b in plan.bonus_rules
        ],
        'eligible_roles': sorted(plan.eligible_roles),
        'supersedes': plan.supersedes,
    }


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def plan_from_dict(data: Dict[str, Any]) -> CommissionPlan:
    """Build a plan from plain data. Validation runs on construction."""
    tiers = [
        AcceleratorTier(threshold=t['threshold'], rate=t['rate'])
        for t in data.get('tiers', [])
    ]
    rules = [
        BonusRule(
            name=b['name'],
            trigger=BonusTrigger(b['trigger']),
            effect=BonusEffect(b['effect']),
            value=b['value'],
            plan_scope=frozenset(b.get('plan_scope', [])),
            threshold=b.get('threshold'),
            description=b.get('description', ''),
            active_from=_parse_date(b.get('active_from')),
            active_until=_parse_date(b.get('active_until')),
        )
        for b in data.get('bonus_rules', [])
    ]
    return CommissionPlan(
        id=data['id'],
        name=data['name'],
        base_rate=data['base_rate'],
        tiers=tuple(tiers),
        bonus_rules=tuple(rules),
        eligible_roles=frozenset(data.get('eligible_roles', [])),
        description=data.get('description', ''),
        version=data.get('version', 1),
        retroactive_accelerators=data.get('retroactive_accelerators', True),
        supersedes=data.get('supersedes'),
    )


def default_plans() -> List[CommissionPlan]:
    """Sample plans for seeding a fresh data directory."""
    return [
        CommissionPlan(
            id="plan_enterprise",
            name="Enterprise Tier",
            description="For senior sales executives selling to enterprise clients",
            base_rate=7.0,
            tiers=(
                AcceleratorTier(100, 8.5),
                AcceleratorTier(125, 10.0),
            ),
            bonus_rules=(
                BonusRule("New Logo Bonus", BonusTrigger.NEW_LOGO, BonusEffect.FIXED, 1000,
                          description="One-time bonus for each new client"),
                BonusRule("Multi-Year Contract", BonusTrigger.MULTI_YEAR, BonusEffect.PERCENTAGE, 2,
                          threshold=3, description="Added percentage for 3+ year contracts"),
            ),
            eligible_roles=frozenset({"Senior Account Executive", "Enterprise Account Manager"}),
        ),
        CommissionPlan(
            id="plan_mid_market",
            name="Mid-Market Tier",
            description="For account executives selling to mid-market businesses",
            base_rate=6.0,
            tiers=(
                AcceleratorTier(100, 7.0),
                AcceleratorTier(125, 8.5),
            ),
            bonus_rules=(
                BonusRule("New Logo Bonus", BonusTrigger.NEW_LOGO, BonusEffect.FIXED, 500,
                          description="One-time bonus for each new client"),
                BonusRule("Upsell Bonus", BonusTrigger.UPSELL, BonusEffect.PERCENTAGE, 1,
                          description="Added percentage for upsells to existing clients"),
            ),
            eligible_roles=frozenset({"Account Executive", "Mid-Market Account Manager"}),
        ),
        CommissionPlan(
            id="plan_smb",
            name="SMB Tier",
            description="For sales development representatives and SMB account managers",
            base_rate=4.0,
            tiers=(
                AcceleratorTier(100, 5.0),
                AcceleratorTier(125, 6.0),
            ),
            bonus_rules=(
                BonusRule("Volume Bonus", BonusTrigger.VOLUME, BonusEffect.FIXED, 250,
                          threshold=5, description="Bonus for each 5 deals closed per quarter"),
                BonusRule("Renewal Rate Bonus", BonusTrigger.RETENTION, BonusEffect.FIXED, 1000,
                          threshold=90, description="Bonus for renewals at a 90%+ renewal rate"),
            ),
            eligible_roles=frozenset({"Sales Development Rep", "SMB Account Manager"}),
        ),
    ]


class PlanCatalog:
    """Holds validated commission plans keyed by id."""

    def __init__(self, data_path: Optional[Path] = None):
        self.data_path = data_path
        self.plans: Dict[str, CommissionPlan] = {}
        self._lock = threading.Lock()

        self._load_data()

    def _load_data(self):
        """Load plans from storage."""
        if not self.data_path or not self.data_path.exists():
            return

        with open(self.data_path, 'r') as f:
            data = json.load(f)

        # Malformed plans raise here rather than being skipped
        for p in data.get('plans', []):
            plan = plan_from_dict(p)
            self.plans[plan.id] = plan

        logger.debug(f"Loaded {len(self.plans)} plans from {self.data_path}")

    def load(self):
        """Discard in-memory plans and reload them from storage."""
        with self._lock:
            self.plans = {}
            self._load_data()

    def save(self):
        """Save plans to storage."""
        if not self.data_path:
            return

        self.data_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.data_path, 'w') as f:
            json.dump({
                'plans': [plan_to_dict(p) for p in self.plans.values()],
                'updated_at': datetime.now().isoformat(),
            }, f, indent=2)

    def add(self, plan: CommissionPlan) -> CommissionPlan:
        """Register a new plan.

        Plan ids are never reused: reps reference plans by id, so changed
        terms are published with `supersede` under a new id.
        """
        plan.validate()
        with self._lock:
            existing = self.plans.get(plan.id)
            if existing:
                raise ValueError(
                    f"Plan {plan.id} v{existing.version} exists; "
                    f"publish changes as a new plan"
                )
            self.plans[plan.id] = plan
        logger.info(f"Registered commission plan {plan.id} v{plan.version}")
        self.save()
        return plan

    def supersede(self, plan_id: str, plan: CommissionPlan) -> CommissionPlan:
        """Publish `plan` as the next version of `plan_id`.

        The old plan stays in the catalog unchanged and its reps keep its
        terms until they are moved explicitly.
        """
        previous = self.get(plan_id)
        successor = replace(plan, version=previous.version + 1, supersedes=previous.id)
        return self.add(successor)

    def lineage(self, plan_id: str) -> List[CommissionPlan]:
        """The plan and the versions it replaced, oldest first."""
        chain = [self.get(plan_id)]
        while chain[0].supersedes and chain[0].supersedes in self.plans:
            chain.insert(0, self.plans[chain[0].supersedes])
        return chain

    def seed_defaults(self) -> int:
        """Add the sample plans that are not present yet."""
        added = 0
        for plan in default_plans():
            if plan.id not in self.plans:
                self.add(plan)
                added += 1
        return added

    def get(self, plan_id: str) -> CommissionPlan:
        plan = self.plans.get(plan_id)
        if not plan:
            raise PlanNotFound(plan_id)
        return plan

    def find_for_role(self, role: str) -> List[CommissionPlan]:
        """Current plans that list the role as eligible."""
        replaced = {p.supersedes for p in self.plans.values() if p.supersedes}
        return [
            p for p in self.plans.values()
            if role in p.eligible_roles and p.id not in replaced
        ]

    def list_plans(self) -> List[CommissionPlan]:
        return sorted(self.plans.values(), key=lambda p: p.name)

    def __contains__(self, plan_id: str) -> bool:
        return plan_id in self.plans

    def __len__(self) -> int:
        return len(self.plans)
