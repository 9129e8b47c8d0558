"""Ledger records: commission transactions and reporting periods."""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from ..reps.accounts import QuotaPeriod


class TransactionKind(Enum):
    """Kinds of ledger entry."""
    EARNED = "earned"
    ADJUSTMENT = "adjustment"
    PAID = "paid"
    PENDING = "pending"


@dataclass(frozen=True)
class CommissionTransaction:
    """An immutable ledger entry.

    `id` and `sequence` are assigned by the ledger on append. Corrections
    are new entries whose `reference_id` points at the entry they close or
    reverse.
    """
    rep_id: str
    kind: TransactionKind
    amount: float
    timestamp: datetime = field(default_factory=datetime.now)
    source_ref: str = ""
    note: str = ""
    pay_date: Optional[date] = None
    reference_id: Optional[str] = None
    id: str = ""
    sequence: int = 0

    @property
    def sort_key(self):
        return (self.timestamp, self.sequence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sequence': self.sequence,
            'rep_id': self.rep_id,
            'kind': self.kind.value,
            'amount': self.amount,
            'timestamp': self.timestamp.isoformat(),
            'source_ref': self.source_ref,
            'note': self.note,
            'pay_date': self.pay_date.isoformat() if self.pay_date else None,
            'reference_id': self.reference_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommissionTransaction":
        return cls(
            id=data['id'],
            sequence=data.get('sequence', 0),
            rep_id=data['rep_id'],
            kind=TransactionKind(data['kind']),
            amount=data['amount'],
            timestamp=datetime.fromisoformat(data['timestamp']),
            source_ref=data.get('source_ref', ''),
            note=data.get('note', ''),
            pay_date=date.fromisoformat(data['pay_date']) if data.get('pay_date') else None,
            reference_id=data.get('reference_id'),
        )


@dataclass(frozen=True)
class Period:
    """Half-open date range [start, end)."""
    start: date
    end: date
    label: str = ""

    def contains(self, moment: datetime) -> bool:
        day = moment.date() if isinstance(moment, datetime) else moment
        return self.start <= day < self.end

    @classmethod
    def month(cls, year: int, month: int) -> "Period":
        last = calendar.monthrange(year, month)[1]
        return cls(date(year, month, 1), date(year, month, last) + timedelta(days=1), f"{year}-{month:02d}")

    @classmethod
    def quarter(cls, year: int, quarter: int) -> "Period":
        if quarter not in (1, 2, 3, 4):
            raise ValueError(f"Quarter must be 1-4, got {quarter}")
        first_month = (quarter - 1) * 3 + 1
        end = date(year + 1, 1, 1) if quarter == 4 else date(year, first_month + 3, 1)
        return cls(date(year, first_month, 1), end, f"{year}-Q{quarter}")

    @classmethod
    def year(cls, year: int) -> "Period":
        return cls(date(year, 1, 1), date(year + 1, 1, 1), str(year))

    @classmethod
    def all_time(cls) -> "Period":
        return cls(date.min, date.max, "all")

    @classmethod
    def containing(cls, day: date, quota_period: QuotaPeriod) -> "Period":
        """The monthly, quarterly or annual period a date falls in."""
        if quota_period == QuotaPeriod.MONTHLY:
            return cls.month(day.year, day.month)
        if quota_period == QuotaPeriod.QUARTERLY:
            return cls.quarter(day.year, (day.month - 1) // 3 + 1)
        return cls.year(day.year)

    @classmethod
    def parse(cls, text: str) -> "Period":
        """Parse '2024', '2024-Q2', '2024-05' or 'all'."""
        text = text.strip()
        if text.lower() == "all":
            return cls.all_time()
        if "-Q" in text.upper():
            year, quarter = text.upper().split("-Q")
            return cls.quarter(int(year), int(quarter))
        if "-" in text:
            year, month = text.split("-")
            return cls.month(int(year), int(month))
        return cls.year(int(text))

    def __str__(self):
        return self.label or f"{self.start.isoformat()}..{self.end.isoformat()}"


def pending_closure(entry: CommissionTransaction, referenced: Optional[CommissionTransaction]) -> float:
    """Amount by which an entry closes the Pending entry it references.

    Paid entries close their full amount; negative Adjustments void the
    matching amount. Anything else closes nothing.
    """
    if referenced is None or referenced.kind != TransactionKind.PENDING:
        return 0.0
    if entry.kind == TransactionKind.PAID:
        return entry.amount
    if entry.kind == TransactionKind.ADJUSTMENT and entry.amount < 0:
        return -entry.amount
    return 0.0


def open_pending_balances(entries: Iterable[CommissionTransaction]) -> Dict[str, float]:
    """Open balance of every Pending entry, given a rep's full entry list."""
    entries = list(entries)
    by_id = {e.id: e for e in entries}
    balances = {e.id: e.amount for e in entries if e.kind == TransactionKind.PENDING}
    for entry in entries:
        if entry.reference_id in balances:
            balances[entry.reference_id] -= pending_closure(entry, by_id.get(entry.reference_id))
    return {k: round(v, 2) for k, v in balances.items()}


def is_recovery(entry: CommissionTransaction, referenced: Optional[CommissionTransaction]) -> bool:
    """A negative Paid entry taking back a clawback that was already paid out."""
    return (
        entry.kind == TransactionKind.PAID
        and referenced is not None
        and referenced.kind == TransactionKind.ADJUSTMENT
    )


def open_recovery_balances(entries: Iterable[CommissionTransaction]) -> Dict[str, float]:
    """Amount still to be recovered for every stand-alone clawback.

    A negative Adjustment that does not close a Pending entry reduces earned
    commission that was already paid; negative Paid entries referencing it
    record the money taken back.
    """
    entries = list(entries)
    by_id = {e.id: e for e in entries}
    balances = {
        e.id: -e.amount for e in entries
        if e.kind == TransactionKind.ADJUSTMENT and e.amount < 0
        and pending_closure(e, by_id.get(e.reference_id)) == 0
    }
    for entry in entries:
        if entry.reference_id in balances and is_recovery(entry, by_id[entry.reference_id]):
            balances[entry.reference_id] += entry.amount
    return {k: round(v, 2) for k, v in balances.items()}
