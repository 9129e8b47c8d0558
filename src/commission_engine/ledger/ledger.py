"""Append-only commission ledger."""

import bisect
import itertools
import json
import logging
import math
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .models import (
    CommissionTransaction,
    Period,
    TransactionKind,
    is_recovery,
    open_pending_balances,
    open_recovery_balances,
    pending_closure,
)
from ..errors import LedgerError, PendingAlreadyClosed, UnknownReference

logger = logging.getLogger(__name__)

# Half a cent of slack when closing pending balances
CLOSE_TOLERANCE = 0.005


def new_transaction_id() -> str:
    return str(uuid.uuid4())[:12]


class LedgerView:
    """Read-only, restartable view over a snapshot of one rep's entries."""

    def __init__(self, entries: Tuple[CommissionTransaction, ...], period: Optional[Period] = None):
        self._entries = entries
        self.period = period

    def __iter__(self) -> Iterator[CommissionTransaction]:
        for entry in self._entries:
            if self.period is None or self.period.contains(entry.timestamp):
                yield entry

    def of_kind(self, kind: TransactionKind) -> Iterator[CommissionTransaction]:
        return (e for e in self if e.kind == kind)

    def total(self, kind: TransactionKind) -> float:
        return sum(e.amount for e in self.of_kind(kind))


class Ledger:
    """Append-only store of commission transactions.

    Appends are serialized per rep; each rep's entries are published as an
    immutable tuple, so a reader holding a snapshot never sees a partial
    append.
    """

    def __init__(self, data_path: Optional[Path] = None):
        self.data_path = data_path
        self._entries: Dict[str, Tuple[CommissionTransaction, ...]] = {}
        self._by_id: Dict[str, CommissionTransaction] = {}
        self._rep_locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        self._io_lock = threading.Lock()
        self._sequence = itertools.count(1)

        self._load_data()

    def _load_data(self):
        """Load entries from storage."""
        if not self.data_path or not self.data_path.exists():
            return

        with open(self.data_path, 'r') as f:
            data = json.load(f)

        grouped: Dict[str, List[CommissionTransaction]] = {}
        last_sequence = 0
        for t in data.get('transactions', []):
            entry = CommissionTransaction.from_dict(t)
            grouped.setdefault(entry.rep_id, []).append(entry)
            self._by_id[entry.id] = entry
            last_sequence = max(last_sequence, entry.sequence)

        for rep_id, entries in grouped.items():
            self._entries[rep_id] = tuple(sorted(entries, key=lambda e: e.sort_key))

        self._sequence = itertools.count(last_sequence + 1)
        logger.debug(f"Loaded {len(self._by_id)} ledger entries from {self.data_path}")

    def _save_data(self):
        """Save all entries to storage."""
        if not self.data_path:
            return

        with self._io_lock:
            snapshot = list(self._entries.values())
            transactions = sorted(
                (e for entries in snapshot for e in entries),
                key=lambda e: e.sequence,
            )
            self.data_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.data_path, 'w') as f:
                json.dump({
                    'transactions': [e.to_dict() for e in transactions],
                    'updated_at': datetime.now().isoformat(),
                }, f, indent=2)

    def _lock_for(self, rep_id: str) -> threading.Lock:
        with self._guard:
            lock = self._rep_locks.get(rep_id)
            if lock is None:
                lock = self._rep_locks[rep_id] = threading.Lock()
            return lock

    def _next_sequence(self) -> int:
        with self._guard:
            return next(self._sequence)

    def _validate(self, txn: CommissionTransaction, current: List[CommissionTransaction],
                  staged: Dict[str, CommissionTransaction]):
        if not isinstance(txn.kind, TransactionKind):
            raise LedgerError(f"Unknown transaction kind {txn.kind!r}")
        if txn.amount is None or not math.isfinite(txn.amount):
            raise LedgerError(f"Transaction amount must be finite, got {txn.amount!r}")
        if txn.kind in (TransactionKind.EARNED, TransactionKind.PENDING) and txn.amount < 0:
            raise LedgerError(
                f"{txn.kind.value} entries cannot be negative; record credits as an adjustment"
            )
        if txn.kind == TransactionKind.PAID and txn.amount < 0 and txn.reference_id is None:
            raise LedgerError("Negative paid entries must reference the clawback they recover")
        if txn.id and (txn.id in self._by_id or txn.id in staged):
            raise LedgerError(f"Ledger entry {txn.id} already exists")

        if txn.reference_id is None:
            return

        referenced = staged.get(txn.reference_id) or self._by_id.get(txn.reference_id)
        if referenced is None or referenced.rep_id != txn.rep_id:
            raise UnknownReference(txn.rep_id, txn.reference_id)

        if is_recovery(txn, referenced):
            self._validate_recovery(txn, referenced, current)
            return
        if txn.kind == TransactionKind.PAID and referenced.kind != TransactionKind.PENDING:
            raise LedgerError(f"Paid entries can only close pending entries, {referenced.id} is {referenced.kind.value}")
        if txn.kind == TransactionKind.PAID and txn.amount < 0:
            raise LedgerError(f"Negative paid entry cannot reference pending entry {referenced.id}")

        closing = pending_closure(txn, referenced)
        if closing > 0:
            open_balance = open_pending_balances(current).get(referenced.id, 0.0)
            if closing > open_balance + CLOSE_TOLERANCE:
                raise PendingAlreadyClosed(referenced.id, open_balance, closing)

    def _validate_recovery(self, txn: CommissionTransaction, clawback: CommissionTransaction,
                           current: List[CommissionTransaction]):
        outstanding = open_recovery_balances(current)
        if txn.amount >= 0 or clawback.id not in outstanding:
            raise LedgerError(
                f"Paid entries referencing adjustment {clawback.id} must recover a stand-alone clawback"
            )
        if -txn.amount > outstanding[clawback.id] + CLOSE_TOLERANCE:
            raise LedgerError(
                f"Clawback {clawback.id} has {outstanding[clawback.id]:.2f} left to recover, "
                f"requested {-txn.amount:.2f}"
            )

    def append(self, txn: CommissionTransaction) -> str:
        """Append a transaction and return its assigned id."""
        return self.append_many([txn])[0]

    def append_many(self, txns: List[CommissionTransaction]) -> List[str]:
        """Append several entries for one rep as a single atomic write.

        Later entries may reference earlier ones by pre-assigned id. Either
        every entry is appended or none is.
        """
        if not txns:
            return []
        rep_id = txns[0].rep_id
        if any(t.rep_id != rep_id for t in txns):
            raise LedgerError("Batched entries must belong to a single rep")

        with self._lock_for(rep_id):
            entries = list(self._entries.get(rep_id, ()))
            staged: Dict[str, CommissionTransaction] = {}

            for txn in txns:
                try:
                    self._validate(txn, entries, staged)
                except LedgerError as e:
                    logger.warning(f"Rejected {txn.kind} entry for rep {rep_id}: {e}")
                    raise

                entry = replace(
                    txn,
                    id=txn.id or new_transaction_id(),
                    sequence=self._next_sequence(),
                )
                bisect.insort(entries, entry, key=lambda e: e.sort_key)
                staged[entry.id] = entry

            self._entries[rep_id] = tuple(entries)
            self._by_id.update(staged)

        self._save_data()
        for entry in staged.values():
            logger.info(
                f"Ledger: {entry.kind.value} {entry.amount:.2f} for rep {entry.rep_id} "
                f"(id={entry.id}, seq={entry.sequence})"
            )
        return list(staged.keys())

    def get(self, txn_id: str) -> Optional[CommissionTransaction]:
        return self._by_id.get(txn_id)

    def snapshot(self, rep_id: str) -> Tuple[CommissionTransaction, ...]:
        """All of a rep's entries as of now, ordered by (timestamp, sequence)."""
        return self._entries.get(rep_id, ())

    def entries_for(self, rep_id: str, period: Optional[Period] = None) -> LedgerView:
        """Lazy, restartable view of a rep's entries within a period."""
        return LedgerView(self.snapshot(rep_id), period)

    def rep_ids(self) -> List[str]:
        return sorted(self._entries.keys())

    def open_pending(self, rep_id: str) -> List[Tuple[CommissionTransaction, float]]:
        """Pending entries that still have an open balance."""
        entries = self.snapshot(rep_id)
        balances = open_pending_balances(entries)
        return [
            (e, balances[e.id]) for e in entries
            if e.kind == TransactionKind.PENDING and balances.get(e.id, 0.0) > CLOSE_TOLERANCE
        ]

    def open_balance(self, pending_id: str) -> float:
        pending = self._by_id.get(pending_id)
        if pending is None:
            raise LedgerError(f"No ledger entry {pending_id}")
        return open_pending_balances(self.snapshot(pending.rep_id)).get(pending_id, 0.0)

    def outstanding_recovery(self, adjustment_id: str) -> float:
        """Amount of a paid-out clawback not yet taken back through payroll."""
        clawback = self._by_id.get(adjustment_id)
        if clawback is None:
            raise LedgerError(f"No ledger entry {adjustment_id}")
        return open_recovery_balances(self.snapshot(clawback.rep_id)).get(adjustment_id, 0.0)

    def __len__(self) -> int:
        return len(self._by_id)
