"""Short-horizon commission forecasting from ledger velocity and pipeline."""

import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..ledger.ledger import Ledger
from ..ledger.models import CommissionTransaction, TransactionKind, open_pending_balances

logger = logging.getLogger(__name__)


@dataclass
class ForecastPoint:
    """Projected commission for one day."""
    date: date
    projected_amount: float

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date.isoformat(), 'projected_amount': self.projected_amount}


@dataclass
class PipelineDeal:
    """An open opportunity expected to close inside the forecast window."""
    deal_id: str
    expected_close: date
    amount: float
    probability: float  # 0.0 - 1.0


def linear_trend(points: Sequence[Tuple[float, float]]) -> Tuple[float, float]:
    """Least-squares (slope, intercept) through (x, y) points."""
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    mean_x = statistics.mean(xs)
    mean_y = statistics.mean(ys)
    var_x = sum((x - mean_x) ** 2 for x in xs)
    if var_x == 0:
        return 0.0, mean_y
    slope = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys)) / var_x
    return slope, mean_y - slope * mean_x


def origin_of(entry: CommissionTransaction, by_id: Dict[str, CommissionTransaction]) -> CommissionTransaction:
    """Follow reference links back to the entry that started the chain."""
    seen = {entry.id}
    while entry.reference_id in by_id and entry.reference_id not in seen:
        entry = by_id[entry.reference_id]
        seen.add(entry.id)
    return entry


class Forecaster:
    """Projects near-term commission. Output is advisory and never recorded."""

    def __init__(self, ledger: Ledger, lookback_weeks: int = 8):
        self.ledger = ledger
        self.lookback_weeks = lookback_weeks

    def weekly_earned(self, rep_id: str, as_of: Optional[date] = None) -> List[float]:
        """Net earned totals per week over the lookback, oldest first.

        Earned and Adjustment entries both count. Reversals and corrections
        land in the week of the entry they trace back to, so a voided deal
        nets to zero and a corrected one counts once at its new amount.
        """
        as_of = as_of or date.today()
        window_start = as_of - timedelta(weeks=self.lookback_weeks) + timedelta(days=1)
        buckets = [0.0] * self.lookback_weeks

        entries = self.ledger.snapshot(rep_id)
        by_id = {e.id: e for e in entries}
        for entry in entries:
            if entry.kind not in (TransactionKind.EARNED, TransactionKind.ADJUSTMENT):
                continue
            day = origin_of(entry, by_id).timestamp.date()
            if window_start <= day <= as_of:
                buckets[(day - window_start).days // 7] += entry.amount

        return [round(total, 2) for total in buckets]

    def forecast(
        self,
        rep_id: str,
        window_days: int,
        as_of: Optional[date] = None,
        pipeline: Optional[List[PipelineDeal]] = None,
        commission_rate: Optional[float] = None,
    ) -> List[ForecastPoint]:
        """Daily projected commission for the next `window_days` days.

        Fits a linear trend to weekly Earned totals, starting at the first
        week with activity. Fewer than two active weeks gives an empty
        forecast. Pipeline deals add probability-weighted commission on
        their expected close date when a rate is supplied.
        """
        if window_days <= 0:
            return []

        as_of = as_of or date.today()
        weekly = self.weekly_earned(rep_id, as_of)
        active = [i for i, total in enumerate(weekly) if total > 0]
        if len(active) < 2:
            logger.info(f"Not enough earned history to forecast rep {rep_id}")
            return []

        first = active[0]
        slope, intercept = linear_trend([(i, weekly[i]) for i in range(first, len(weekly))])

        extra: Dict[date, float] = defaultdict(float)
        if pipeline:
            if commission_rate is None:
                logger.debug(f"No commission rate for rep {rep_id}; skipping pipeline")
            else:
                for deal in pipeline:
                    if as_of < deal.expected_close <= as_of + timedelta(days=window_days):
                        extra[deal.expected_close] += deal.amount * deal.probability * commission_rate / 100

        # Week i covers days 7i..7i+6 counted from the window start; the
        # last bucket ends on as_of
        last_index = len(weekly) - 1
        points = []
        for offset in range(1, window_days + 1):
            day = as_of + timedelta(days=offset)
            x = last_index + offset / 7
            weekly_rate = max(intercept + slope * x, 0.0)
            points.append(ForecastPoint(
                date=day,
                projected_amount=round(weekly_rate / 7 + extra.get(day, 0.0), 2),
            ))
        return points

    def scheduled_payouts(
        self,
        rep_id: str,
        window_days: int,
        as_of: Optional[date] = None,
    ) -> List[ForecastPoint]:
        """Open pending balances with a pay date inside the window."""
        as_of = as_of or date.today()
        horizon = as_of + timedelta(days=window_days)
        entries = self.ledger.snapshot(rep_id)
        balances = open_pending_balances(entries)

        by_date: Dict[date, float] = defaultdict(float)
        for entry in entries:
            if entry.kind != TransactionKind.PENDING or not entry.pay_date:
                continue
            if as_of < entry.pay_date <= horizon and balances.get(entry.id, 0.0) > 0:
                by_date[entry.pay_date] += balances[entry.id]

        return [ForecastPoint(d, round(amount, 2)) for d, amount in sorted(by_date.items())]


def forecast_total(points: List[ForecastPoint]) -> float:
    return round(sum(p.projected_amount for p in points), 2)
