"""Tests for commission forecasting."""

from datetime import date, datetime, timedelta

import pytest

from commission_engine.ledger import CommissionTransaction, Ledger, TransactionKind
from commission_engine.reporting import Forecaster, PipelineDeal, forecast_total, linear_trend


REP = "rep_sarah"
AS_OF = date(2024, 6, 30)


def add_earned(ledger, amount, day):
    return ledger.append(CommissionTransaction(
        rep_id=REP,
        kind=TransactionKind.EARNED,
        amount=amount,
        timestamp=datetime.combine(day, datetime.min.time()).replace(hour=10),
    ))


class TestLinearTrend:
    """Tests for the least-squares fit."""

    def test_fits_line(self):
        slope, intercept = linear_trend([(0, 1), (1, 3), (2, 5)])
        assert slope == pytest.approx(2.0)
        assert intercept == pytest.approx(1.0)

    def test_single_x_is_flat(self):
        assert linear_trend([(3, 10), (3, 20)]) == (0.0, 15)


class TestForecaster:
    """Tests for Forecaster."""

    def setup_method(self):
        self.ledger = Ledger()
        self.forecaster = Forecaster(self.ledger, lookback_weeks=8)

    def test_weekly_buckets(self):
        """The last bucket ends on the as-of date."""
        add_earned(self.ledger, 700, AS_OF)
        add_earned(self.ledger, 300, AS_OF - timedelta(days=7))
        add_earned(self.ledger, 999, AS_OF - timedelta(weeks=8))

        weekly = self.forecaster.weekly_earned(REP, AS_OF)

        assert len(weekly) == 8
        assert weekly[-1] == 700
        assert weekly[-2] == 300
        assert sum(weekly) == 1000

    def test_insufficient_history(self):
        """Fewer than two active weeks gives no forecast."""
        assert self.forecaster.forecast(REP, 14, AS_OF) == []

        add_earned(self.ledger, 700, AS_OF)
        assert self.forecaster.forecast(REP, 14, AS_OF) == []

    def test_steady_velocity(self):
        add_earned(self.ledger, 700, date(2024, 6, 18))
        add_earned(self.ledger, 700, date(2024, 6, 25))

        points = self.forecaster.forecast(REP, 14, AS_OF)

        assert [p.date for p in points][:2] == [date(2024, 7, 1), date(2024, 7, 2)]
        assert all(p.projected_amount == 100.0 for p in points)
        assert forecast_total(points) == 1400.0

    def test_rising_trend(self):
        add_earned(self.ledger, 700, date(2024, 6, 11))
        add_earned(self.ledger, 1400, date(2024, 6, 18))
        add_earned(self.ledger, 2100, date(2024, 6, 25))

        points = self.forecaster.forecast(REP, 14, AS_OF)

        assert points[-1].projected_amount > points[0].projected_amount

    def test_declining_trend_floors_at_zero(self):
        add_earned(self.ledger, 7000, date(2024, 6, 18))
        add_earned(self.ledger, 700, date(2024, 6, 25))

        points = self.forecaster.forecast(REP, 30, AS_OF)

        assert all(p.projected_amount >= 0 for p in points)
        assert points[-1].projected_amount == 0.0

    def test_pipeline_deals(self):
        add_earned(self.ledger, 700, date(2024, 6, 18))
        add_earned(self.ledger, 700, date(2024, 6, 25))
        pipeline = [
            PipelineDeal("P-1", date(2024, 7, 3), 10000, 0.5),
            PipelineDeal("P-2", date(2024, 9, 1), 50000, 0.9),
        ]

        points = self.forecaster.forecast(REP, 7, AS_OF, pipeline, commission_rate=8.5)

        assert points[2].projected_amount == 525.0
        assert forecast_total(points) == 1125.0

    def test_pipeline_ignored_without_rate(self):
        add_earned(self.ledger, 700, date(2024, 6, 18))
        add_earned(self.ledger, 700, date(2024, 6, 25))
        pipeline = [PipelineDeal("P-1", date(2024, 7, 3), 10000, 0.5)]

        points = self.forecaster.forecast(REP, 7, AS_OF, pipeline)
        assert forecast_total(points) == 700.0

    def test_zero_window(self):
        assert self.forecaster.forecast(REP, 0, AS_OF) == []

    def test_forecast_does_not_write(self):
        add_earned(self.ledger, 700, date(2024, 6, 18))
        add_earned(self.ledger, 700, date(2024, 6, 25))

        self.forecaster.forecast(REP, 30, AS_OF)
        assert len(self.ledger) == 2


class TestScheduledPayouts:
    """Tests for scheduled payouts."""

    def test_open_balances_by_pay_date(self):
        ledger = Ledger()
        forecaster = Forecaster(ledger)

        first = ledger.append(CommissionTransaction(
            rep_id=REP, kind=TransactionKind.PENDING, amount=1000.0, pay_date=date(2024, 7, 15),
        ))
        ledger.append(CommissionTransaction(
            rep_id=REP, kind=TransactionKind.PAID, amount=400.0, reference_id=first,
        ))
        ledger.append(CommissionTransaction(
            rep_id=REP, kind=TransactionKind.PENDING, amount=250.0, pay_date=date(2024, 7, 15),
        ))
        ledger.append(CommissionTransaction(
            rep_id=REP, kind=TransactionKind.PENDING, amount=900.0, pay_date=date(2024, 9, 1),
        ))

        payouts = forecaster.scheduled_payouts(REP, 30, AS_OF)

        assert [(p.date, p.projected_amount) for p in payouts] == [(date(2024, 7, 15), 850.0)]
