"""Commission forecasting and reports."""

from .forecast import ForecastPoint, Forecaster, PipelineDeal, forecast_total, linear_trend
from .performance import MonthlyPayout, PlanPerformance, monthly_payouts, team_performance

__all__ = [
    "ForecastPoint",
    "Forecaster",
    "PipelineDeal",
    "forecast_total",
    "linear_trend",
    "MonthlyPayout",
    "PlanPerformance",
    "monthly_payouts",
    "team_performance",
]
