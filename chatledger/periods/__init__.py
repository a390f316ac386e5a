"""Budgeting period resolution."""

from chatledger.periods.resolver import (
    InvalidIncomeDay,
    NoActivePeriod,
    PeriodBounds,
    PeriodError,
    PeriodResolver,
    compute_period_bounds,
)

__all__ = [
    "InvalidIncomeDay",
    "NoActivePeriod",
    "PeriodBounds",
    "PeriodError",
    "PeriodResolver",
    "compute_period_bounds",
]
