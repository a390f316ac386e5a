"""
Period Resolution

A period runs from the income day of its anchor month to the day before
the income day of the following month. With income day 1 that is just
the calendar month.

When the income day does not exist in a month (30 in February, 31 in
April) that month's period starts on the 1st of the next month, and the
period before it ends the day before. Consecutive periods therefore
always tile the calendar with no gaps and no overlap.

DESIGN DECISION: compute_period_bounds is a pure function of (today,
income day). Everything that touches storage lives in PeriodResolver,
which owns the "at most one current period per target" invariant.
"""

import calendar
from datetime import date, timedelta
from typing import TYPE_CHECKING, Callable, NamedTuple, Optional

import structlog

from chatledger.audit import AuditLogger
from chatledger.models.audit import AuditEventBuilder
from chatledger.models.ledger import Period, Target
from chatledger.services.storage import DuplicateError, LedgerStorageInterface

if TYPE_CHECKING:
    from chatledger.budget.engine import BudgetEngine


logger = structlog.get_logger(__name__)


class PeriodError(Exception):
    """Base exception for period resolution."""
    pass


class NoActivePeriod(PeriodError):
    """The target has never set up a budgeting period."""
    pass


class InvalidIncomeDay(PeriodError, ValueError):
    pass


class PeriodBounds(NamedTuple):
    name: str
    start: date
    end: date


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _effective_start(year: int, month: int, income_day: int) -> date:
    """Income day of the month, or the 1st of the next month if it doesn't exist."""
    if income_day <= calendar.monthrange(year, month)[1]:
        return date(year, month, income_day)
    next_year, next_month = _shift_month(year, month, 1)
    return date(next_year, next_month, 1)


def period_name(year: int, month: int) -> str:
    return f"{calendar.month_name[month]} {year}"


def compute_period_bounds(today: date, income_day: int) -> PeriodBounds:
    """
    Bounds of the period containing today.

    Examples (income day 25):
        today = 2025-03-10 -> 2025-02-25 .. 2025-03-24 ("February 2025")
        today = 2025-03-26 -> 2025-03-25 .. 2025-04-24 ("March 2025")

    Raises:
        InvalidIncomeDay: If income_day is outside 1..31
    """
    if not 1 <= income_day <= 31:
        raise InvalidIncomeDay(f"Income day must be between 1 and 31, got {income_day}")

    if income_day == 1:
        last_day = calendar.monthrange(today.year, today.month)[1]
        return PeriodBounds(
            name=period_name(today.year, today.month),
            start=today.replace(day=1),
            end=today.replace(day=last_day),
        )

    if today.day < income_day:
        year, month = _shift_month(today.year, today.month, -1)
    else:
        year, month = today.year, today.month

    start = _effective_start(year, month, income_day)
    next_year, next_month = _shift_month(year, month, 1)
    end = _effective_start(next_year, next_month, income_day) - timedelta(days=1)
    return PeriodBounds(name=period_name(year, month), start=start, end=end)


class PeriodResolver:
    """
    Finds or creates the active period of a target.

    Usage:
        resolver = PeriodResolver(storage, budget_engine)
        period = await resolver.active_period(target)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        budget_engine: Optional["BudgetEngine"] = None,
        audit_logger: Optional[AuditLogger] = None,
        today: Callable[[], date] = date.today,
    ):
        self._storage = storage
        self._budget = budget_engine
        self._audit = audit_logger
        self._today = today

    async def resolve(self, target: Target, income_day: Optional[int] = None) -> Period:
        """The period containing today, created as current if missing."""
        return await self.ensure_exists(target, self._today(), income_day or target.income_day)

    async def ensure_exists(self, target: Target, anchor_date: date, income_day: int) -> Period:
        """
        Period containing anchor_date; created (and made current) if absent.

        Repeated calls for the same anchor month return the same period
        and never touch the other periods' current flag again.
        """
        bounds = compute_period_bounds(anchor_date, income_day)
        return await self._find_or_create(target, bounds, bounds.name)

    async def _find_or_create(self, target: Target, bounds: PeriodBounds, name: str) -> Period:
        existing = await self._storage.get_period_by_name(target, name)
        if existing:
            return existing

        try:
            period = await self._storage.create_current_period(
                target, name=name, start_date=bounds.start, end_date=bounds.end
            )
        except DuplicateError:
            # Created concurrently by another worker
            existing = await self._storage.get_period_by_name(target, name)
            if existing is None:
                raise
            return existing

        logger.info(
            "period_created",
            target_id=str(target.target_id),
            name=name,
            start=bounds.start.isoformat(),
            end=bounds.end.isoformat(),
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.period_created(target.target_id, period.id, name))
        return period

    async def current(self, target: Target) -> Optional[Period]:
        return await self._storage.get_current_period(target)

    async def active_period(self, target: Target) -> Period:
        """
        The current period, rolled over if it has ended.

        Rolling over creates the period containing today and copies the
        previous budget into it.

        Raises:
            NoActivePeriod: If the target has no period at all
        """
        period = await self._storage.get_current_period(target)
        if period is None:
            raise NoActivePeriod(f"No active period for {target.kind} {target.target_id}")

        today = self._today()
        if period.contains(today) or today < period.start_date:
            return period

        rolled = await self.ensure_exists(target, today, target.income_day)
        if self._budget and rolled.id != period.id:
            await self._budget.copy_from(period, rolled)
        return rolled

    async def start_period(
        self,
        target: Target,
        income_day: Optional[int] = None,
        name: Optional[str] = None,
        copy_from_previous: bool = True,
    ) -> Period:
        """
        Start (or re-select) the period containing today.

        An explicit name overrides the computed one. When the income day
        changes it is stored on the target.
        """
        income_day = income_day or target.income_day
        previous = await self._storage.get_current_period(target)
        bounds = compute_period_bounds(self._today(), income_day)

        if income_day != target.income_day:
            await self._storage.set_income_day(target, income_day)

        period = await self._find_or_create(target, bounds, name or bounds.name)
        if not period.is_current:
            await self._storage.set_current_period(target, period.id)
            period = period.model_copy(update={"is_current": True})

        if copy_from_previous and self._budget and previous and previous.id != period.id:
            await self._budget.copy_from(previous, period)
        return period
