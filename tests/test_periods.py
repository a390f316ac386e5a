"""Tests for period bounds and the PeriodResolver."""

import pytest
from datetime import date
from decimal import Decimal

from chatledger.periods import (
    InvalidIncomeDay,
    NoActivePeriod,
    PeriodResolver,
    compute_period_bounds,
)


class TestComputePeriodBounds:
    """Tests for compute_period_bounds."""

    def test_before_income_day_anchors_previous_month(self):
        """Test that the 10th with income day 25 starts on the 25th of last month."""
        bounds = compute_period_bounds(date(2025, 3, 10), 25)
        assert bounds.start == date(2025, 2, 25)
        assert bounds.end == date(2025, 3, 24)

    def test_after_income_day_anchors_current_month(self):
        """Test that the 26th with income day 25 starts on the 25th of this month."""
        bounds = compute_period_bounds(date(2025, 3, 26), 25)
        assert bounds.start == date(2025, 3, 25)
        assert bounds.end == date(2025, 4, 24)
        assert bounds.name == "March 2025"

    def test_income_day_one_is_calendar_month(self):
        """Test that income day 1 gives calendar months."""
        bounds = compute_period_bounds(date(2024, 2, 14), 1)
        assert bounds.start == date(2024, 2, 1)
        assert bounds.end == date(2024, 2, 29)

    def test_income_day_beyond_month_length_is_clamped(self):
        """Test that income day 31 ends the January period on the last day of February."""
        bounds = compute_period_bounds(date(2025, 2, 10), 31)
        assert bounds.start == date(2025, 1, 31)
        assert bounds.end == date(2025, 2, 28)

    def test_year_boundary(self):
        """Test that January before the income day anchors December of last year."""
        bounds = compute_period_bounds(date(2025, 1, 5), 25)
        assert bounds.start == date(2024, 12, 25)
        assert bounds.end == date(2025, 1, 24)

    @pytest.mark.parametrize("day", [0, 32])
    def test_invalid_income_day(self, day):
        """Test that income days outside 1..31 are rejected."""
        with pytest.raises(InvalidIncomeDay):
            compute_period_bounds(date(2025, 3, 10), day)


class TestPeriodResolver:
    """Tests for PeriodResolver against SQLite storage."""

    @pytest.mark.asyncio
    async def test_ensure_exists_is_idempotent(self, storage, period_resolver, register_user):
        """Test that the same anchor month returns the same period."""
        target = await register_user()
        first = await period_resolver.ensure_exists(target, date(2025, 3, 10), 1)
        second = await period_resolver.ensure_exists(target, date(2025, 3, 20), 1)
        assert first.id == second.id
        assert second.is_current

    @pytest.mark.asyncio
    async def test_single_current_period(self, storage, period_resolver, register_user):
        """Test that creating a new period clears the flag on the old one."""
        target = await register_user()
        march = await period_resolver.ensure_exists(target, date(2025, 3, 10), 1)
        april = await period_resolver.ensure_exists(target, date(2025, 4, 10), 1)

        current = await storage.get_current_period(target)
        assert current.id == april.id
        old = await storage.get_period_by_name(target, march.name)
        assert old is not None
        assert not old.is_current

    @pytest.mark.asyncio
    async def test_active_period_without_any_period(self, period_resolver, register_user):
        """Test that a target with no period raises NoActivePeriod."""
        target = await register_user()
        with pytest.raises(NoActivePeriod):
            await period_resolver.active_period(target)

    @pytest.mark.asyncio
    async def test_rollover_copies_budget(self, storage, budget_engine, register_user):
        """Test that an ended period rolls over and the budget comes along."""
        target = await register_user()
        today = {"value": date(2025, 2, 10)}
        resolver = PeriodResolver(storage, budget_engine, today=lambda: today["value"])

        february = await resolver.resolve(target)
        await budget_engine.allocate(february, Decimal("5000000"), 50, 30, 20)

        today["value"] = date(2025, 3, 10)
        march = await resolver.active_period(target)

        assert march.id != february.id
        assert march.name == "March 2025"
        budget = await budget_engine.get_budget(march)
        assert budget.estimated_income == Decimal("5000000")
        assert budget.bucket_names == ["Needs", "Wants", "Savings"]

    @pytest.mark.asyncio
    async def test_start_period_changes_income_day(self, storage, period_resolver, register_user):
        """Test that start_period stores a new income day and selects the period."""
        target = await register_user()
        period = await period_resolver.start_period(target, income_day=25)

        assert period.start_date == date(2025, 2, 25)
        assert period.is_current
        user = await storage.get_user_by_external_id(1001)
        assert user.income_day == 25
