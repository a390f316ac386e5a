"""Tests for the onboarding state machine."""

import pytest
from decimal import Decimal

from chatledger.conversation import OnboardingFlow, SplitChoice
from chatledger.models.conversation import OnboardingStep, SessionState
from chatledger.models.ledger import UNALLOCATED_BUCKET


@pytest.fixture
def flow(period_resolver, budget_engine):
    return OnboardingFlow(period_resolver, budget_engine)


async def answer_until_split(flow, target, state):
    flow.start(state)
    await flow.handle_text(target, state, "8jt")
    return await flow.handle_text(target, state, "25")


class TestOnboardingSteps:
    """Tests for moving through the steps."""

    @pytest.mark.asyncio
    async def test_income_then_date(self, flow, register_user):
        """Test that income and pay day advance to the split choice."""
        target = await register_user()
        state = SessionState()

        reply = await answer_until_split(flow, target, state)

        assert state.onboarding.step == OnboardingStep.AWAIT_SPLIT_CHOICE
        assert state.onboarding.income == Decimal("8000000")
        assert state.onboarding.income_day == 25
        assert {c.data for c in reply.choices} == {
            f"onboarding:{c.value}" for c in SplitChoice
        }

    @pytest.mark.asyncio
    async def test_bad_income_stays_on_step(self, flow, register_user):
        """Test that an unreadable income re-asks."""
        target = await register_user()
        state = SessionState()
        flow.start(state)

        reply = await flow.handle_text(target, state, "a lot")

        assert state.onboarding.step == OnboardingStep.AWAIT_INCOME
        assert "couldn't read" in reply.text

    @pytest.mark.asyncio
    async def test_out_of_range_day(self, flow, register_user):
        """Test that day 32 is refused."""
        target = await register_user()
        state = SessionState()
        flow.start(state)
        await flow.handle_text(target, state, "8jt")

        await flow.handle_text(target, state, "32")

        assert state.onboarding.step == OnboardingStep.AWAIT_INCOME_DATE

    @pytest.mark.asyncio
    async def test_text_during_split_choice_repeats_options(self, flow, register_user):
        """Test that typing instead of pressing a button shows the options again."""
        target = await register_user()
        state = SessionState()
        await answer_until_split(flow, target, state)

        reply = await flow.handle_text(target, state, "hmm")

        assert len(reply.choices) == 3
        assert state.onboarding.step == OnboardingStep.AWAIT_SPLIT_CHOICE

    def test_cancel(self, flow):
        """Test that cancel reports whether a setup was running."""
        state = SessionState()
        assert flow.cancel(state) is False
        flow.start(state)
        assert flow.cancel(state) is True
        assert state.onboarding is None


class TestOnboardingFinish:
    """Tests for the final write."""

    @pytest.mark.asyncio
    async def test_recommended_split(self, flow, register_user, storage):
        """Test that the recommended split allocates three buckets and ends setup."""
        target = await register_user()
        state = SessionState()
        await answer_until_split(flow, target, state)

        reply = await flow.handle_choice(target, state, SplitChoice.RECOMMENDED.value)

        assert reply.finished is True
        assert state.onboarding is None
        period = await storage.get_current_period(target)
        assert period.start_date.day == 25
        budget = await storage.get_budget(period.id)
        assert budget.estimated_income == Decimal("8000000")
        # 8jt falls in the 50/30/20 band
        amounts = sorted(b.amount for b in budget.buckets)
        assert amounts == [Decimal("1600000"), Decimal("2400000"), Decimal("4000000")]

    @pytest.mark.asyncio
    async def test_manual_split(self, flow, register_user, storage):
        """Test that savings receives whatever needs and wants leave."""
        target = await register_user()
        state = SessionState()
        await answer_until_split(flow, target, state)

        await flow.handle_choice(target, state, SplitChoice.MANUAL.value)
        assert state.onboarding.step == OnboardingStep.AWAIT_MANUAL_NEEDS
        await flow.handle_text(target, state, "60")
        reply = await flow.handle_text(target, state, "25%")

        assert reply.finished is True
        assert "60/25/15" in reply.text
        period = await storage.get_current_period(target)
        budget = await storage.get_budget(period.id)
        assert sorted(b.amount for b in budget.buckets) == [
            Decimal("1200000"), Decimal("2000000"), Decimal("4800000")
        ]

    @pytest.mark.asyncio
    async def test_manual_wants_over_remainder(self, flow, register_user):
        """Test that wants may not exceed what needs left."""
        target = await register_user()
        state = SessionState()
        await answer_until_split(flow, target, state)
        await flow.handle_choice(target, state, SplitChoice.MANUAL.value)
        await flow.handle_text(target, state, "70")

        await flow.handle_text(target, state, "40")

        assert state.onboarding.step == OnboardingStep.AWAIT_MANUAL_WANTS

    @pytest.mark.asyncio
    async def test_skip_leaves_income_unallocated(self, flow, register_user, storage):
        """Test that skipping creates the single system bucket."""
        target = await register_user()
        state = SessionState()
        await answer_until_split(flow, target, state)

        reply = await flow.handle_choice(target, state, SplitChoice.SKIP.value)

        assert reply.finished is True
        period = await storage.get_current_period(target)
        budget = await storage.get_budget(period.id)
        assert budget.bucket_names == [UNALLOCATED_BUCKET]
        assert budget.is_unallocated

    @pytest.mark.asyncio
    async def test_stale_choice(self, flow, register_user):
        """Test that a split button pressed after setup is answered harmlessly."""
        target = await register_user()
        state = SessionState()

        reply = await flow.handle_choice(target, state, SplitChoice.RECOMMENDED.value)

        assert reply.finished is False
        assert "already passed" in reply.text
