"""
Onboarding

First-run budget setup as an explicit state machine. The step and the
answers collected so far live in SessionState.onboarding, so a setup
survives between messages and restarts.

    AWAIT_INCOME       -> "8jt"                  -> AWAIT_INCOME_DATE
    AWAIT_INCOME_DATE  -> "25"                   -> AWAIT_SPLIT_CHOICE
    AWAIT_SPLIT_CHOICE -> [recommended]          -> SUMMARY
                          [manual]               -> AWAIT_MANUAL_NEEDS
                          [skip]                 -> SUMMARY (unallocated)
    AWAIT_MANUAL_NEEDS -> "50"                   -> AWAIT_MANUAL_WANTS
    AWAIT_MANUAL_WANTS -> "30" (savings = rest)  -> SUMMARY

SUMMARY writes the period and budget and ends onboarding. If the write
fails the state stays at SUMMARY and the next message retries it.
"""

from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field

from chatledger.amounts import AmountParseError, format_amount, parse_amount
from chatledger.budget import BudgetEngine, suggest_percentages
from chatledger.models.conversation import OnboardingState, OnboardingStep, SessionState
from chatledger.models.ledger import Target
from chatledger.periods import PeriodResolver
from chatledger.transport import Choice


logger = structlog.get_logger(__name__)

ONBOARDING_CHOICE_PREFIX = "onboarding:"


class SplitChoice(str, Enum):
    RECOMMENDED = "recommended"
    MANUAL = "manual"
    SKIP = "skip"


class OnboardingReply(BaseModel):
    text: str
    choices: list[Choice] = Field(default_factory=list)
    finished: bool = False


def _split_choices(income: Decimal) -> list[Choice]:
    needs, wants, savings = suggest_percentages(income)
    return [
        Choice(
            label=f"Recommended {needs}/{wants}/{savings}",
            data=f"{ONBOARDING_CHOICE_PREFIX}{SplitChoice.RECOMMENDED.value}",
        ),
        Choice(label="Set my own split", data=f"{ONBOARDING_CHOICE_PREFIX}{SplitChoice.MANUAL.value}"),
        Choice(label="Skip for now", data=f"{ONBOARDING_CHOICE_PREFIX}{SplitChoice.SKIP.value}"),
    ]


def _parse_bounded_int(text: str, upper: int) -> Optional[int]:
    cleaned = text.strip().rstrip("%").strip()
    if not cleaned.isdigit():
        return None
    value = int(cleaned)
    return value if 0 <= value <= upper else None


class OnboardingFlow:
    """
    Drives OnboardingState through its steps.

    Every handler mutates the given SessionState; the caller saves it.
    """

    def __init__(self, period_resolver: PeriodResolver, budget_engine: BudgetEngine):
        self._periods = period_resolver
        self._budget = budget_engine
        self._text_handlers: dict[
            OnboardingStep, Callable[[Target, OnboardingState, str], "OnboardingReply"]
        ] = {
            OnboardingStep.AWAIT_INCOME: self._on_income,
            OnboardingStep.AWAIT_INCOME_DATE: self._on_income_date,
            OnboardingStep.AWAIT_MANUAL_NEEDS: self._on_needs,
            OnboardingStep.AWAIT_MANUAL_WANTS: self._on_wants,
        }

    @staticmethod
    def is_active(state: SessionState) -> bool:
        return state.onboarding is not None

    def start(self, state: SessionState) -> OnboardingReply:
        state.onboarding = OnboardingState()
        return OnboardingReply(
            text=(
                "Let's set up your budget.\n"
                "What's your monthly income? (e.g. 8jt, 8.000.000)"
            )
        )

    def cancel(self, state: SessionState) -> bool:
        active = state.onboarding is not None
        state.onboarding = None
        return active

    async def handle_text(self, target: Target, state: SessionState, text: str) -> OnboardingReply:
        onboarding = state.onboarding
        if onboarding is None:
            raise ValueError("Onboarding is not active")

        if onboarding.step == OnboardingStep.SUMMARY:
            return await self._finish(target, state)
        if onboarding.step == OnboardingStep.AWAIT_SPLIT_CHOICE:
            return OnboardingReply(
                text="Pick one of the options below.",
                choices=_split_choices(onboarding.income or Decimal("0")),
            )

        handler = self._text_handlers[onboarding.step]
        reply = handler(target, onboarding, text)
        if onboarding.step == OnboardingStep.SUMMARY:
            return await self._finish(target, state)
        return reply

    async def handle_choice(self, target: Target, state: SessionState, value: str) -> OnboardingReply:
        onboarding = state.onboarding
        if onboarding is None or onboarding.step != OnboardingStep.AWAIT_SPLIT_CHOICE:
            return OnboardingReply(text="That setup step has already passed.")

        try:
            choice = SplitChoice(value)
        except ValueError:
            return OnboardingReply(
                text="Pick one of the options below.",
                choices=_split_choices(onboarding.income or Decimal("0")),
            )

        if choice == SplitChoice.MANUAL:
            onboarding.step = OnboardingStep.AWAIT_MANUAL_NEEDS
            return OnboardingReply(text="What percent goes to Needs? (0-100)")

        if choice == SplitChoice.RECOMMENDED:
            needs, wants, savings = suggest_percentages(onboarding.income or Decimal("0"))
            onboarding.needs_pct, onboarding.wants_pct, onboarding.savings_pct = needs, wants, savings
        else:
            onboarding.needs_pct = onboarding.wants_pct = onboarding.savings_pct = None

        onboarding.step = OnboardingStep.SUMMARY
        return await self._finish(target, state)

    # =========================================================================
    # STEPS
    # =========================================================================

    def _on_income(self, target: Target, onboarding: OnboardingState, text: str) -> OnboardingReply:
        try:
            income = parse_amount(text)
        except AmountParseError:
            return OnboardingReply(text="I couldn't read that amount. Try something like 8jt or 8000000.")
        if income <= 0:
            return OnboardingReply(text="Income must be more than zero.")

        onboarding.income = income
        onboarding.step = OnboardingStep.AWAIT_INCOME_DATE
        return OnboardingReply(text="Which day of the month do you get paid? (1-31)")

    def _on_income_date(self, target: Target, onboarding: OnboardingState, text: str) -> OnboardingReply:
        day = _parse_bounded_int(text, 31)
        if not day:
            return OnboardingReply(text="Send a day between 1 and 31.")

        onboarding.income_day = day
        onboarding.step = OnboardingStep.AWAIT_SPLIT_CHOICE
        income = onboarding.income or Decimal("0")
        return OnboardingReply(
            text=f"Income {format_amount(income)}, paid on day {day}. How should it be split?",
            choices=_split_choices(income),
        )

    def _on_needs(self, target: Target, onboarding: OnboardingState, text: str) -> OnboardingReply:
        needs = _parse_bounded_int(text, 100)
        if needs is None:
            return OnboardingReply(text="Send a whole number between 0 and 100.")

        onboarding.needs_pct = needs
        onboarding.step = OnboardingStep.AWAIT_MANUAL_WANTS
        return OnboardingReply(text=f"And Wants? (0-{100 - needs}, the rest goes to Savings)")

    def _on_wants(self, target: Target, onboarding: OnboardingState, text: str) -> OnboardingReply:
        upper = 100 - (onboarding.needs_pct or 0)
        wants = _parse_bounded_int(text, upper)
        if wants is None:
            return OnboardingReply(text=f"Send a whole number between 0 and {upper}.")

        onboarding.wants_pct = wants
        onboarding.savings_pct = upper - wants
        onboarding.step = OnboardingStep.SUMMARY
        return OnboardingReply(text="")

    async def _finish(self, target: Target, state: SessionState) -> OnboardingReply:
        onboarding = state.onboarding
        income = onboarding.income or Decimal("0")
        income_day = onboarding.income_day or target.income_day

        period = await self._periods.start_period(target, income_day=income_day, copy_from_previous=False)
        if onboarding.needs_pct is None:
            await self._budget.allocate_unallocated(period, income)
            split = "not split yet (everything sits in Unallocated)"
        else:
            await self._budget.allocate(
                period, income, onboarding.needs_pct, onboarding.wants_pct, onboarding.savings_pct
            )
            split = f"{onboarding.needs_pct}/{onboarding.wants_pct}/{onboarding.savings_pct}"

        logger.info(
            "onboarding_completed",
            target_id=str(target.target_id),
            period=period.name,
            split=split,
        )
        state.onboarding = None
        return OnboardingReply(
            text=(
                f"All set. Active period: {period.name} "
                f"({period.start_date.isoformat()} to {period.end_date.isoformat()}).\n"
                f"Income {format_amount(income)}, split {split}.\n"
                "Now just tell me what you spend, e.g. \"lunch 35rb\"."
            ),
            finished=True,
        )
