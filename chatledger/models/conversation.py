"""
Conversation Models for Chat Ledger

Everything that lives in the expiring store rather than the database:
dialogue turns of the live context window, and the per-target session
state (pending batch, undo ids, onboarding progress).

DESIGN DECISION: Pending transactions have exactly one shape, the
PendingTransactionBatch. A single low-confidence candidate is a batch of
one. There is one slot per target and a newer batch replaces the old one.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from chatledger.models.ledger import Period, TransactionCandidate


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A function call requested by the language model."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class DialogueTurn(BaseModel):
    """One entry of the live context window."""

    role: TurnRole
    content: str = ""
    tool_calls: list[ToolCall] = Field(
        default_factory=list,
        description="Calls requested by an assistant turn"
    )
    tool_call_id: Optional[str] = Field(
        default=None,
        description="For tool turns: the call this result answers"
    )
    name: Optional[str] = Field(
        default=None,
        description="For tool turns: the tool name"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def user(cls, content: str) -> "DialogueTurn":
        return cls(role=TurnRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[list[ToolCall]] = None) -> "DialogueTurn":
        return cls(role=TurnRole.ASSISTANT, content=content, tool_calls=tool_calls or [])


# =============================================================================
# PENDING CONFIRMATION
# =============================================================================

class PendingKind(str, Enum):
    """Why a batch is waiting."""
    CONFIRM = "confirm"          # low confidence, confirm or reject
    AMOUNT_CHOICE = "amount_choice"  # unit-ambiguous, pick an amount


class PendingTransactionBatch(BaseModel):
    """Parsed candidates awaiting an explicit decision."""

    batch_id: UUID = Field(default_factory=uuid4)
    kind: PendingKind = PendingKind.CONFIRM
    candidates: list[TransactionCandidate] = Field(..., min_length=1)
    raw_message: str
    period: Period
    amount_choices: list[Decimal] = Field(default_factory=list)
    message_id: Optional[int] = Field(
        default=None,
        description="Chat message carrying the choice buttons"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# ONBOARDING
# =============================================================================

class OnboardingStep(str, Enum):
    AWAIT_INCOME = "await_income"
    AWAIT_INCOME_DATE = "await_income_date"
    AWAIT_SPLIT_CHOICE = "await_split_choice"
    AWAIT_MANUAL_NEEDS = "await_manual_needs"
    AWAIT_MANUAL_WANTS = "await_manual_wants"
    SUMMARY = "summary"


class OnboardingState(BaseModel):
    """Current step plus the answers collected so far."""

    step: OnboardingStep = OnboardingStep.AWAIT_INCOME
    income: Optional[Decimal] = None
    income_day: Optional[int] = None
    needs_pct: Optional[int] = None
    wants_pct: Optional[int] = None
    savings_pct: Optional[int] = None


# =============================================================================
# SESSION
# =============================================================================

class SessionState(BaseModel):
    """Per-target mutable state, serialized as one JSON document."""

    pending: Optional[PendingTransactionBatch] = None
    undo_ids: list[UUID] = Field(default_factory=list)
    onboarding: Optional[OnboardingState] = None
