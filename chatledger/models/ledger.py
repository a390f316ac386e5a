"""
Ledger Models for Chat Ledger

These Pydantic models define the records the ledger works with:
targets, periods, budgets, buckets, categories and transactions, plus
the candidates the parser produces before anything is committed.

DESIGN DECISION: A parsed candidate and a committed transaction are
different types. A candidate is only a proposal from the model; it
becomes a Transaction only when the confirmation gate lets it through
and the ledger writes it.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from chatledger.amounts import parse_amount


# =============================================================================
# ENUMS - Fixed categories and states
# =============================================================================

class TransactionType(str, Enum):
    """Kinds of ledger movement."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class BucketCategory(str, Enum):
    """Budget split tag of a bucket."""
    NEEDS = "needs"
    WANTS = "wants"
    SAVINGS = "savings"


class UserTier(str, Enum):
    """Subscription tier of an account."""
    STANDARD = "standard"
    PRO = "pro"
    FAMILY = "family"
    FAMILY_MEMBER = "family_member"


class MemberRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"


UNALLOCATED_BUCKET = "Unallocated"


# =============================================================================
# IDENTITY
# =============================================================================

class UserAccount(BaseModel):
    """A registered individual."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    external_id: int = Field(..., description="Chat platform user id")
    display_name: Optional[str] = None
    tier: UserTier = UserTier.STANDARD
    income_day: int = Field(default=1, ge=1, le=31)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Group(BaseModel):
    """A shared (family) ledger bound to a group chat."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    chat_id: int = Field(..., description="Chat platform group chat id")
    name: str = Field(default="Family", max_length=100)
    owner_id: UUID
    income_day: int = Field(default=1, ge=1, le=31)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChatIdentity(BaseModel):
    """Who sent a message, and from which chat."""

    chat_id: int
    is_group_chat: bool = False
    user_external_id: int
    display_name: Optional[str] = None
    chat_title: Optional[str] = None


class Target(BaseModel):
    """
    The identity transactions are recorded against.

    target_id is the user id for private chats and the group id for
    group chats. user_id is always the acting individual.
    """

    is_group: bool
    target_id: UUID
    user_id: UUID
    group_id: Optional[UUID] = None
    income_day: int = Field(default=1, ge=1, le=31)

    @property
    def kind(self) -> str:
        return "group" if self.is_group else "user"


# =============================================================================
# BUDGETING
# =============================================================================

class Period(BaseModel):
    """A contiguous budgeting date range for a target."""

    id: UUID = Field(default_factory=uuid4)
    target_id: UUID
    is_group: bool = False
    name: str = Field(..., max_length=100)
    start_date: date
    end_date: date
    is_current: bool = True

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class Bucket(BaseModel):
    """A named spending envelope within a budget."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    budget_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[BucketCategory] = None
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    icon: Optional[str] = None
    is_system: bool = False


class BucketDraft(BaseModel):
    """A bucket to be inserted or updated."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[BucketCategory] = None
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    icon: Optional[str] = None
    is_system: bool = False


class Budget(BaseModel):
    """Estimated income and buckets for one period."""

    id: UUID = Field(default_factory=uuid4)
    period_id: UUID
    estimated_income: Decimal = Field(default=Decimal("0"), ge=0)
    buckets: list[Bucket] = Field(default_factory=list)

    @property
    def bucket_names(self) -> list[str]:
        return [b.name for b in self.buckets]

    @property
    def is_unallocated(self) -> bool:
        return all(b.is_system for b in self.buckets)


class BudgetAllocation(BaseModel):
    """Rounded needs/wants/savings split of an income."""

    income: Decimal
    needs: Decimal
    wants: Decimal
    savings: Decimal


class Category(BaseModel):
    """Free-text transaction label scoped to one target."""

    id: UUID = Field(default_factory=uuid4)
    target_id: UUID
    is_group: bool = False
    name: str


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionCandidate(BaseModel):
    """
    A transaction proposed by the language model.

    Nothing here is persisted. Amounts arrive as whatever the model
    emitted ("25rb", 25000, "25.000") and are coerced to Decimal.
    """

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    type: TransactionType
    amount: Decimal
    category: str = Field(default="Other", max_length=100)
    bucket: Optional[str] = Field(default=None, max_length=100)
    description: str = Field(default="", max_length=500)
    confidence: float = Field(..., ge=0.0, le=1.0)
    needs_confirmation: bool = Field(default=False, alias="needsConfirmation")
    suggested_amount: Optional[Decimal] = Field(default=None, alias="suggestedAmount")

    @field_validator("amount", "suggested_amount", mode="before")
    @classmethod
    def coerce_amount(cls, v, info: ValidationInfo):
        if v is None:
            return v
        # JSON input is our own serialized state: amounts are already plain decimals
        if info.mode == "json":
            return Decimal(str(v))
        return parse_amount(v)

    @field_validator("category", mode="before")
    @classmethod
    def default_category(cls, v):
        return v or "Other"


class TransactionDraft(BaseModel):
    """A validated row ready to be written by storage."""

    transaction_id: Optional[UUID] = None
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    category: str
    bucket: Optional[str] = None
    description: str = ""
    confidence: float = Field(..., ge=0.0, le=1.0)
    raw_message: Optional[str] = None


class Transaction(BaseModel):
    """A committed ledger row."""

    id: UUID
    target_id: UUID
    is_group: bool = False
    user_id: UUID
    period_id: UUID
    category_id: Optional[UUID] = None
    category: Optional[str] = None
    bucket: Optional[str] = None
    type: TransactionType
    amount: Decimal
    description: str = ""
    confidence: float
    raw_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ParsedMessage(BaseModel):
    """Parser result: a reply text plus zero or more candidates."""

    reply: str = ""
    candidates: list[TransactionCandidate] = Field(default_factory=list)


# =============================================================================
# AGGREGATES
# =============================================================================

class BucketSummary(BaseModel):
    name: str
    category: Optional[BucketCategory] = None
    allocated: Decimal
    spent: Decimal
    remaining: Decimal

    @property
    def is_over(self) -> bool:
        return self.remaining < 0


class CategoryShare(BaseModel):
    name: str
    amount: Decimal
    share: float = Field(..., ge=0.0, le=1.0)


class BudgetSummary(BaseModel):
    """Allocated / spent / remaining per bucket for a period."""

    period_name: str
    income: Decimal
    buckets: list[BucketSummary] = Field(default_factory=list)
    total_spent: Decimal = Decimal("0")
    total_income: Decimal = Decimal("0")
    unassigned_spent: Decimal = Field(
        default=Decimal("0"),
        description="Expenses whose bucket label matches no bucket"
    )
    top_categories: list[CategoryShare] = Field(default_factory=list)

    def bucket(self, name: str) -> Optional[BucketSummary]:
        key = name.casefold()
        return next((b for b in self.buckets if b.name.casefold() == key), None)
