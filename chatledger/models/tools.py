"""
Tool Contract Models

Argument and result shapes of the operations the language model may
call. Field aliases follow the camelCase names the model sees in the
function declarations; Python code uses the snake_case names.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chatledger.amounts import parse_amount
from chatledger.models.ledger import (
    BucketCategory,
    TransactionCandidate,
    TransactionType,
)


class ToolName(str, Enum):
    UPSERT_TRANSACTION = "upsertTransaction"
    DELETE_TRANSACTION = "deleteTransaction"
    UPSERT_BUCKET = "upsertBucket"
    DELETE_BUCKET = "deleteBucket"
    UPSERT_PERIOD = "upsertPeriod"
    GET_BUDGET_STATUS = "getBudgetStatus"
    GET_TRANSACTION_HISTORY = "getTransactionHistory"


class ToolResult(BaseModel):
    """Response returned to the model for every tool call."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    @classmethod
    def ok(cls, message: str, data: Optional[dict[str, Any]] = None) -> "ToolResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: str, data: Optional[dict[str, Any]] = None) -> "ToolResult":
        return cls(success=False, error=error, data=data)

    def to_content(self) -> str:
        return self.model_dump_json(exclude_none=True)


class _ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class ToolTransactionInput(TransactionCandidate):
    """
    One item of upsertTransaction.

    Amount is not range-checked here; the ledger rejects non-positive
    amounts for the whole batch before writing anything.
    """

    transaction_id: Optional[UUID] = Field(default=None, alias="transactionId")
    confirmation_message: Optional[str] = Field(default=None, alias="confirmationMessage")


class UpsertTransactionArgs(_ToolArgs):
    input: list[ToolTransactionInput] = Field(..., min_length=1)


class DeleteTransactionArgs(_ToolArgs):
    transaction_id: UUID = Field(..., alias="transactionId")


class UpsertBucketArgs(_ToolArgs):
    bucket_id: Optional[UUID] = Field(default=None, alias="bucketId")
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    category: Optional[BucketCategory] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        return parse_amount(v)


class DeleteBucketArgs(_ToolArgs):
    name: str = Field(..., min_length=1)
    move_bucket: str = Field(..., alias="moveBucket", min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    confirmation_message: Optional[str] = Field(default=None, alias="confirmationMessage")


class UpsertPeriodArgs(_ToolArgs):
    name: Optional[str] = Field(default=None, max_length=100)
    income_date: Optional[int] = Field(default=None, alias="incomeDate", ge=1, le=31)
    copy_from_previous: bool = Field(default=True, alias="copyFromPrevious")


class GetBudgetStatusArgs(_ToolArgs):
    bucket_name: Optional[str] = Field(default=None, alias="bucketName")


class GetTransactionHistoryArgs(_ToolArgs):
    limit: int = Field(default=10, ge=1, le=50)
    bucket: Optional[str] = None
    type: Optional[TransactionType] = None
