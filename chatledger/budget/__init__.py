"""Budget allocation and spend aggregation."""

from chatledger.budget.engine import (
    AmbiguousBucketDeletion,
    BucketNotFound,
    BudgetEngine,
    BudgetError,
    DuplicateBucketName,
    InvalidAllocation,
    calculate_allocation,
    suggest_percentages,
    validate_percentages,
)

__all__ = [
    "AmbiguousBucketDeletion",
    "BucketNotFound",
    "BudgetEngine",
    "BudgetError",
    "DuplicateBucketName",
    "InvalidAllocation",
    "calculate_allocation",
    "suggest_percentages",
    "validate_percentages",
]
