"""
Data Models Package

This package contains all Pydantic models used in the Chat Ledger system.
All data flowing through the system must conform to these schemas.
"""

from chatledger.models.ledger import (
    UNALLOCATED_BUCKET,
    Bucket,
    BucketCategory,
    BucketDraft,
    BucketSummary,
    Budget,
    BudgetAllocation,
    BudgetSummary,
    Category,
    CategoryShare,
    ChatIdentity,
    Group,
    MemberRole,
    ParsedMessage,
    Period,
    Target,
    Transaction,
    TransactionCandidate,
    TransactionDraft,
    TransactionType,
    UserAccount,
    UserTier,
)
from chatledger.models.conversation import (
    DialogueTurn,
    OnboardingState,
    OnboardingStep,
    PendingKind,
    PendingTransactionBatch,
    SessionState,
    ToolCall,
    TurnRole,
)
from chatledger.models.tools import (
    ToolName,
    ToolResult,
    ToolTransactionInput,
)
from chatledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "UNALLOCATED_BUCKET",
    "Bucket",
    "BucketCategory",
    "BucketDraft",
    "BucketSummary",
    "Budget",
    "BudgetAllocation",
    "BudgetSummary",
    "Category",
    "CategoryShare",
    "ChatIdentity",
    "Group",
    "MemberRole",
    "ParsedMessage",
    "Period",
    "Target",
    "Transaction",
    "TransactionCandidate",
    "TransactionDraft",
    "TransactionType",
    "UserAccount",
    "UserTier",
    # Conversation models
    "DialogueTurn",
    "OnboardingState",
    "OnboardingStep",
    "PendingKind",
    "PendingTransactionBatch",
    "SessionState",
    "ToolCall",
    "TurnRole",
    # Tool models
    "ToolName",
    "ToolResult",
    "ToolTransactionInput",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
