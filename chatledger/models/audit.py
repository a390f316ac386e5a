"""
Audit Models for Chat Ledger

Every significant action in the system is logged for audit purposes.
This provides:
1. Traceability of every committed or discarded transaction
2. Enough context to replay a failed write
3. Visibility into what the language model asked the tools to do

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Grouped by the pipeline stage that emits them.
    """
    # Parsing
    TRANSACTION_PARSED = "transaction_parsed"
    PARSE_FAILED = "parse_failed"

    # Confirmation gate
    TRANSACTION_COMMITTED = "transaction_committed"
    PENDING_CREATED = "pending_created"
    PENDING_SUPERSEDED = "pending_superseded"
    PENDING_CONFIRMED = "pending_confirmed"
    PENDING_REJECTED = "pending_rejected"

    # Undo
    UNDO_COMPLETED = "undo_completed"

    # Budget and periods
    PERIOD_CREATED = "period_created"
    BUDGET_ALLOCATED = "budget_allocated"
    BUCKET_UPDATED = "bucket_updated"
    BUCKET_DELETED = "bucket_deleted"

    # Conversation context
    CONTEXT_FOLDED = "context_folded"
    CONTEXT_FOLD_FAILED = "context_fold_failed"

    # Tools
    TOOL_EXECUTED = "tool_executed"

    # System events
    PERSISTENCE_FAILED = "persistence_failed"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and where
    target_id: Optional[UUID] = Field(
        default=None,
        description="Target (user or group) the event belongs to"
    )
    period_id: Optional[UUID] = Field(
        default=None,
        description="Budgeting period, when one is involved"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'bucket', 'batch')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "target_id": str(self.target_id) if self.target_id else None,
            "period_id": str(self.period_id) if self.period_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transactions_committed(target_id, period_id, ids)
        event = AuditEventBuilder.pending_rejected(target_id, batch_id)
    """

    @staticmethod
    def transactions_parsed(target_id: UUID, count: int, raw_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_PARSED,
            target_id=target_id,
            entity_type="message",
            description=f"Parsed {count} candidate(s) from message",
            details={"count": count, "raw_message": raw_message},
            is_user_action=True,
        )

    @staticmethod
    def parse_failed(target_id: UUID, raw_message: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARSE_FAILED,
            severity=AuditSeverity.WARNING,
            target_id=target_id,
            entity_type="message",
            description="Message could not be parsed",
            details={"raw_message": raw_message},
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def transactions_committed(
        target_id: UUID,
        period_id: UUID,
        transaction_ids: list[UUID],
        source: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_COMMITTED,
            target_id=target_id,
            period_id=period_id,
            entity_type="transaction",
            entity_id=transaction_ids[0] if len(transaction_ids) == 1 else None,
            description=f"{len(transaction_ids)} transaction(s) committed via {source}",
            details={
                "transaction_ids": [str(i) for i in transaction_ids],
                "source": source,
            },
        )

    @staticmethod
    def pending_created(
        target_id: UUID,
        period_id: UUID,
        batch_id: UUID,
        kind: str,
        size: int,
        superseded: Optional[UUID] = None,
    ) -> AuditEvent:
        details: dict[str, Any] = {"kind": kind, "size": size}
        if superseded:
            details["superseded_batch_id"] = str(superseded)
        return AuditEvent(
            event_type=AuditEventType.PENDING_CREATED,
            target_id=target_id,
            period_id=period_id,
            entity_type="batch",
            entity_id=batch_id,
            description=f"Pending batch of {size} held for confirmation ({kind})",
            details=details,
        )

    @staticmethod
    def pending_superseded(target_id: UUID, batch_id: UUID, replaced_by: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENDING_SUPERSEDED,
            target_id=target_id,
            entity_type="batch",
            entity_id=batch_id,
            description="Pending batch replaced by a newer one",
            details={"replaced_by": str(replaced_by)},
        )

    @staticmethod
    def pending_confirmed(target_id: UUID, batch_id: UUID, transaction_ids: list[UUID]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENDING_CONFIRMED,
            target_id=target_id,
            entity_type="batch",
            entity_id=batch_id,
            description=f"User confirmed pending batch ({len(transaction_ids)} saved)",
            details={"transaction_ids": [str(i) for i in transaction_ids]},
            is_user_action=True,
        )

    @staticmethod
    def pending_rejected(target_id: UUID, batch_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENDING_REJECTED,
            target_id=target_id,
            entity_type="batch",
            entity_id=batch_id,
            description="User rejected pending batch",
            is_user_action=True,
        )

    @staticmethod
    def undo_completed(
        target_id: UUID,
        status: str,
        deleted: list[UUID],
        missing: list[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNDO_COMPLETED,
            severity=AuditSeverity.WARNING if missing else AuditSeverity.INFO,
            target_id=target_id,
            entity_type="transaction",
            description=f"Undo finished: {status}",
            details={
                "deleted": [str(i) for i in deleted],
                "missing": [str(i) for i in missing],
            },
            is_user_action=True,
        )

    @staticmethod
    def period_created(target_id: UUID, period_id: UUID, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERIOD_CREATED,
            target_id=target_id,
            period_id=period_id,
            entity_type="period",
            entity_id=period_id,
            description=f"Period created: {name}",
        )

    @staticmethod
    def budget_allocated(target_id: UUID, period_id: UUID, income: str, split: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ALLOCATED,
            target_id=target_id,
            period_id=period_id,
            entity_type="budget",
            description=f"Budget allocated ({split})",
            details={"income": income, "split": split},
        )

    @staticmethod
    def bucket_changed(
        target_id: UUID,
        period_id: UUID,
        bucket_id: UUID,
        name: str,
        action: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.BUCKET_DELETED if action == "deleted"
                else AuditEventType.BUCKET_UPDATED
            ),
            target_id=target_id,
            period_id=period_id,
            entity_type="bucket",
            entity_id=bucket_id,
            description=f"Bucket {name} {action}",
            details={"action": action, "name": name},
        )

    @staticmethod
    def context_folded(target_id: UUID, folded: int, kept: int, trigger: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTEXT_FOLDED,
            target_id=target_id,
            entity_type="context",
            description=f"Folded {folded} turns into summary ({trigger})",
            details={"folded": folded, "kept": kept, "trigger": trigger},
        )

    @staticmethod
    def context_fold_failed(target_id: UUID, error_message: str, turns: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTEXT_FOLD_FAILED,
            severity=AuditSeverity.WARNING,
            target_id=target_id,
            entity_type="context",
            description="Summary failed, raw turns kept in window",
            details={"turns": turns},
            error_message=error_message,
        )

    @staticmethod
    def tool_executed(target_id: UUID, tool: str, success: bool, error: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_EXECUTED,
            severity=AuditSeverity.INFO if success else AuditSeverity.WARNING,
            target_id=target_id,
            entity_type="tool",
            description=f"Tool {tool} {'succeeded' if success else 'failed'}",
            details={"tool": tool},
            error_message=error,
        )

    @staticmethod
    def persistence_failed(
        target_id: Optional[UUID],
        period_id: Optional[UUID],
        raw_input: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            target_id=target_id,
            period_id=period_id,
            description="Write failed; raw input kept for replay",
            details={"raw_input": raw_input},
            error_message=error_message,
        )

    @staticmethod
    def external_service_error(service: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            details={"service": service},
            error_message=error_message,
        )
