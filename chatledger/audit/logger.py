"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Traceability of what was committed, held or discarded
2. Replay context when a write fails
3. A record of every tool call the model made

The audit logger:
- Is async so flows can await it uniformly
- Never raises into the message pipeline
- Picks up the per-message correlation id bound in structlog contextvars
"""

from collections import deque
from typing import Optional
from uuid import UUID, uuid4

import structlog

from chatledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Writes AuditEvents to the structured log at the event's severity.
    The most recent events are also kept in memory, up to history_size.
    """

    def __init__(self, history_size: int = 500):
        self._logger = structlog.get_logger("chatledger.audit")
        self._history: deque[AuditEvent] = deque(maxlen=history_size)

    @property
    def history(self) -> list[AuditEvent]:
        """Recent events logged by this instance, oldest first."""
        return list(self._history)

    async def log(self, event: AuditEvent) -> None:
        """Log an audit event."""
        self._history.append(event)
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    async def log_committed(
        self,
        target_id: UUID,
        period_id: UUID,
        transaction_ids: list[UUID],
        source: str,
    ) -> None:
        """Log transactions written to the ledger."""
        await self.log(AuditEventBuilder.transactions_committed(
            target_id=target_id,
            period_id=period_id,
            transaction_ids=transaction_ids,
            source=source,
        ))

    async def log_persistence_failed(
        self,
        target_id: Optional[UUID],
        period_id: Optional[UUID],
        raw_input: str,
        error_message: str,
    ) -> None:
        """Log a failed write with what is needed to replay it."""
        await self.log(AuditEventBuilder.persistence_failed(
            target_id=target_id,
            period_id=period_id,
            raw_input=raw_input,
            error_message=error_message,
        ))

    async def log_external_service_error(self, service: str, error_message: str) -> None:
        """Log external service failure."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    One ID per inbound message; bound into structlog contextvars so
    every log line emitted while handling the message carries it.
    """
    return uuid4()
